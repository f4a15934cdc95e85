from __future__ import annotations

import argparse
import logging
import sys
from functools import cmp_to_key
from pathlib import Path

from .app_logging import get_logger, log_with_fields, setup_logger
from .config import AppConfig, ensure_local_paths, load_config
from .consumer import ConsoleConsumer, format_job_table
from .downloads import DownloadRejected
from .logsink import RESULT_SUCCESS
from .models import DownloadOptions
from .monitor import JobMonitor
from .remote import AzureBatchRemote
from .utils import compare_end_times


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="batchwatch", description="Azure Batch job monitor")
    parser.add_argument("--config", required=True, help="Path to batchwatch YAML config")
    parser.add_argument("--verbose", action="store_true", help="Log debug output to the console")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Poll the batch account until interrupted")
    run_parser.add_argument("--once", action="store_true", help="Run exactly one polling cycle, then exit")
    list_parser = subparsers.add_parser("list", help="Show the current job table")
    list_parser.add_argument("--mine", action="store_true", help="Only show jobs owned by the current user")

    download = subparsers.add_parser("download", help="Download the results of completed jobs")
    download.add_argument("--job-id", action="append", required=True, dest="job_ids", help="Job id (repeatable)")
    download.add_argument("--csv", action="store_true", help="Collate results into a csv file")
    download.add_argument("--debug-files", action="store_true", help="Include debug files")
    download.add_argument("--output", help="Existing directory to download into")
    download.add_argument("--yes", action="store_true", help="Do not ask for confirmation")

    for name, help_text in [("stop", "Terminate running jobs"), ("delete", "Delete jobs and their containers")]:
        command = subparsers.add_parser(name, help=help_text)
        command.add_argument("--job-id", action="append", required=True, dest="job_ids", help="Job id (repeatable)")
        command.add_argument("--yes", action="store_true", help="Do not ask for confirmation")
    return parser


def _open_runtime(
    config: AppConfig,
    *,
    assume_yes: bool = False,
    quiet: bool = False,
    verbose: bool = False,
) -> JobMonitor:
    ensure_local_paths(config)
    logger = setup_logger(config.paths.log, verbose=verbose)
    remote = AzureBatchRemote(config.azure, logger)
    consumer = ConsoleConsumer(assume_yes=assume_yes, quiet=quiet)
    return JobMonitor(config, remote, consumer, logger, always_resume=False)


def cmd_run(config: AppConfig, *, once: bool = False, verbose: bool = False) -> int:
    monitor = _open_runtime(config, verbose=verbose)
    if once:
        monitor.refresh()
        return 0
    monitor.start()
    try:
        while not monitor.loop.wait_stopped(timeout=1.0):
            pass
    except KeyboardInterrupt:
        log_with_fields(get_logger(), logging.INFO, "shutdown", reason="keyboard_interrupt")
        monitor.stop()
    return 0


def cmd_list(config: AppConfig, *, mine: bool = False, verbose: bool = False) -> int:
    monitor = _open_runtime(config, quiet=True, verbose=verbose)
    monitor.refresh()
    jobs = monitor.jobs()
    if mine:
        jobs = [job for job in jobs if monitor.registry.user_owns_job(job.job_id)]
    jobs = sorted(jobs, key=cmp_to_key(lambda a, b: compare_end_times(a.end_time, b.end_time)))
    print(f"Jobs ({len(jobs)}):")
    for line in format_job_table(jobs):
        print(line)
    return 0


def cmd_download(config: AppConfig, args: argparse.Namespace) -> int:
    output_dir = None
    if args.output:
        output_dir = Path(args.output).expanduser()
        if not output_dir.is_dir():
            print(f"Directory {output_dir} does not exist.", file=sys.stderr)
            return 2

    monitor = _open_runtime(config, assume_yes=args.yes, quiet=True, verbose=args.verbose)
    monitor.refresh()
    options = DownloadOptions(
        save_to_csv=args.csv or config.download.save_to_csv,
        include_debug_files=args.debug_files or config.download.include_debug_files,
    )
    try:
        batch = monitor.download(args.job_ids, options, output_dir)
    except DownloadRejected as exc:
        print(str(exc), file=sys.stderr)
        return 2
    monitor.downloads.wait_idle()
    if batch.cancelled:
        print("download cancelled")
        return 1
    failed = [result for result in monitor.downloads.results if result.code != RESULT_SUCCESS]
    print(
        f"downloaded {len(batch.started) - len(failed)} job(s), "
        f"skipped {len(batch.skipped)}, failed {len(failed)}"
    )
    return 1 if failed else 0


def cmd_stop(config: AppConfig, args: argparse.Namespace) -> int:
    monitor = _open_runtime(config, assume_yes=args.yes, quiet=True, verbose=args.verbose)
    monitor.refresh()
    stopped = monitor.stop_jobs(args.job_ids)
    print(f"stopped {len(stopped)} job(s)")
    return 0


def cmd_delete(config: AppConfig, args: argparse.Namespace) -> int:
    monitor = _open_runtime(config, assume_yes=args.yes, quiet=True, verbose=args.verbose)
    monitor.refresh()
    deleted = monitor.delete_jobs(args.job_ids)
    print(f"deleted {len(deleted)} job(s)")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    config = load_config(args.config)
    if not config.azure.is_complete():
        print("Azure credentials are incomplete; set the `azure` section of the config", file=sys.stderr)
        return 2

    if args.command == "run":
        return cmd_run(config, once=bool(args.once), verbose=args.verbose)
    if args.command == "list":
        return cmd_list(config, mine=args.mine, verbose=args.verbose)
    if args.command == "download":
        return cmd_download(config, args)
    if args.command == "stop":
        return cmd_stop(config, args)
    if args.command == "delete":
        return cmd_delete(config, args)
    parser.error(f"Unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())

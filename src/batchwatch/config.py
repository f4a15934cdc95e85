from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass(slots=True)
class PathsConfig:
    output: Path
    log: Path


@dataclass(slots=True)
class PollConfig:
    interval_seconds: float = 10
    fetch_attempts: int = 4


@dataclass(slots=True)
class AzureConfig:
    batch_url: str = ""
    batch_account: str = ""
    batch_key: str = ""
    storage_account: str = ""
    storage_key: str = ""

    def is_complete(self) -> bool:
        return all(
            [self.batch_url, self.batch_account, self.batch_key, self.storage_account, self.storage_key]
        )


@dataclass(slots=True)
class DownloadConfig:
    save_to_csv: bool = False
    include_debug_files: bool = False


@dataclass(slots=True)
class AppConfig:
    paths: PathsConfig
    poll: PollConfig = field(default_factory=PollConfig)
    azure: AzureConfig = field(default_factory=AzureConfig)
    download: DownloadConfig = field(default_factory=DownloadConfig)


def _require(mapping: dict, key: str, section: str) -> object:
    if key not in mapping:
        raise ValueError(f"Missing `{section}.{key}` in config")
    return mapping[key]


def _mapping(raw: dict, key: str) -> dict:
    value = raw.get(key) or {}
    if not isinstance(value, dict):
        raise ValueError(f"`{key}` must be a mapping")
    return value


def load_config(path: str | Path) -> AppConfig:
    config_path = Path(path).expanduser().resolve()
    raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError("Config root must be a mapping")

    paths_raw = _require(raw, "paths", "root")
    if not isinstance(paths_raw, dict):
        raise ValueError("`paths` must be a mapping")
    poll_raw = _mapping(raw, "poll")
    azure_raw = _mapping(raw, "azure")
    download_raw = _mapping(raw, "download")

    def to_path(key: str) -> Path:
        value = _require(paths_raw, key, "paths")
        output = Path(str(value)).expanduser()
        if not output.is_absolute():
            output = config_path.parent / output
        return output

    paths = PathsConfig(output=to_path("output"), log=to_path("log"))

    poll = PollConfig(
        interval_seconds=float(poll_raw.get("interval_seconds", 10)),
        fetch_attempts=int(poll_raw.get("fetch_attempts", 4)),
    )
    if poll.interval_seconds < 1:
        raise ValueError("`poll.interval_seconds` must be >= 1")
    if poll.fetch_attempts < 1:
        raise ValueError("`poll.fetch_attempts` must be >= 1")

    azure = AzureConfig(
        batch_url=str(azure_raw.get("batch_url", "")).rstrip("/"),
        batch_account=str(azure_raw.get("batch_account", "")),
        batch_key=str(azure_raw.get("batch_key") or os.getenv("AZURE_BATCH_KEY", "")),
        storage_account=str(azure_raw.get("storage_account", "")),
        storage_key=str(azure_raw.get("storage_key") or os.getenv("AZURE_STORAGE_KEY", "")),
    )

    download = DownloadConfig(
        save_to_csv=bool(download_raw.get("save_to_csv", False)),
        include_debug_files=bool(download_raw.get("include_debug_files", False)),
    )

    return AppConfig(paths=paths, poll=poll, azure=azure, download=download)


def ensure_local_paths(config: AppConfig) -> None:
    config.paths.output.mkdir(parents=True, exist_ok=True)
    config.paths.log.parent.mkdir(parents=True, exist_ok=True)

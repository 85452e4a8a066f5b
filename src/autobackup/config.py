from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

import json
import yaml

from autobackup.errors import ConfigError


SETTINGS_SECTION = "BackupSettings"
LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True, slots=True)
class MirrorConfig:
    source_root: Path
    backup_root: Path
    max_attempts: int = 3
    retry_delay: float = 0.5
    workers: int = 4
    follow_symlinks: bool = False
    additional_excludes: tuple[str, ...] = ()
    honor_gitignore: bool = False
    log_file: Path | None = None
    log_level: str = "INFO"

    def with_roots(self, source_root: Path | None = None, backup_root: Path | None = None) -> "MirrorConfig":
        return replace(
            self,
            source_root=_absolute(source_root) if source_root else self.source_root,
            backup_root=_absolute(backup_root) if backup_root else self.backup_root,
        )


def _absolute(path: Path) -> Path:
    return Path(path).expanduser().resolve()


def _lookup(raw: dict[str, Any], key: str) -> Any:
    if key in raw:
        return raw[key]
    return raw.get(key[0].upper() + key[1:])


def _as_path(value: Any, field_name: str) -> Path:
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{field_name} must be a non-empty string path")
    return _absolute(Path(value))


def _as_bool(value: Any, field_name: str, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    raise ConfigError(f"{field_name} must be a boolean")


def _as_positive_int(value: Any, field_name: str, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigError(f"{field_name} must be a positive integer")
    return value


def _as_list_of_strings(value: Any, field_name: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list) or any(not isinstance(item, str) for item in value):
        raise ConfigError(f"{field_name} must be a list of strings")
    return tuple(item for item in value if item.strip())


def _load_raw_config(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        raise ConfigError(f"Config file does not exist: {config_path}")

    suffix = config_path.suffix.lower()
    text = config_path.read_text(encoding="utf-8")
    try:
        if suffix in {".yml", ".yaml"}:
            loaded = yaml.safe_load(text)
        elif suffix == ".json":
            loaded = json.loads(text)
        else:
            raise ConfigError("Config file must be .yaml/.yml or .json")
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Config file could not be parsed: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ConfigError("Config root must be an object")
    return loaded


def parse_config(raw: dict[str, Any]) -> MirrorConfig:
    section = _lookup(raw, SETTINGS_SECTION)
    if section is None:
        section = raw
    elif not isinstance(section, dict):
        raise ConfigError(f"{SETTINGS_SECTION} must be an object")

    source_raw = _lookup(section, "sourcePath")
    if source_raw is None:
        raise ConfigError("sourcePath is missing in config")
    backup_raw = _lookup(section, "backupPath")
    if backup_raw is None:
        raise ConfigError("backupPath is missing in config")

    retry_delay_ms = _lookup(section, "retryDelayMs")
    if retry_delay_ms is None:
        retry_delay_ms = 500
    if isinstance(retry_delay_ms, bool) or not isinstance(retry_delay_ms, (int, float)) or retry_delay_ms < 0:
        raise ConfigError("retryDelayMs must be a non-negative number")

    log_file_raw = _lookup(section, "logFile")
    log_level = _lookup(section, "logLevel") or "INFO"
    if not isinstance(log_level, str) or log_level.upper() not in LOG_LEVELS:
        raise ConfigError(f"logLevel must be one of: {', '.join(sorted(LOG_LEVELS))}")

    return MirrorConfig(
        source_root=_as_path(source_raw, "sourcePath"),
        backup_root=_as_path(backup_raw, "backupPath"),
        max_attempts=_as_positive_int(_lookup(section, "maxAttempts"), "maxAttempts", default=3),
        retry_delay=float(retry_delay_ms) / 1000.0,
        workers=_as_positive_int(_lookup(section, "workers"), "workers", default=4),
        follow_symlinks=_as_bool(_lookup(section, "followSymlinks"), "followSymlinks", default=False),
        additional_excludes=_as_list_of_strings(_lookup(section, "additionalExcludes"), "additionalExcludes"),
        honor_gitignore=_as_bool(_lookup(section, "honorGitignore"), "honorGitignore", default=False),
        log_file=_as_path(log_file_raw, "logFile") if log_file_raw else None,
        log_level=log_level.upper(),
    )


def load_config(config_path: Path) -> MirrorConfig:
    return parse_config(_load_raw_config(config_path))


def build_config(
    config_path: Path | None = None,
    source: Path | None = None,
    backup: Path | None = None,
) -> MirrorConfig:
    """Load a config file and apply command-line root overrides.

    Without a config file both roots must be given explicitly.
    """
    if config_path is not None:
        return load_config(config_path).with_roots(source, backup)
    if source is None:
        raise ConfigError("sourcePath is missing: pass --source or --config")
    if backup is None:
        raise ConfigError("backupPath is missing: pass --backup or --config")
    return MirrorConfig(source_root=_absolute(source), backup_root=_absolute(backup))

from __future__ import annotations

from pathlib import Path

from autobackup.errors import DirectoryCreateError, SourceNotFoundError


def validate_mapping(source_root: Path, backup_root: Path) -> None:
    source_resolved = source_root.resolve()
    backup_resolved = backup_root.resolve()

    if source_resolved == backup_resolved:
        raise ValueError(f"Invalid mapping: source and backup are equal: {source_root}")

    if backup_resolved.is_relative_to(source_resolved):
        raise ValueError(f"Invalid mapping: backup is inside source, which can recurse: {backup_root}")


def prepare_roots(source_root: Path, backup_root: Path) -> None:
    """Check the source root exists and create the backup root if missing."""
    if not source_root.is_dir():
        raise SourceNotFoundError(f"Source directory not found: {source_root}")

    validate_mapping(source_root, backup_root)

    try:
        backup_root.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise DirectoryCreateError(f"Cannot create backup directory {backup_root}: {exc}") from exc


def resolve_backup_path(source_root: Path, backup_root: Path, source_path: Path) -> Path:
    relative = Path(source_path).relative_to(source_root)
    backup_path = backup_root / relative

    try:
        backup_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise DirectoryCreateError(f"Cannot create directory {backup_path.parent}: {exc}") from exc
    return backup_path

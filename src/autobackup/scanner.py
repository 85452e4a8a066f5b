from __future__ import annotations

import os
from pathlib import Path
import threading
from typing import Iterator

from autobackup.errors import SourceNotFoundError
from autobackup.ignore_engine import IgnoreEngine


def _walk(
    source_root: Path,
    ignore: IgnoreEngine | None,
    follow_symlinks: bool,
    stop_event: threading.Event | None,
) -> Iterator[Path]:
    for root_str, dirs, files in os.walk(source_root, topdown=True, followlinks=follow_symlinks):
        if stop_event is not None and stop_event.is_set():
            return

        root = Path(root_str)
        root_rel = root.relative_to(source_root)

        if ignore is not None:
            dirs[:] = [name for name in dirs if not ignore.is_ignored(root_rel / name, is_dir=True)]

        for file_name in files:
            if stop_event is not None and stop_event.is_set():
                return
            if ignore is not None and ignore.is_ignored(root_rel / file_name):
                continue
            candidate = root / file_name
            if candidate.is_file():
                yield candidate


def iter_source_files(
    source_root: Path,
    ignore: IgnoreEngine | None = None,
    follow_symlinks: bool = False,
    stop_event: threading.Event | None = None,
) -> Iterator[Path]:
    """Lazily enumerate every regular file below ``source_root``.

    The root is checked up front so a missing source fails at call time rather
    than on first iteration. Enumeration ends early once ``stop_event`` is set.
    """
    if not source_root.is_dir():
        raise SourceNotFoundError(f"Source directory not found: {source_root}")
    return _walk(source_root, ignore, follow_symlinks, stop_event)

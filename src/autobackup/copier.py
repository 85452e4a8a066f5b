from __future__ import annotations

from dataclasses import dataclass, field
import errno
import logging
import os
from pathlib import Path
import shutil
import tempfile
import time
from typing import Callable

from autobackup.errors import StaleFileError
from autobackup.models import CopyOutcome, CopyStatus


DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = 0.5

# ERROR_SHARING_VIOLATION, ERROR_LOCK_VIOLATION
_WINDOWS_LOCK_ERRORS = {32, 33}
_PERMANENT_ERRNOS = {errno.ENAMETOOLONG, errno.EINVAL, errno.ELOOP}
_PERMANENT_TYPES = (PermissionError, FileNotFoundError, IsADirectoryError, NotADirectoryError)

log = logging.getLogger("autobackup.copier")


def should_copy(source_file: Path, backup_file: Path) -> bool:
    try:
        source_mtime = source_file.stat().st_mtime_ns
    except FileNotFoundError as exc:
        raise StaleFileError(f"Source file vanished: {source_file}") from exc

    try:
        backup_mtime = backup_file.stat().st_mtime_ns
    except FileNotFoundError:
        return True

    return source_mtime > backup_mtime


def is_transient_error(exc: BaseException) -> bool:
    if not isinstance(exc, OSError):
        return False
    if getattr(exc, "winerror", None) in _WINDOWS_LOCK_ERRORS:
        return True
    if isinstance(exc, _PERMANENT_TYPES):
        return False
    return exc.errno not in _PERMANENT_ERRNOS


def atomic_copy(source_file: Path, destination_file: Path) -> bool:
    """Copy content into a temp file beside the destination, then swap it in.

    The temp file is stamped with the source mtime read *before* the bytes were
    copied, so a write that lands mid-copy still looks newer than the backup.
    Returns False when the destination turned out to be strictly newer than the
    copied data; the destination is then left as it was.
    """
    source_stat = os.stat(source_file)
    with tempfile.NamedTemporaryFile(
        delete=False, dir=str(destination_file.parent), prefix=".autobackup-", suffix=".tmp"
    ) as tmp:
        tmp_path = Path(tmp.name)
    try:
        shutil.copyfile(source_file, tmp_path)
        shutil.copymode(source_file, tmp_path)
        os.utime(tmp_path, ns=(source_stat.st_atime_ns, source_stat.st_mtime_ns))
        try:
            if destination_file.stat().st_mtime_ns > source_stat.st_mtime_ns:
                return False
        except FileNotFoundError:
            pass
        os.replace(tmp_path, destination_file)
        return True
    finally:
        if tmp_path.exists():
            tmp_path.unlink(missing_ok=True)


@dataclass(slots=True)
class RetryingCopier:
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    retry_delay: float = DEFAULT_RETRY_DELAY
    copy_func: Callable[[Path, Path], bool] = atomic_copy
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def copy(self, source_file: Path, destination_file: Path) -> CopyOutcome:
        attempts = 0
        last_error: BaseException | None = None

        while attempts < max(1, self.max_attempts):
            attempts += 1
            try:
                replaced = self.copy_func(source_file, destination_file)
            except Exception as exc:
                last_error = exc
                if not is_transient_error(exc):
                    break
                log.debug(
                    "Transient copy error (attempt %s/%s) %s: %s",
                    attempts,
                    self.max_attempts,
                    source_file,
                    exc,
                )
                if attempts < self.max_attempts:
                    self.sleep(self.retry_delay)
                continue

            status = CopyStatus.SKIPPED if replaced is False else CopyStatus.COPIED
            return CopyOutcome(status=status, attempts=attempts)

        return CopyOutcome(status=CopyStatus.FAILED, attempts=attempts, error=last_error)

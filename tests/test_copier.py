import errno
import os
from pathlib import Path
import shutil

import pytest

from autobackup.copier import RetryingCopier, atomic_copy, is_transient_error, should_copy
from autobackup.errors import StaleFileError
from autobackup.models import CopyStatus


def _write(path: Path, content: str, mtime: float | None = None) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    if mtime is not None:
        os.utime(path, (mtime, mtime))


class FlakyCopy:
    def __init__(self, failures: int, error: OSError | None = None) -> None:
        self.failures = failures
        self.error = error or OSError(errno.EBUSY, "Device or resource busy")
        self.calls = 0

    def __call__(self, source: Path, destination: Path) -> bool:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return atomic_copy(source, destination)


def test_should_copy_when_backup_missing(tmp_path: Path) -> None:
    _write(tmp_path / "src" / "a.txt", "x")

    assert should_copy(tmp_path / "src" / "a.txt", tmp_path / "backup" / "a.txt") is True


def test_should_copy_only_when_source_strictly_newer(tmp_path: Path) -> None:
    source = tmp_path / "src" / "a.txt"
    backup = tmp_path / "backup" / "a.txt"
    _write(source, "new", mtime=2_000_000)
    _write(backup, "old", mtime=1_000_000)

    assert should_copy(source, backup) is True

    os.utime(backup, (2_000_000, 2_000_000))
    assert should_copy(source, backup) is False

    os.utime(backup, (3_000_000, 3_000_000))
    assert should_copy(source, backup) is False


def test_should_copy_on_vanished_source_signals_stale(tmp_path: Path) -> None:
    with pytest.raises(StaleFileError):
        should_copy(tmp_path / "gone.txt", tmp_path / "backup.txt")


def test_atomic_copy_preserves_mtime_and_leaves_no_temp_files(tmp_path: Path) -> None:
    source = tmp_path / "src" / "a.txt"
    destination = tmp_path / "backup" / "a.txt"
    _write(source, "payload", mtime=1_500_000)
    destination.parent.mkdir(parents=True)

    assert atomic_copy(source, destination) is True

    assert destination.read_text(encoding="utf-8") == "payload"
    assert destination.stat().st_mtime_ns == source.stat().st_mtime_ns
    assert [p.name for p in destination.parent.iterdir()] == ["a.txt"]
    assert should_copy(source, destination) is False


def test_atomic_copy_never_replaces_a_strictly_newer_backup(tmp_path: Path) -> None:
    source = tmp_path / "src" / "a.txt"
    destination = tmp_path / "backup" / "a.txt"
    _write(source, "older", mtime=1_000_000)
    _write(destination, "newer", mtime=2_000_000)

    assert atomic_copy(source, destination) is False

    assert destination.read_text(encoding="utf-8") == "newer"
    assert [p.name for p in destination.parent.iterdir()] == ["a.txt"]


def test_write_during_copy_is_picked_up_by_the_next_copy(tmp_path: Path, monkeypatch) -> None:
    source = tmp_path / "src" / "a.txt"
    destination = tmp_path / "backup" / "a.txt"
    _write(source, "old", mtime=1_000_000)
    destination.parent.mkdir(parents=True)
    real_copyfile = shutil.copyfile

    def copy_then_rewrite_source(src, dst, *args, **kwargs):
        result = real_copyfile(src, dst, *args, **kwargs)
        _write(source, "new", mtime=2_000_000)
        return result

    monkeypatch.setattr(shutil, "copyfile", copy_then_rewrite_source)
    assert atomic_copy(source, destination) is True
    monkeypatch.undo()

    assert destination.read_text(encoding="utf-8") == "old"
    assert destination.stat().st_mtime_ns < source.stat().st_mtime_ns
    assert should_copy(source, destination) is True

    assert atomic_copy(source, destination) is True
    assert destination.read_text(encoding="utf-8") == "new"
    assert should_copy(source, destination) is False


def test_copier_retries_transient_failures_then_succeeds(tmp_path: Path) -> None:
    source = tmp_path / "src" / "a.txt"
    destination = tmp_path / "backup" / "a.txt"
    _write(source, "x")
    destination.parent.mkdir(parents=True)
    delays: list[float] = []
    flaky = FlakyCopy(failures=2)

    copier = RetryingCopier(max_attempts=3, retry_delay=0.5, copy_func=flaky, sleep=delays.append)
    outcome = copier.copy(source, destination)

    assert outcome.status is CopyStatus.COPIED
    assert outcome.attempts == 3
    assert outcome.error is None
    assert delays == [0.5, 0.5]
    assert destination.read_text(encoding="utf-8") == "x"


def test_copier_gives_up_after_max_attempts_without_partial_file(tmp_path: Path) -> None:
    source = tmp_path / "src" / "a.txt"
    destination = tmp_path / "backup" / "a.txt"
    _write(source, "x")
    destination.parent.mkdir(parents=True)
    delays: list[float] = []
    flaky = FlakyCopy(failures=10)

    copier = RetryingCopier(max_attempts=3, retry_delay=0.1, copy_func=flaky, sleep=delays.append)
    outcome = copier.copy(source, destination)

    assert outcome.status is CopyStatus.FAILED
    assert outcome.attempts == 3
    assert isinstance(outcome.error, OSError)
    assert flaky.calls == 3
    assert delays == [0.1, 0.1]
    assert list(destination.parent.iterdir()) == []


def test_copier_does_not_retry_permanent_failures(tmp_path: Path) -> None:
    flaky = FlakyCopy(failures=10, error=PermissionError(errno.EACCES, "Permission denied"))
    delays: list[float] = []

    copier = RetryingCopier(max_attempts=3, copy_func=flaky, sleep=delays.append)
    outcome = copier.copy(tmp_path / "a.txt", tmp_path / "b.txt")

    assert outcome.status is CopyStatus.FAILED
    assert outcome.attempts == 1
    assert delays == []


def test_copier_reports_missing_source_as_failed(tmp_path: Path) -> None:
    (tmp_path / "backup").mkdir()

    outcome = RetryingCopier(sleep=lambda _: None).copy(tmp_path / "missing.txt", tmp_path / "backup" / "x.txt")

    assert outcome.status is CopyStatus.FAILED
    assert outcome.attempts == 1
    assert list((tmp_path / "backup").iterdir()) == []


def test_transient_error_classification() -> None:
    sharing_violation = PermissionError(errno.EACCES, "locked")
    sharing_violation.winerror = 32  # type: ignore[attr-defined]

    assert is_transient_error(OSError(errno.EBUSY, "busy")) is True
    assert is_transient_error(OSError(errno.EIO, "io")) is True
    assert is_transient_error(sharing_violation) is True
    assert is_transient_error(PermissionError(errno.EACCES, "denied")) is False
    assert is_transient_error(OSError(errno.ENAMETOOLONG, "too long")) is False
    assert is_transient_error(ValueError("bad path")) is False

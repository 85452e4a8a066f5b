from pathlib import Path
import threading
import time

from autobackup.config import MirrorConfig
from autobackup.run_service import (
    EXIT_INVALID_CONFIG,
    EXIT_SUCCESS,
    configure_logging,
    run_mirror_once,
    run_watch_service,
)


def _write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def _wait_for(path: Path, content: str, timeout: float = 10.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            if path.read_text(encoding="utf-8") == content:
                return True
        except OSError:
            pass
        time.sleep(0.1)
    return False


def test_run_mirror_once_copies_tree(tmp_path: Path) -> None:
    src = tmp_path / "src"
    _write(src / "a.txt", "1")
    _write(src / "nested" / "b.txt", "2")
    config = MirrorConfig(source_root=src, backup_root=tmp_path / "backup")

    exit_code, stats = run_mirror_once(config)

    assert exit_code == EXIT_SUCCESS
    assert stats.copied == 2
    assert (tmp_path / "backup" / "nested" / "b.txt").read_text(encoding="utf-8") == "2"


def test_run_mirror_once_missing_source_is_fatal(tmp_path: Path) -> None:
    config = MirrorConfig(source_root=tmp_path / "missing", backup_root=tmp_path / "backup")

    exit_code, stats = run_mirror_once(config)

    assert exit_code == EXIT_INVALID_CONFIG
    assert stats.copied == 0
    assert not (tmp_path / "backup").exists()


def test_run_watch_service_mirrors_live_changes_until_stopped(tmp_path: Path) -> None:
    src = tmp_path / "src"
    backup = tmp_path / "backup"
    _write(src / "a" / "b.txt", "x")
    config = MirrorConfig(source_root=src, backup_root=backup)
    stop_event = threading.Event()
    result: list[int] = []

    runner = threading.Thread(target=lambda: result.append(run_watch_service(config, stop_event=stop_event)))
    runner.start()
    try:
        assert _wait_for(backup / "a" / "b.txt", "x")

        staged = tmp_path / "staging" / "new.txt"
        _write(staged, "fresh")
        staged.replace(src / "a" / "new.txt")
        assert _wait_for(backup / "a" / "new.txt", "fresh")
    finally:
        stop_event.set()
        runner.join(timeout=30)

    assert not runner.is_alive()
    assert result == [EXIT_SUCCESS]


def test_run_watch_service_missing_source_returns_invalid_config(tmp_path: Path) -> None:
    config = MirrorConfig(source_root=tmp_path / "missing", backup_root=tmp_path / "backup")

    exit_code = run_watch_service(config, stop_event=threading.Event())

    assert exit_code == EXIT_INVALID_CONFIG


def test_configure_logging_writes_rotating_log_file(tmp_path: Path) -> None:
    log_file = tmp_path / "logs" / "autobackup.log"

    logger = configure_logging(log_file, "DEBUG")
    logger.getChild("engine").info("Backed up: %s", "a.txt")
    for handler in logger.handlers:
        handler.flush()

    assert "Backed up: a.txt" in log_file.read_text(encoding="utf-8")

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
import signal
import threading

from autobackup.config import MirrorConfig
from autobackup.errors import AutoBackupError
from autobackup.mirror_engine import MirrorEngine
from autobackup.models import MirrorStats


EXIT_SUCCESS = 0
EXIT_RUNTIME_OR_CONFIG_ERROR = 1
EXIT_PARTIAL_FAILURES = 2
EXIT_INVALID_CONFIG = 3

LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"


def configure_logging(log_file: Path | None = None, level: str = "INFO") -> logging.Logger:
    logger = logging.getLogger("autobackup")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(log_file, maxBytes=1_000_000, backupCount=3, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def _install_signal_handlers(stop_event: threading.Event) -> None:
    if threading.current_thread() is not threading.main_thread():
        return

    def _handle(signum: int, _frame: object) -> None:
        stop_event.set()

    signal.signal(signal.SIGINT, _handle)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _handle)


def run_mirror_once(
    config: MirrorConfig,
    logger: logging.Logger | None = None,
) -> tuple[int, MirrorStats]:
    log = logger or logging.getLogger("autobackup.run")
    engine = MirrorEngine(config)

    try:
        stats = engine.run_once()
    except (AutoBackupError, ValueError) as exc:
        log.error("Config/runtime error: %s", exc)
        return EXIT_INVALID_CONFIG, MirrorStats()
    except OSError as exc:
        log.error("Mirror failed for source %s: %s", config.source_root, exc)
        return EXIT_RUNTIME_OR_CONFIG_ERROR, MirrorStats()

    log.info(
        "%s -> %s | copied=%s skipped=%s failed=%s",
        config.source_root,
        config.backup_root,
        stats.copied,
        stats.skipped,
        stats.failed,
    )
    exit_code = EXIT_PARTIAL_FAILURES if stats.failed else EXIT_SUCCESS
    return exit_code, stats


def run_watch_service(
    config: MirrorConfig,
    stop_event: threading.Event | None = None,
    logger: logging.Logger | None = None,
    engine: MirrorEngine | None = None,
) -> int:
    """Mirror ``config.source_root`` until ``stop_event`` is set or a signal arrives."""
    log = logger or logging.getLogger("autobackup.run")
    stop = stop_event or threading.Event()
    if stop_event is None:
        _install_signal_handlers(stop)

    engine = engine or MirrorEngine(config)
    log.info("Auto folder backup started: %s -> %s", config.source_root, config.backup_root)
    try:
        engine.run(stop)
    except (AutoBackupError, ValueError) as exc:
        log.error("Config/runtime error: %s", exc)
        return EXIT_INVALID_CONFIG
    except OSError as exc:
        log.error("Backup service failed: %s", exc)
        return EXIT_RUNTIME_OR_CONFIG_ERROR

    return EXIT_PARTIAL_FAILURES if engine.totals.failed else EXIT_SUCCESS

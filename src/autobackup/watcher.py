from __future__ import annotations

from enum import Enum
import logging
import os
from pathlib import Path
import queue
import threading
from typing import Callable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from autobackup.errors import WatcherError
from autobackup.models import ChangeEvent, ChangeKind


OBSERVER_JOIN_TIMEOUT = 10.0


class WatcherState(str, Enum):
    STOPPED = "stopped"
    WATCHING = "watching"


def _as_path(raw: str | bytes) -> Path:
    return Path(os.fsdecode(raw))


class _ChangeHandler(FileSystemEventHandler):
    """Translates watchdog callbacks into ChangeEvents on the watcher's queue."""

    def __init__(self, watcher: ChangeWatcher) -> None:
        super().__init__()
        self._watcher = watcher

    def dispatch(self, event: FileSystemEvent) -> None:
        # An exception escaping here would kill the observer thread.
        try:
            super().dispatch(event)
        except Exception as exc:
            self._watcher.report_error(exc)

    def on_created(self, event: FileSystemEvent) -> None:
        self._file_changed(ChangeKind.CREATED, event)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._file_changed(ChangeKind.MODIFIED, event)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._watcher.emit(
            ChangeEvent(
                kind=ChangeKind.RENAMED,
                path=_as_path(event.dest_path),
                old_path=_as_path(event.src_path),
            )
        )

    def _file_changed(self, kind: ChangeKind, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        path = _as_path(event.src_path)
        if path.is_dir():
            return
        self._watcher.emit(ChangeEvent(kind=kind, path=path))


class ChangeWatcher:
    def __init__(
        self,
        source_root: Path,
        observer_factory: Callable[[], BaseObserver] = Observer,
        logger: logging.Logger | None = None,
    ) -> None:
        self.source_root = source_root
        self.events: queue.Queue[ChangeEvent] = queue.Queue()
        self.errors: queue.Queue[BaseException] = queue.Queue()
        self.handler = _ChangeHandler(self)

        self._observer_factory = observer_factory
        self._observer: BaseObserver | None = None
        self._state = WatcherState.STOPPED
        self._lock = threading.Lock()
        self._death_reported = False
        self._log = logger or logging.getLogger("autobackup.watcher")

    @property
    def state(self) -> WatcherState:
        return self._state

    def start(self) -> None:
        with self._lock:
            if self._state is WatcherState.WATCHING:
                return
            observer = self._observer_factory()
            observer.schedule(self.handler, str(self.source_root), recursive=True)
            observer.start()
            self._observer = observer
            self._death_reported = False
            self._state = WatcherState.WATCHING
        self._log.info("Watcher started: %s", self.source_root)

    def stop(self) -> None:
        with self._lock:
            observer, self._observer = self._observer, None
            self._state = WatcherState.STOPPED
        if observer is None:
            return
        observer.stop()
        if observer.is_alive():
            observer.join(timeout=OBSERVER_JOIN_TIMEOUT)
        self._log.info("Watcher stopped: %s", self.source_root)

    def emit(self, event: ChangeEvent) -> None:
        self.events.put(event)

    def report_error(self, error: BaseException) -> None:
        self.errors.put(error)

    def check_health(self) -> bool:
        """Report an observer thread that died while the watch should be active."""
        with self._lock:
            observer = self._observer
            if self._state is not WatcherState.WATCHING or observer is None:
                return True
            if observer.is_alive():
                return True
            if self._death_reported:
                return False
            self._death_reported = True
        self.report_error(WatcherError(f"Observer thread for {self.source_root} stopped unexpectedly"))
        return False

    def drain_errors(self) -> list[BaseException]:
        drained: list[BaseException] = []
        while True:
            try:
                drained.append(self.errors.get_nowait())
            except queue.Empty:
                return drained

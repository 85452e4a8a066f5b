from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
import logging
from pathlib import Path
import queue
import threading

from autobackup.config import MirrorConfig
from autobackup.copier import RetryingCopier, should_copy
from autobackup.errors import DirectoryCreateError, SourceNotFoundError, StaleFileError
from autobackup.ignore_engine import IgnoreEngine, build_ignore_engine
from autobackup.models import ChangeEvent, ChangeKind, CopyOutcome, CopyStatus, MirrorStats
from autobackup.paths import prepare_roots, resolve_backup_path
from autobackup.scanner import iter_source_files
from autobackup.watcher import ChangeWatcher


EVENT_POLL_INTERVAL = 0.2


class MirrorEngine:
    """Keeps ``config.backup_root`` in step with ``config.source_root``.

    A full scan runs once at startup while the watcher is already live; watcher
    events are then fanned out to a worker pool for the rest of the run. Copies of
    the same file may overlap. The atomic replace in the copier plus the mtime
    check keep an older write from landing over a newer one.
    """

    def __init__(
        self,
        config: MirrorConfig,
        copier: RetryingCopier | None = None,
        watcher: ChangeWatcher | None = None,
        ignore: IgnoreEngine | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.copier = copier or RetryingCopier(max_attempts=config.max_attempts, retry_delay=config.retry_delay)
        self.watcher = watcher or ChangeWatcher(config.source_root)
        self.log = logger or logging.getLogger("autobackup.engine")
        self.totals = MirrorStats()

        self._ignore = ignore
        self._stop_event = threading.Event()
        self._stats_lock = threading.Lock()
        self._pending: set[Path] = set()
        self._pending_lock = threading.Lock()
        self._executor: ThreadPoolExecutor | None = None
        self._scan_executor: ThreadPoolExecutor | None = None

    @property
    def ignore(self) -> IgnoreEngine:
        if self._ignore is None:
            self._ignore = build_ignore_engine(self.config)
        return self._ignore

    def _is_ignored(self, path: Path) -> bool:
        try:
            relative = path.relative_to(self.config.source_root)
        except ValueError:
            return True
        return self.ignore.is_ignored(relative, is_dir=path.is_dir())

    def _record(self, outcome: CopyOutcome) -> None:
        with self._stats_lock:
            self.totals.record(outcome)

    def mirror_file(self, source_file: Path) -> CopyOutcome:
        relative = source_file.relative_to(self.config.source_root)
        try:
            destination = resolve_backup_path(self.config.source_root, self.config.backup_root, source_file)
            if not should_copy(source_file, destination):
                self.log.debug("Up to date: %s", relative)
                outcome = CopyOutcome(status=CopyStatus.SKIPPED)
                self._record(outcome)
                return outcome
        except StaleFileError:
            self.log.info("Skipped, file moved on: %s", relative)
            outcome = CopyOutcome(status=CopyStatus.SKIPPED)
            self._record(outcome)
            return outcome
        except (DirectoryCreateError, OSError) as exc:
            self.log.error("Backup failed for %s: %s", relative, exc)
            outcome = CopyOutcome(status=CopyStatus.FAILED, error=exc)
            self._record(outcome)
            return outcome

        outcome = self.copier.copy(source_file, destination)
        if outcome.status is CopyStatus.COPIED:
            self.log.info("Backed up: %s (attempts=%s)", relative, outcome.attempts)
        elif outcome.status is CopyStatus.SKIPPED:
            self.log.debug("Newer backup already present: %s", relative)
        else:
            self.log.error(
                "Backup failed for %s after %s attempt(s): %s",
                relative,
                outcome.attempts,
                outcome.error,
            )
        self._record(outcome)
        return outcome

    def mirror_tree(self, root: Path | None = None, stop_event: threading.Event | None = None) -> MirrorStats:
        """Mirror every file below ``root`` (default: the whole source) sequentially."""
        whole_source = root is None or root == self.config.source_root
        stats = MirrorStats()
        files = iter_source_files(
            self.config.source_root if whole_source else root,
            ignore=self.ignore if whole_source else None,
            follow_symlinks=self.config.follow_symlinks,
            stop_event=stop_event,
        )
        for source_file in files:
            if not whole_source and self._is_ignored(source_file):
                continue
            stats.record(self.mirror_file(source_file))
        return stats

    def initial_scan(self, stop_event: threading.Event | None = None) -> MirrorStats:
        self.log.info("Initial scan started: %s -> %s", self.config.source_root, self.config.backup_root)
        stats = self.mirror_tree(stop_event=stop_event)
        self.log.info(
            "Initial scan completed: copied=%s skipped=%s failed=%s",
            stats.copied,
            stats.skipped,
            stats.failed,
        )
        return stats

    def rescan(self) -> Future[MirrorStats]:
        executor = self._scan_executor
        if executor is None or self._stop_event.is_set():
            raise RuntimeError("MirrorEngine is not running")
        future = executor.submit(self.initial_scan, self._stop_event)
        future.add_done_callback(self._scan_finished)
        return future

    def _scan_finished(self, future: Future[MirrorStats]) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            self.log.error("Initial scan aborted: %s", exc)

    def handle_event(self, event: ChangeEvent) -> Future[object] | None:
        if event.kind is ChangeKind.RENAMED:
            self.log.info("Rename detected: %s -> %s", event.old_path, event.path)
        else:
            self.log.info("Change detected (%s): %s", event.kind.value, event.path)

        if self._is_ignored(event.path):
            return None
        return self._submit(event.path)

    def _submit(self, path: Path) -> Future[object] | None:
        if self._executor is None:
            raise RuntimeError("MirrorEngine is not started")
        with self._pending_lock:
            if path in self._pending:
                return None
            self._pending.add(path)
        return self._executor.submit(self._run_pending, path)

    def _run_pending(self, path: Path) -> object:
        with self._pending_lock:
            self._pending.discard(path)
        try:
            if path.is_dir():
                return self.mirror_tree(path, stop_event=self._stop_event)
            return self.mirror_file(path)
        except SourceNotFoundError:
            self.log.info("Skipped, directory moved on: %s", path)
            return MirrorStats()
        except Exception:
            self.log.exception("Unexpected error mirroring %s", path)
            raise

    def _report_watcher_errors(self) -> None:
        self.watcher.check_health()
        for error in self.watcher.drain_errors():
            self.log.error("Watcher error occurred: %s", error)

    def start(self) -> Future[MirrorStats]:
        prepare_roots(self.config.source_root, self.config.backup_root)
        self._stop_event.clear()
        self._executor = ThreadPoolExecutor(max_workers=self.config.workers, thread_name_prefix="autobackup-copy")
        try:
            self.watcher.start()
        except Exception:
            self._executor.shutdown(wait=False)
            self._executor = None
            raise
        self._scan_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="autobackup-scan")
        return self.rescan()

    def process_pending_events(self, timeout: float = EVENT_POLL_INTERVAL) -> int:
        """Dispatch queued watcher events, waiting up to ``timeout`` for the first one."""
        dispatched = 0
        block = True
        while True:
            try:
                event = self.watcher.events.get(timeout=timeout) if block else self.watcher.events.get_nowait()
            except queue.Empty:
                break
            block = False
            self.handle_event(event)
            dispatched += 1
        self._report_watcher_errors()
        return dispatched

    def run(self, stop_event: threading.Event) -> None:
        self.start()
        try:
            while not stop_event.is_set():
                self.process_pending_events()
        finally:
            self.stop()

    def stop(self) -> None:
        self._stop_event.set()
        self.watcher.stop()
        for executor in (self._executor, self._scan_executor):
            if executor is not None:
                executor.shutdown(wait=True)
        self._executor = None
        self._scan_executor = None
        self._report_watcher_errors()
        self.log.info(
            "Backup service stopped: copied=%s skipped=%s failed=%s",
            self.totals.copied,
            self.totals.skipped,
            self.totals.failed,
        )

    def run_once(self) -> MirrorStats:
        prepare_roots(self.config.source_root, self.config.backup_root)
        return self.initial_scan()

"""Continuous backup service: watchers feed the queue, one loop drains it."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

from watchdog.observers import Observer

from folderback.config import ConfigError
from folderback.config.models import BackupSettings
from folderback.records import BackupTimestampError, ChangeEvent
from folderback.store import BackendStore
from folderback.watch import ChangeQueue, FolderWatcher

from .dispatcher import ChangeDispatcher

try:  # pragma: no cover - platform dependent
    import fcntl
except ImportError:  # pragma: no cover - Windows has no advisory flock
    fcntl = None  # type: ignore[assignment]

LOGGER = logging.getLogger(__name__)

_PROCESSED = "processed"
_LOCKED = "locked"
_SKIPPED = "skipped"


def is_file_locked(path: Path) -> bool:
    """Return whether another writer currently holds ``path`` exclusively.

    Missing files are never locked; deletes and vanished files flow through.
    """
    if not path.exists():
        return False
    try:
        with path.open("rb") as handle:
            if fcntl is not None:
                try:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_SH | fcntl.LOCK_NB)
                except BlockingIOError:
                    return True
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
    except PermissionError:
        return True
    except OSError:
        return False
    return False


@dataclass(slots=True)
class BackupRunSummary:
    """Outcome of draining the change queue.

    Attributes:
        processed: Events applied to the store.
        skipped: Relative paths whose events were dropped (bad name, vanished file, lock limit).
        locked: Relative paths still locked when a one-shot drain gave up.
    """

    processed: int = 0
    skipped: list[str] = field(default_factory=list)
    locked: list[str] = field(default_factory=list)


class BackupService:
    """Wire folder watchers, the change queue, and the dispatcher together."""

    def __init__(
        self,
        settings: BackupSettings,
        store: BackendStore,
        *,
        lock_probe: Callable[[Path], bool] = is_file_locked,
        observer_factory: Callable[[], Any] = Observer,
    ) -> None:
        """Initialize the backup service.

        Args:
            settings: Backup settings listing the watched folders.
            store: Backend store receiving backups.
            lock_probe: Callable reporting whether a source file is locked.
            observer_factory: Factory for the watchdog observer.
        """
        self._settings = settings
        self._queue = ChangeQueue()
        self._dispatcher = ChangeDispatcher(store)
        self._lock_probe = lock_probe
        self._observer_factory = observer_factory
        self._observer: Any | None = None
        self._stop_event = threading.Event()
        self._watchers = [
            FolderWatcher(folder, rename_window_seconds=settings.rename_window_seconds)
            for folder in settings.folders
        ]

    @property
    def queue(self) -> ChangeQueue:
        return self._queue

    # ------------------------------------------------------------------ #
    # Public API                                                         #
    # ------------------------------------------------------------------ #

    def process_once(self) -> BackupRunSummary:
        """Back up every existing file once and drain the queue.

        Raises:
            ConfigError: If a watched folder does not exist.
        """
        self._check_folders()
        for watcher in self._watchers:
            watcher.enqueue_existing(self._queue)
        return self.drain()

    def run(self, stop_event: Optional[threading.Event] = None) -> None:
        """Watch all folders and process changes until stopped.

        Args:
            stop_event: Optional external stop signal; :meth:`stop` sets it too.

        Raises:
            ConfigError: If a watched folder does not exist.
            RuntimeError: If the service is already running.
            StoreError: If a backend operation fails; the run ends.
        """
        if self._observer is not None:
            raise RuntimeError("BackupService is already running.")
        if stop_event is not None:
            self._stop_event = stop_event
        self._check_folders()
        if not self._watchers:
            LOGGER.warning("No folders to monitor")

        observer = self._observer_factory()
        for watcher in self._watchers:
            watcher.schedule(observer, self._queue)
        observer.start()
        self._observer = observer

        try:
            for watcher in self._watchers:
                watcher.enqueue_existing(self._queue)
            self._run_loop()
        finally:
            self.stop()

    def stop(self) -> None:
        """Signal the loop to exit and stop the observer."""
        self._stop_event.set()
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None
            LOGGER.info("Stopped watching %d folder(s)", len(self._watchers))

    def drain(self) -> BackupRunSummary:
        """Process queued events until the queue is empty or only locked files remain."""
        summary = BackupRunSummary()
        while len(self._queue):
            progressed = False
            for _ in range(len(self._queue)):
                event = self._queue.get_nowait()
                if event is None:
                    break
                outcome = self._handle(event)
                if outcome == _PROCESSED:
                    summary.processed += 1
                    progressed = True
                elif outcome == _SKIPPED:
                    summary.skipped.append(event.relative_path)
                    progressed = True
            if not progressed:
                break

        while (event := self._queue.get_nowait()) is not None:
            LOGGER.warning("Giving up on locked file: %s", event.file.path)
            summary.locked.append(event.relative_path)
        return summary

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #

    def _run_loop(self) -> None:
        interval = self._settings.poll_interval_seconds
        while not self._stop_event.is_set():
            event = self._queue.get_nowait()
            if event is None:
                LOGGER.debug("No file changes detected, waiting...")
                self._stop_event.wait(interval)
                continue
            if self._handle(event) == _LOCKED:
                self._stop_event.wait(interval)

    def _handle(self, event: ChangeEvent) -> str:
        if self._lock_probe(event.file.path):
            limit = self._settings.locked_files.max_requeues
            if limit and event.requeues >= limit:
                LOGGER.error(
                    "File still locked after %d requeues, dropping: %s",
                    event.requeues,
                    event.file.path,
                )
                return _SKIPPED
            LOGGER.warning("File is locked, re-enqueuing: %s", event.file.path)
            self._queue.requeue(event)
            return _LOCKED

        try:
            self._dispatcher.dispatch(event)
        except BackupTimestampError as exc:
            LOGGER.error("Skipping %s: %s", event.relative_path, exc)
            return _SKIPPED
        except FileNotFoundError:
            LOGGER.warning("File disappeared before it could be backed up: %s", event.file.path)
            return _SKIPPED
        return _PROCESSED

    def _check_folders(self) -> None:
        for watcher in self._watchers:
            root = watcher.folder.root
            if not root.is_dir():
                raise ConfigError(f"Watched folder does not exist: {root}")


__all__ = ["BackupRunSummary", "BackupService", "is_file_locked"]

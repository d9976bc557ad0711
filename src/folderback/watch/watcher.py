"""Folder watcher that feeds filesystem changes into a :class:`ChangeQueue`."""

from __future__ import annotations

import logging
import os
import threading
import time
from pathlib import Path
from typing import Any, Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler

from folderback.config.models import FolderBackupSettings
from folderback.records import ChangeEvent, ChangeKind

from .changes import ChangeQueue

LOGGER = logging.getLogger(__name__)


class FolderWatcher:
    """Observe one watched folder and translate notifications into change events."""

    def __init__(
        self,
        folder: FolderBackupSettings,
        *,
        rename_window_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the watcher.

        Args:
            folder: Settings of the folder to observe.
            rename_window_seconds: How long after a rename its delete/create echoes are dropped.
            clock: Monotonic clock used for the rename window.
        """
        self._folder = folder
        self._rename_window = rename_window_seconds
        self._clock = clock
        self._handler: Optional[FolderEventHandler] = None

    @property
    def folder(self) -> FolderBackupSettings:
        return self._folder

    def schedule(self, observer: Any, changes: ChangeQueue) -> "FolderEventHandler":
        """Register a recursive handler for the folder on ``observer``.

        Args:
            observer: watchdog observer that delivers notifications.
            changes: Queue receiving the translated events.

        Returns:
            FolderEventHandler: The handler scheduled on the observer.
        """
        if self._handler is not None:
            LOGGER.warning("Folder %s is already being watched.", self._folder.folder_path)
            return self._handler

        self._handler = FolderEventHandler(
            self._folder,
            changes,
            rename_window_seconds=self._rename_window,
            clock=self._clock,
        )
        observer.schedule(self._handler, str(self._folder.root), recursive=True)
        LOGGER.info("Started watching folder: %s", self._folder.root)
        return self._handler

    def enqueue_existing(self, changes: ChangeQueue) -> int:
        """Queue a kind-less event for every existing matching file.

        Returns:
            int: Number of events queued.
        """
        root = self._folder.root
        count = 0
        for path in sorted(root.rglob("*")):
            if not path.is_file() or not self._folder.matches_extension(path):
                continue
            changes.put(ChangeEvent.for_path(None, self._folder, path))
            count += 1
        LOGGER.info("Queued %d existing files in folder: %s", count, root)
        return count


class FolderEventHandler(FileSystemEventHandler):
    """Forward watchdog events for one folder into the change queue.

    Directory events and files outside the extension filter are ignored. Deletes
    are dropped unless ``remove_on_delete`` is set. Some platforms report a rename
    as a move plus a separate delete of the source and create of the destination;
    those echoes are dropped for ``rename_window_seconds`` after the move.
    """

    def __init__(
        self,
        folder: FolderBackupSettings,
        changes: ChangeQueue,
        *,
        rename_window_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._folder = folder
        self._changes = changes
        self._rename_window = rename_window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._moved_from: dict[Path, float] = {}
        self._moved_to: dict[Path, float] = {}

    def on_created(self, event: FileSystemEvent) -> None:
        """Handle a filesystem create event."""
        path = self._file_path(event.src_path, event)
        if path is None or self._is_echo(self._moved_to, path):
            return
        self._enqueue(ChangeKind.CREATED, path)

    def on_modified(self, event: FileSystemEvent) -> None:
        """Handle a filesystem modify event."""
        path = self._file_path(event.src_path, event)
        if path is None:
            return
        self._enqueue(ChangeKind.MODIFIED, path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        """Handle a filesystem delete event."""
        if not self._folder.remove_on_delete:
            return
        path = self._file_path(event.src_path, event)
        if path is None or self._is_echo(self._moved_from, path):
            return
        self._enqueue(ChangeKind.DELETED, path)

    def on_moved(self, event: FileSystemEvent) -> None:
        """Handle a filesystem rename/move event."""
        if event.is_directory:
            return
        source = Path(os.fsdecode(event.src_path))
        destination = Path(os.fsdecode(event.dest_path))
        self._remember_move(source, destination)

        source_matches = self._folder.matches_extension(source)
        destination_matches = self._folder.matches_extension(destination)
        if source_matches and destination_matches:
            self._changes.put(
                ChangeEvent.for_path(ChangeKind.RENAMED, self._folder, destination, old_path=source)
            )
            LOGGER.info("File renamed from %s to %s", source, destination)
        elif destination_matches:
            self._enqueue(ChangeKind.CREATED, destination)
        elif source_matches and self._folder.remove_on_delete:
            self._enqueue(ChangeKind.DELETED, source)

    # Internal helpers -------------------------------------------------

    def _file_path(self, raw: Any, event: FileSystemEvent) -> Optional[Path]:
        if event.is_directory:
            return None
        path = Path(os.fsdecode(raw))
        if not self._folder.matches_extension(path):
            return None
        return path

    def _enqueue(self, kind: ChangeKind, path: Path) -> None:
        self._changes.put(ChangeEvent.for_path(kind, self._folder, path))
        LOGGER.info("File %s: %s", kind.value, path)

    def _remember_move(self, source: Path, destination: Path) -> None:
        now = self._clock()
        with self._lock:
            self._prune(now)
            self._moved_from[source] = now
            self._moved_to[destination] = now

    def _is_echo(self, recent: dict[Path, float], path: Path) -> bool:
        now = self._clock()
        with self._lock:
            self._prune(now)
            if path in recent:
                del recent[path]
                LOGGER.debug("Dropping duplicate rename notification for %s", path)
                return True
        return False

    def _prune(self, now: float) -> None:
        for recent in (self._moved_from, self._moved_to):
            expired = [path for path, seen in recent.items() if now - seen > self._rename_window]
            for path in expired:
                del recent[path]


__all__ = ["FolderEventHandler", "FolderWatcher"]

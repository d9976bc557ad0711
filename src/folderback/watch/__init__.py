"""Folder watching and the change queue."""

from .changes import ChangeQueue
from .watcher import FolderEventHandler, FolderWatcher

__all__ = ["ChangeQueue", "FolderEventHandler", "FolderWatcher"]

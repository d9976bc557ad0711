"""Change dispatching and the continuous backup service."""

from .dispatcher import ChangeDispatcher
from .service import BackupRunSummary, BackupService, is_file_locked

__all__ = ["BackupRunSummary", "BackupService", "ChangeDispatcher", "is_file_locked"]

"""Configuration models describing folderback settings."""

from __future__ import annotations

from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FolderbackBaseModel(BaseModel):
    """Shared configuration for folderback Pydantic models."""

    model_config = ConfigDict(extra="forbid")


def _normalize_extension(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    stripped = value.strip().lstrip(".").lower()
    return stripped or None


class FilesystemStoreSettings(FolderbackBaseModel):
    """Options for the local filesystem backend.

    Attributes:
        directory: Root directory holding one sub-directory per container.
    """

    directory: str = "~/.folderback/store"


class S3StoreSettings(FolderbackBaseModel):
    """Options for the S3 backend.

    Attributes:
        bucket_prefix: Prefix prepended to container names to form bucket names.
        region: AWS region used for the session.
        endpoint_url: Optional endpoint for S3-compatible services.
        profile: Optional named AWS profile.
    """

    bucket_prefix: str = ""
    region: Optional[str] = None
    endpoint_url: Optional[str] = None
    profile: Optional[str] = None


class StoreSettings(FolderbackBaseModel):
    """Backend store selection.

    Attributes:
        backend: Identifier of the backend implementation to use.
        filesystem: Local filesystem backend options.
        s3: S3 backend options.
    """

    backend: Literal["filesystem", "s3"] = "filesystem"
    filesystem: FilesystemStoreSettings = Field(default_factory=FilesystemStoreSettings)
    s3: S3StoreSettings = Field(default_factory=S3StoreSettings)


class FolderBackupSettings(FolderbackBaseModel):
    """A watched folder mirrored into one container.

    Attributes:
        container_name: Container receiving the folder's objects.
        folder_path: Folder to watch.
        file_extension: Optional extension filter (without the leading dot).
        remove_on_delete: Whether deleting a file deletes its backup.
        compress_files: Whether content is gzip-compressed before upload.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    container_name: str = Field(min_length=1)
    folder_path: str = Field(min_length=1)
    file_extension: Optional[str] = None
    remove_on_delete: bool = False
    compress_files: bool = False

    normalize_extension = field_validator("file_extension")(_normalize_extension)

    @property
    def root(self) -> Path:
        """Return the resolved folder path."""
        return Path(self.folder_path).expanduser().resolve()

    def matches_extension(self, path: Path) -> bool:
        """Return whether ``path`` passes the configured extension filter."""
        if self.file_extension is None:
            return True
        return path.suffix.lstrip(".").lower() == self.file_extension.lower()


class LockedFilePolicy(FolderbackBaseModel):
    """Policy describing how locked source files are retried.

    Attributes:
        max_requeues: Requeues allowed per event before it is dropped; 0 means unbounded.
    """

    max_requeues: int = Field(default=0, ge=0)


class BackupSettings(FolderbackBaseModel):
    """Settings for the continuous backup service.

    Attributes:
        poll_interval_seconds: Sleep interval when the change queue is empty.
        rename_window_seconds: Window used to drop delete/create echoes of a rename.
        locked_files: Locked-file retry policy.
        folders: Watched folders.
    """

    poll_interval_seconds: float = Field(default=1.0, gt=0)
    rename_window_seconds: float = Field(default=1.0, ge=0)
    locked_files: LockedFilePolicy = Field(default_factory=LockedFilePolicy)
    folders: List[FolderBackupSettings] = Field(default_factory=list)


class FolderRetentionSettings(FolderbackBaseModel):
    """Retention rule for one container.

    Attributes:
        container_name: Container to sweep.
        file_extension: Optional extension filter (without the leading dot).
        retention_days: Age threshold in days.
    """

    container_name: str = Field(min_length=1)
    file_extension: Optional[str] = None
    retention_days: int = Field(default=30, ge=0)

    normalize_extension = field_validator("file_extension")(_normalize_extension)


class RetentionSettings(FolderbackBaseModel):
    """Retention sweep configuration.

    Attributes:
        folders: Per-container retention rules.
    """

    folders: List[FolderRetentionSettings] = Field(default_factory=list)


class RestoreJobSettings(FolderbackBaseModel):
    """Grouped restore job pairing a backup container with an optional log container.

    Attributes:
        backup_container: Container holding full backups.
        restore_path: Directory receiving restored backups.
        log_container: Optional container holding log-type artifacts.
        log_restore_path: Directory receiving restored logs, one sub-directory per logical name.
        restore_type: ``Latest`` keeps the newest backup and newer logs; ``All`` keeps everything.
        include_logical_names: When non-empty, only these logical names are restored.
        exclude_logical_names: Logical names that are never restored.
    """

    backup_container: str = Field(min_length=1)
    restore_path: str = Field(min_length=1)
    log_container: Optional[str] = None
    log_restore_path: Optional[str] = None
    restore_type: Literal["Latest", "All"] = "Latest"
    include_logical_names: List[str] = Field(default_factory=list)
    exclude_logical_names: List[str] = Field(default_factory=list)

    @field_validator("restore_type", mode="before")
    @classmethod
    def canonical_restore_type(cls, value: object) -> object:
        if isinstance(value, str):
            for option in ("Latest", "All"):
                if value.strip().lower() == option.lower():
                    return option
        return value

    @property
    def includes_logs(self) -> bool:
        """Return whether the job reads and restores the log container."""
        return bool(self.log_container and self.log_restore_path)


class RestoreFilter(FolderbackBaseModel):
    """Optional tag filter applied by a basic restore.

    Attributes:
        relative_path: Relative path (including file name) to match.
        file_extension: Extension to match (without the leading dot).
        file_name: File name to match.
    """

    relative_path: Optional[str] = None
    file_extension: Optional[str] = None
    file_name: Optional[str] = None

    normalize_extension = field_validator("file_extension")(_normalize_extension)


class BasicRestoreSettings(FolderbackBaseModel):
    """Restore of every matching object back to its relative path.

    Attributes:
        container_name: Container to restore from.
        restore_to_path: Directory receiving restored files.
        filter: Optional tag filter.
    """

    container_name: str = Field(min_length=1)
    restore_to_path: str = Field(min_length=1)
    filter: RestoreFilter = Field(default_factory=RestoreFilter)


class RestoreSettings(FolderbackBaseModel):
    """Restore configuration.

    Attributes:
        jobs: Grouped restore jobs.
        basic: Basic restore folders.
    """

    jobs: List[RestoreJobSettings] = Field(default_factory=list)
    basic: List[BasicRestoreSettings] = Field(default_factory=list)


class LoggingSettings(FolderbackBaseModel):
    """Runtime logging configuration.

    Attributes:
        level: Logging verbosity level.
        file: Optional log file path; rotation applies when set.
        max_size_mb: Maximum log size before rotation.
        backup_count: Number of historical log files to retain.
    """

    level: str = "INFO"
    file: Optional[str] = None
    max_size_mb: int = 100
    backup_count: int = 5


class FolderbackConfig(FolderbackBaseModel):
    """Top-level configuration struct for folderback.

    Attributes:
        store: Backend store selection.
        backup: Continuous backup settings.
        retention: Retention sweep settings.
        restore: Restore settings.
        logging: Logging configuration.
    """

    store: StoreSettings = Field(default_factory=StoreSettings)
    backup: BackupSettings = Field(default_factory=BackupSettings)
    retention: RetentionSettings = Field(default_factory=RetentionSettings)
    restore: RestoreSettings = Field(default_factory=RestoreSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


__all__ = [
    "FolderbackBaseModel",
    "FilesystemStoreSettings",
    "S3StoreSettings",
    "StoreSettings",
    "FolderBackupSettings",
    "LockedFilePolicy",
    "BackupSettings",
    "FolderRetentionSettings",
    "RetentionSettings",
    "RestoreJobSettings",
    "RestoreFilter",
    "BasicRestoreSettings",
    "RestoreSettings",
    "LoggingSettings",
    "FolderbackConfig",
]

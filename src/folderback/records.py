"""Change events and the tag/metadata records attached to stored objects."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel

from folderback.config.models import FolderBackupSettings
from folderback.locator import sanitize_tag_value

BACKUP_MARKER = "_backup_"
BACKUP_TIMESTAMP_PATTERN = re.compile(r"\d{4}_\d{2}_\d{2}_\d{6}")
BACKUP_TIMESTAMP_FORMAT = "%Y_%m_%d_%H%M%S"


class BackupTimestampError(ValueError):
    """Raised when a file name carries no parseable backup timestamp."""


class ChangeKind(str, Enum):
    """Filesystem change kinds understood by the dispatcher."""

    CREATED = "created"
    MODIFIED = "modified"
    RENAMED = "renamed"
    DELETED = "deleted"


def describe_kind(kind: Optional[ChangeKind]) -> str:
    """Return a log-friendly label; startup enumeration events have no kind."""
    return kind.value if kind is not None else "checking"


def logical_name_from_file_name(file_name: str) -> str:
    """Return the entity name a backup file belongs to.

    ``sales_backup_2024_01_02_030405.bak`` belongs to ``sales``; names without the
    ``_backup_`` marker are their own logical name.
    """
    return file_name.split(BACKUP_MARKER, 1)[0] if BACKUP_MARKER in file_name else file_name


def parse_backup_timestamp(file_name: str) -> datetime:
    """Parse the ``YYYY_MM_DD_HHMMSS`` token embedded in ``file_name``.

    Raises:
        BackupTimestampError: If no valid token is present.
    """
    match = BACKUP_TIMESTAMP_PATTERN.search(file_name)
    if match is None:
        raise BackupTimestampError(f"No backup timestamp found in file name: {file_name}")
    try:
        parsed = datetime.strptime(match.group(0), BACKUP_TIMESTAMP_FORMAT)
    except ValueError as exc:
        raise BackupTimestampError(f"Invalid backup timestamp in file name: {file_name}") from exc
    return parsed.replace(tzinfo=timezone.utc)


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True, slots=True)
class FileDescriptor:
    """A source file observed under a watched folder."""

    path: Path

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def extension(self) -> str:
        """Return the lowercased extension without its leading dot."""
        return self.path.suffix.lstrip(".").lower()

    def last_write_time(self) -> Optional[datetime]:
        """Return the file's modification time in UTC, or ``None`` when it is gone."""
        try:
            stat = self.path.stat()
        except OSError:
            return None
        return datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)


@dataclass(slots=True)
class ChangeEvent:
    """A pending change for the dispatcher.

    Attributes:
        kind: Change kind, or ``None`` for events produced by startup enumeration.
        folder: Settings of the watched folder that produced the event.
        file: Current file descriptor.
        relative_path: POSIX path of the file relative to the watched folder.
        old_relative_path: Previous relative path (renames only).
        old_file_name: Previous file name (renames only).
        requeues: Number of times the event was put back because the file was locked.
    """

    kind: Optional[ChangeKind]
    folder: FolderBackupSettings
    file: FileDescriptor
    relative_path: str
    old_relative_path: Optional[str] = None
    old_file_name: Optional[str] = None
    requeues: int = 0

    @classmethod
    def for_path(
        cls,
        kind: Optional[ChangeKind],
        folder: FolderBackupSettings,
        path: Path,
        *,
        old_path: Optional[Path] = None,
    ) -> "ChangeEvent":
        """Build an event for ``path`` (and ``old_path`` for renames) under ``folder``."""
        root = folder.root
        return cls(
            kind=kind,
            folder=folder,
            file=FileDescriptor(path),
            relative_path=relative_to_folder(path, root),
            old_relative_path=relative_to_folder(old_path, root) if old_path else None,
            old_file_name=old_path.name if old_path else None,
        )


def relative_to_folder(path: Path, root: Path) -> str:
    """Return ``path`` relative to ``root`` in POSIX form, falling back to the file name."""
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return path.name


class ObjectTags(BaseModel):
    """Searchable tags written with every object; values are sanitized."""

    container_prefix: str
    file_extension: str
    relative_path: str
    file_name: str
    logical_name: str

    @classmethod
    def for_event(cls, event: ChangeEvent) -> "ObjectTags":
        return cls(
            container_prefix=sanitize_tag_value(event.folder.container_name),
            file_extension=sanitize_tag_value(event.file.extension),
            relative_path=sanitize_tag_value(event.relative_path),
            file_name=sanitize_tag_value(event.file.name),
            logical_name=sanitize_tag_value(logical_name_from_file_name(event.file.name)),
        )

    def to_mapping(self) -> dict[str, str]:
        return self.model_dump()


class ObjectMetadata(BaseModel):
    """Descriptive metadata stored with every object.

    Fields read back from a store may be missing; they stay ``None`` ("unknown").
    Only ``compressed`` has a default, ``False``.
    """

    compressed: bool = False
    relative_path: Optional[str] = None
    file_extension: Optional[str] = None
    file_name: Optional[str] = None
    last_write_time_utc: Optional[datetime] = None
    logical_name: Optional[str] = None
    backup_timestamp: Optional[datetime] = None

    @classmethod
    def for_event(cls, event: ChangeEvent, *, compressed: bool) -> "ObjectMetadata":
        """Generate metadata for the file behind ``event``.

        Raises:
            BackupTimestampError: If the file name has no backup timestamp.
        """
        return cls(
            compressed=compressed,
            relative_path=event.relative_path,
            file_extension=event.file.extension,
            file_name=event.file.name,
            last_write_time_utc=event.file.last_write_time(),
            logical_name=logical_name_from_file_name(event.file.name),
            backup_timestamp=parse_backup_timestamp(event.file.name),
        )

    @classmethod
    def from_mapping(cls, values: Mapping[str, str]) -> "ObjectMetadata":
        """Rebuild metadata from raw store values, tolerating missing or bad fields."""
        return cls(
            compressed=str(values.get("compressed", "")).strip().lower() == "true",
            relative_path=values.get("relative_path"),
            file_extension=values.get("file_extension"),
            file_name=values.get("file_name"),
            last_write_time_utc=_parse_datetime(values.get("last_write_time_utc")),
            logical_name=values.get("logical_name"),
            backup_timestamp=_parse_datetime(values.get("backup_timestamp")),
        )

    def to_mapping(self) -> dict[str, str]:
        """Serialize to string values, omitting unknown fields."""
        values: dict[str, str] = {"compressed": "true" if self.compressed else "false"}
        for key in ("relative_path", "file_extension", "file_name", "logical_name"):
            value = getattr(self, key)
            if value is not None:
                values[key] = value
        if self.last_write_time_utc is not None:
            values["last_write_time_utc"] = self.last_write_time_utc.isoformat()
        if self.backup_timestamp is not None:
            values["backup_timestamp"] = self.backup_timestamp.isoformat()
        return values


__all__ = [
    "BACKUP_MARKER",
    "BackupTimestampError",
    "ChangeEvent",
    "ChangeKind",
    "FileDescriptor",
    "ObjectMetadata",
    "ObjectTags",
    "describe_kind",
    "logical_name_from_file_name",
    "parse_backup_timestamp",
    "relative_to_folder",
]

"""Grouped restore of timestamped backups and their follow-up logs."""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from folderback.compression import decompress_bytes
from folderback.config.models import RestoreJobSettings, RestoreSettings
from folderback.locator import ObjectLocator, ObjectSearch
from folderback.store import BackendStore

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RestoreCandidate:
    """A stored object eligible for restore."""

    container: str
    object_id: str
    logical_name: str
    file_name: str
    backup_timestamp: datetime
    compressed: bool = False


@dataclass(slots=True)
class RestoreGroup:
    """Backups and logs sharing one logical name."""

    logical_name: str
    backups: list[RestoreCandidate] = field(default_factory=list)
    logs: list[RestoreCandidate] = field(default_factory=list)


class RestoreGrouper:
    """Select and download backup groups for restore jobs.

    A job lists its backup container (and, when both ``log_container`` and
    ``log_restore_path`` are set, its log container), skips objects without a
    logical name, file name, or parseable backup timestamp, and groups the rest by
    logical name. ``Latest`` keeps the newest backup of each group plus the logs
    taken at or after it; ``All`` keeps everything.
    """

    def __init__(self, store: BackendStore) -> None:
        self._store = store
        self._locator = ObjectLocator(store)

    def run(self, settings: RestoreSettings) -> list[Path]:
        """Run every configured restore job and return the written paths."""
        LOGGER.info("Starting grouped restore of %d job(s)", len(settings.jobs))
        written: list[Path] = []
        for job in settings.jobs:
            written.extend(self.restore(job))
        LOGGER.info("Grouped restore completed")
        return written

    def build_groups(self, job: RestoreJobSettings) -> list[RestoreGroup]:
        """Return the groups ``job`` would restore, without downloading anything.

        Raises:
            StoreError: If a backend operation fails.
        """
        backups = self._candidates(job.backup_container, job)
        logs: list[RestoreCandidate] = []
        if job.includes_logs and job.log_container:
            logs = self._candidates(job.log_container, job)

        groups: "OrderedDict[str, RestoreGroup]" = OrderedDict()
        for candidate in backups:
            groups.setdefault(
                candidate.logical_name, RestoreGroup(logical_name=candidate.logical_name)
            ).backups.append(candidate)

        for group in groups.values():
            group.backups.sort(key=_by_timestamp)
            group.logs = sorted(
                (log for log in logs if log.logical_name == group.logical_name),
                key=_by_timestamp,
            )
            if job.restore_type == "Latest":
                latest = group.backups[-1]
                group.backups = [latest]
                group.logs = [
                    log for log in group.logs if log.backup_timestamp >= latest.backup_timestamp
                ]
        return list(groups.values())

    def restore(
        self, job: RestoreJobSettings, groups: Optional[Iterable[RestoreGroup]] = None
    ) -> list[Path]:
        """Download the selected groups of ``job`` and return the written paths.

        Backups land in ``restore_path``; logs land in
        ``log_restore_path/<logical name>/``.
        """
        LOGGER.info(
            "Restoring container %s (logs: %s)", job.backup_container, job.log_container or "none"
        )
        if groups is None:
            groups = self.build_groups(job)

        restore_root = Path(job.restore_path).expanduser()
        restore_root.mkdir(parents=True, exist_ok=True)
        written: list[Path] = []
        for group in groups:
            for backup in group.backups:
                target = restore_root / Path(backup.file_name).name
                LOGGER.info("Downloading backup file %s to %s", backup.file_name, target)
                written.append(self._download(backup, target))

            if job.includes_logs and job.log_restore_path:
                log_root = Path(job.log_restore_path).expanduser() / group.logical_name
                log_root.mkdir(parents=True, exist_ok=True)
                for log in group.logs:
                    target = log_root / Path(log.file_name).name
                    LOGGER.info("Downloading log file %s to %s", log.file_name, target)
                    written.append(self._download(log, target))
        return written

    # Internal helpers -------------------------------------------------

    def _candidates(self, container: str, job: RestoreJobSettings) -> list[RestoreCandidate]:
        LOGGER.info("Fetching objects from container: %s", container)
        include = set(job.include_logical_names)
        exclude = set(job.exclude_logical_names)
        candidates: list[RestoreCandidate] = []
        for object_id in self._locator.find_all(container, ObjectSearch()):
            record = self._store.get_properties(container, object_id).record
            if (
                not record.logical_name
                or not record.file_name
                or record.backup_timestamp is None
            ):
                LOGGER.debug("Skipping %s/%s: incomplete metadata", container, object_id)
                continue
            if include and record.logical_name not in include:
                continue
            if record.logical_name in exclude:
                continue
            candidates.append(
                RestoreCandidate(
                    container=container,
                    object_id=object_id,
                    logical_name=record.logical_name,
                    file_name=record.file_name,
                    backup_timestamp=record.backup_timestamp,
                    compressed=record.compressed,
                )
            )
        return candidates

    def _download(self, candidate: RestoreCandidate, target: Path) -> Path:
        data = self._store.get_object(candidate.container, candidate.object_id)
        if candidate.compressed:
            data = decompress_bytes(data)
        target.write_bytes(data)
        return target


def _by_timestamp(candidate: RestoreCandidate) -> datetime:
    return candidate.backup_timestamp


__all__ = ["RestoreCandidate", "RestoreGroup", "RestoreGrouper"]

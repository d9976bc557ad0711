"""Age-based retention sweep over backup containers."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from folderback.config.models import FolderRetentionSettings, RetentionSettings
from folderback.locator import ObjectLocator, ObjectSearch
from folderback.store import BackendStore

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class RetentionReport:
    """Outcome of sweeping one container."""

    container: str
    kept: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)


class RetentionSweeper:
    """Delete objects older than a per-container retention threshold.

    An object is kept when its ``last_write_time_utc`` metadata is later than the
    threshold. Otherwise (older, missing, or unparseable) it is deleted only when
    the backend creation time is earlier than the threshold.
    """

    def __init__(
        self,
        store: BackendStore,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._locator = ObjectLocator(store)
        self._clock = clock or _utcnow

    def run(self, settings: RetentionSettings) -> list[RetentionReport]:
        """Sweep every configured container in order.

        Raises:
            StoreError: If a backend operation fails.
        """
        if not settings.folders:
            LOGGER.warning("No retention folders configured")
        return [self.sweep(folder) for folder in settings.folders]

    def sweep(self, folder: FolderRetentionSettings) -> RetentionReport:
        """Apply the retention rule of ``folder`` to its container."""
        container = folder.container_name
        delete_after = self._clock() - timedelta(days=folder.retention_days)
        report = RetentionReport(container=container)
        LOGGER.info(
            "Sweeping container %s (retention %d days, threshold %s)",
            container,
            folder.retention_days,
            delete_after.isoformat(),
        )

        object_ids = self._locator.find_all(
            container, ObjectSearch(file_extension=folder.file_extension)
        )
        for object_id in object_ids:
            properties = self._store.get_properties(container, object_id)
            last_write = properties.record.last_write_time_utc
            if last_write is not None and last_write >= delete_after:
                report.kept.append(object_id)
                continue
            if properties.created_at < delete_after:
                self._store.delete_object(container, object_id)
                report.deleted.append(object_id)
                LOGGER.info("Deleted object %s from container %s", object_id, container)
            else:
                report.kept.append(object_id)
                LOGGER.debug("Keeping recently created object %s", object_id)

        LOGGER.info(
            "Container %s: kept %d, deleted %d", container, len(report.kept), len(report.deleted)
        )
        return report


__all__ = ["RetentionReport", "RetentionSweeper"]

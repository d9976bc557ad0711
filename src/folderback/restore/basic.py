"""Restore every matching object back to its original relative path."""

from __future__ import annotations

import logging
from pathlib import Path

from folderback.compression import decompress_bytes
from folderback.config.models import BasicRestoreSettings, RestoreSettings
from folderback.locator import ObjectLocator, ObjectSearch
from folderback.store import BackendStore

LOGGER = logging.getLogger(__name__)


class BasicRestore:
    """Write stored objects to ``<restore_to_path>/<relative_path>``."""

    def __init__(self, store: BackendStore) -> None:
        self._store = store
        self._locator = ObjectLocator(store)

    def run(self, settings: RestoreSettings) -> list[Path]:
        LOGGER.info("Starting basic restore of %d folder(s)", len(settings.basic))
        written: list[Path] = []
        for folder in settings.basic:
            written.extend(self.restore(folder))
        LOGGER.info("Basic restore completed")
        return written

    def restore(self, folder: BasicRestoreSettings) -> list[Path]:
        """Restore the objects of one container matching its optional filter.

        Objects without ``relative_path`` metadata, or whose path would escape the
        restore directory, are skipped with a warning.

        Raises:
            StoreError: If a backend operation fails.
        """
        container = folder.container_name
        search = ObjectSearch(
            file_extension=folder.filter.file_extension,
            relative_path=folder.filter.relative_path,
            file_name=folder.filter.file_name,
        )
        object_ids = self._locator.find_all(container, search)
        LOGGER.info("Found %d objects to restore from %s", len(object_ids), container)

        root = Path(folder.restore_to_path).expanduser().resolve()
        written: list[Path] = []
        for object_id in object_ids:
            record = self._store.get_properties(container, object_id).record
            if not record.relative_path:
                LOGGER.warning("Skipping %s/%s: no relative path metadata", container, object_id)
                continue

            target = (root / record.relative_path.lstrip("/\\")).resolve()
            if not target.is_relative_to(root):
                LOGGER.warning(
                    "Skipping %s/%s: path %s is outside %s", container, object_id, target, root
                )
                continue

            data = self._store.get_object(container, object_id)
            if record.compressed:
                LOGGER.debug("Object %s is compressed, decompressing", object_id)
                data = decompress_bytes(data)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
            LOGGER.info("Restored %s to %s", object_id, target)
            written.append(target)
        return written


__all__ = ["BasicRestore"]

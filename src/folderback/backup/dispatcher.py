"""Map change events onto idempotent backend store operations."""

from __future__ import annotations

import logging
from typing import Optional

from folderback.compression import compress_file
from folderback.locator import ObjectLocator, ObjectSearch
from folderback.records import (
    ChangeEvent,
    ChangeKind,
    ObjectMetadata,
    ObjectTags,
    describe_kind,
)
from folderback.store import BackendStore

LOGGER = logging.getLogger(__name__)


class ChangeDispatcher:
    """Apply one change event at a time to a backend store.

    Whether a backup already exists for a file is answered only by a tag lookup on
    relative path and file name:

    * created: overwrite the match in place, or write a new object;
    * modified (or no kind): overwrite the match, or fall back to created;
    * renamed: retag the match found under the old path, keeping content and the
      ``compressed`` flag, or fall back to created under the new path;
    * deleted: delete the match when the folder has ``remove_on_delete`` set.

    Events without a kind come from startup enumeration; their content upload is
    skipped when the stored last-write time already equals the file's.
    """

    def __init__(self, store: BackendStore, locator: Optional[ObjectLocator] = None) -> None:
        self._store = store
        self._locator = locator or ObjectLocator(store)

    def dispatch(self, event: ChangeEvent) -> None:
        """Apply ``event`` to the store.

        Raises:
            BackupTimestampError: If tags/metadata cannot be generated for the file.
            StoreError: If a backend operation fails.
        """
        LOGGER.info(
            "Processing change: %s for file: %s",
            describe_kind(event.kind),
            event.relative_path,
        )
        if event.kind is ChangeKind.CREATED:
            self._create(event)
        elif event.kind is ChangeKind.RENAMED:
            self._rename(event)
        elif event.kind is ChangeKind.DELETED:
            self._delete(event)
        else:
            self._update(event)

    # ------------------------------------------------------------------ #
    # Change handlers                                                    #
    # ------------------------------------------------------------------ #

    def _create(self, event: ChangeEvent) -> None:
        existing = self._find(event, event.relative_path, event.file.name)
        if existing is not None:
            # A replayed create must not produce a second object for the same path.
            self._upload(event, existing)
            LOGGER.info("Replaced existing object %s for file: %s", existing, event.relative_path)
            return
        object_id = self._upload(event, None)
        LOGGER.info("Created object %s for file: %s", object_id, event.relative_path)

    def _update(self, event: ChangeEvent) -> None:
        object_id = self._find(event, event.relative_path, event.file.name)
        if object_id is None:
            LOGGER.warning(
                "Object not found for file: %s, creating new object", event.relative_path
            )
            self._create(event)
            return

        if event.kind is None and self._is_current(event, object_id):
            LOGGER.info("Object %s already up to date for file: %s", object_id, event.relative_path)
            return

        self._upload(event, object_id)
        LOGGER.info("Updated object %s for file: %s", object_id, event.relative_path)

    def _rename(self, event: ChangeEvent) -> None:
        old_relative_path = event.old_relative_path or event.relative_path
        old_file_name = event.old_file_name or event.file.name
        object_id = self._find(event, old_relative_path, old_file_name)
        if object_id is None:
            LOGGER.warning("Object not found for file: %s, creating new object", old_relative_path)
            self._create(event)
            return

        container = event.folder.container_name
        previous = self._store.get_properties(container, object_id).record
        # Content is untouched, so the compressed flag stays whatever it was.
        metadata = ObjectMetadata.for_event(event, compressed=previous.compressed)
        tags = ObjectTags.for_event(event)
        self._store.set_metadata(container, object_id, metadata.to_mapping())
        self._store.set_tags(container, object_id, tags.to_mapping())
        LOGGER.info(
            "Renamed object %s from %s to %s", object_id, old_relative_path, event.relative_path
        )

    def _delete(self, event: ChangeEvent) -> None:
        if not event.folder.remove_on_delete:
            return

        object_id = self._find(event, event.relative_path, event.file.name)
        if object_id is None:
            LOGGER.warning("Object not found for deleted file: %s", event.relative_path)
            return

        self._store.delete_object(event.folder.container_name, object_id)
        LOGGER.info("Deleted object %s for file: %s", object_id, event.relative_path)

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #

    def _find(self, event: ChangeEvent, relative_path: str, file_name: str) -> Optional[str]:
        return self._locator.find_one(
            event.folder.container_name,
            ObjectSearch(relative_path=relative_path, file_name=file_name),
        )

    def _is_current(self, event: ChangeEvent, object_id: str) -> bool:
        stored = self._store.get_properties(event.folder.container_name, object_id).record
        current = event.file.last_write_time()
        return stored.last_write_time_utc is not None and stored.last_write_time_utc == current

    def _upload(self, event: ChangeEvent, object_id: Optional[str]) -> str:
        compress = event.folder.compress_files
        # Generate tags and metadata first so a bad file name writes nothing.
        tags = ObjectTags.for_event(event).to_mapping()
        metadata = ObjectMetadata.for_event(event, compressed=compress).to_mapping()
        container = event.folder.container_name

        if compress:
            return self._store.put_object(
                container,
                compress_file(event.file.path),
                tags=tags,
                metadata=metadata,
                object_id=object_id,
            )

        with event.file.path.open("rb") as handle:
            return self._store.put_object(
                container,
                handle,
                tags=tags,
                metadata=metadata,
                object_id=object_id,
            )


__all__ = ["ChangeDispatcher"]

"""Backend store kept in a local directory tree."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterator, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError

from folderback.locator import TagQuery

from . import ObjectContent, ObjectProperties, generate_object_id
from .errors import ObjectNotFoundError, StoreError

LOGGER = logging.getLogger(__name__)

PROPERTIES_DIRNAME = ".properties"


class _StoredProperties(BaseModel):
    """On-disk sidecar describing one object."""

    tags: Dict[str, str] = Field(default_factory=dict)
    metadata: Dict[str, str] = Field(default_factory=dict)
    created_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _has_separator(name: str) -> bool:
    return "/" in name or "\\" in name


@contextmanager
def _translate_errors(action: str) -> Iterator[None]:
    try:
        yield
    except FileNotFoundError as exc:
        raise ObjectNotFoundError(f"{action}: {exc}") from exc
    except OSError as exc:
        raise StoreError(f"{action}: {exc}") from exc


class LocalFilesystemStore:
    """Store objects as files under ``<directory>/<container>/``.

    Content lives in ``<container>/<object_id>``; tags, metadata, and the creation
    time live in a JSON sidecar under ``<container>/.properties/``. Listing order
    is creation time, then id.
    """

    def __init__(
        self,
        directory: Path,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            directory: Root directory holding one sub-directory per container.
            clock: Optional callable returning the current UTC time.
        """
        self._directory = directory
        self._clock = clock or _utcnow

    @property
    def directory(self) -> Path:
        return self._directory

    def list_objects(self, container: str, query: Optional[TagQuery] = None) -> list[str]:
        properties_dir = self._properties_dir(container)
        if not properties_dir.is_dir():
            return []

        entries: list[tuple[datetime, str]] = []
        with _translate_errors(f"Listing {container}"):
            for sidecar in properties_dir.glob("*.json"):
                object_id = sidecar.stem
                stored = self._read_properties(container, object_id)
                if query is not None and not query.matches(stored.tags):
                    continue
                entries.append((stored.created_at, object_id))
        entries.sort()
        return [object_id for _, object_id in entries]

    def get_object(self, container: str, object_id: str) -> bytes:
        with _translate_errors(f"Reading {container}/{object_id}"):
            return self._content_path(container, object_id).read_bytes()

    def put_object(
        self,
        container: str,
        data: ObjectContent,
        *,
        tags: Mapping[str, str],
        metadata: Mapping[str, str],
        object_id: Optional[str] = None,
    ) -> str:
        object_id = object_id or generate_object_id()
        content_path = self._content_path(container, object_id)

        created_at = self._clock()
        if self._sidecar_path(container, object_id).exists():
            created_at = self._read_properties(container, object_id).created_at

        with _translate_errors(f"Writing {container}/{object_id}"):
            content_path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(dir=content_path.parent, prefix=".upload-")
            try:
                with os.fdopen(fd, "wb") as handle:
                    if isinstance(data, bytes):
                        handle.write(data)
                    else:
                        shutil.copyfileobj(data, handle)
                os.replace(temp_name, content_path)
            except BaseException:
                Path(temp_name).unlink(missing_ok=True)
                raise

            self._write_properties(
                container,
                object_id,
                _StoredProperties(tags=dict(tags), metadata=dict(metadata), created_at=created_at),
            )
        LOGGER.debug("Stored %s/%s", container, object_id)
        return object_id

    def set_tags(self, container: str, object_id: str, tags: Mapping[str, str]) -> None:
        stored = self._read_properties(container, object_id)
        stored.tags = dict(tags)
        self._write_properties(container, object_id, stored)

    def set_metadata(self, container: str, object_id: str, metadata: Mapping[str, str]) -> None:
        stored = self._read_properties(container, object_id)
        stored.metadata = dict(metadata)
        self._write_properties(container, object_id, stored)

    def delete_object(self, container: str, object_id: str) -> None:
        with _translate_errors(f"Deleting {container}/{object_id}"):
            self._content_path(container, object_id).unlink()
            self._sidecar_path(container, object_id).unlink(missing_ok=True)

    def get_properties(self, container: str, object_id: str) -> ObjectProperties:
        stored = self._read_properties(container, object_id)
        return ObjectProperties(
            tags=dict(stored.tags),
            metadata=dict(stored.metadata),
            created_at=stored.created_at,
        )

    # Internal helpers -------------------------------------------------

    def _container_dir(self, container: str) -> Path:
        if not container or _has_separator(container) or container in (".", ".."):
            raise StoreError(f"Invalid container name: {container!r}")
        return self._directory / container

    def _properties_dir(self, container: str) -> Path:
        return self._container_dir(container) / PROPERTIES_DIRNAME

    def _content_path(self, container: str, object_id: str) -> Path:
        if not object_id or _has_separator(object_id) or object_id.startswith("."):
            raise StoreError(f"Invalid object id: {object_id!r}")
        return self._container_dir(container) / object_id

    def _sidecar_path(self, container: str, object_id: str) -> Path:
        return self._properties_dir(container) / f"{object_id}.json"

    def _read_properties(self, container: str, object_id: str) -> _StoredProperties:
        path = self._sidecar_path(container, object_id)
        with _translate_errors(f"Reading properties of {container}/{object_id}"):
            raw = path.read_text(encoding="utf-8")
        try:
            return _StoredProperties.model_validate_json(raw)
        except ValidationError as exc:
            raise StoreError(f"Invalid properties for {container}/{object_id}: {exc}") from exc

    def _write_properties(
        self, container: str, object_id: str, stored: _StoredProperties
    ) -> None:
        path = self._sidecar_path(container, object_id)
        with _translate_errors(f"Writing properties of {container}/{object_id}"):
            path.parent.mkdir(parents=True, exist_ok=True)
            temp_path = path.with_name(f".{path.name}.tmp")
            temp_path.write_text(stored.model_dump_json(indent=2), encoding="utf-8")
            os.replace(temp_path, path)


__all__ = ["LocalFilesystemStore", "PROPERTIES_DIRNAME"]

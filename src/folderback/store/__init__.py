"""Backend store contract and factory.

A backend stores opaque objects grouped in containers. Each object carries
content plus two string mappings: searchable *tags* and descriptive *metadata*.
Pipeline components receive a :class:`BackendStore` by composition; every
implementation satisfies the protocol on its own.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Mapping, Optional, Protocol, Union

from folderback.config.models import StoreSettings
from folderback.locator import TagQuery
from folderback.records import ObjectMetadata

from .errors import ObjectNotFoundError, StoreError

ObjectContent = Union[bytes, BinaryIO]


@dataclass(slots=True)
class ObjectProperties:
    """Tags, metadata, and backend-assigned creation time of a stored object."""

    tags: dict[str, str]
    metadata: dict[str, str]
    created_at: datetime

    @property
    def record(self) -> ObjectMetadata:
        """Return the metadata parsed into its fixed record type."""
        return ObjectMetadata.from_mapping(self.metadata)


class BackendStore(Protocol):
    """Primitive operations the backup, restore, and retention flows rely on."""

    def list_objects(self, container: str, query: Optional[TagQuery] = None) -> list[str]:
        """Return object ids in ``container``, filtered by ``query`` when given."""
        ...

    def get_object(self, container: str, object_id: str) -> bytes:
        """Return the content of an object."""
        ...

    def put_object(
        self,
        container: str,
        data: ObjectContent,
        *,
        tags: Mapping[str, str],
        metadata: Mapping[str, str],
        object_id: Optional[str] = None,
    ) -> str:
        """Write an object, generating an id when ``object_id`` is omitted."""
        ...

    def set_tags(self, container: str, object_id: str, tags: Mapping[str, str]) -> None:
        """Replace the tags of an object."""
        ...

    def set_metadata(self, container: str, object_id: str, metadata: Mapping[str, str]) -> None:
        """Replace the metadata of an object without touching its content."""
        ...

    def delete_object(self, container: str, object_id: str) -> None:
        """Delete an object."""
        ...

    def get_properties(self, container: str, object_id: str) -> ObjectProperties:
        """Return tags, metadata, and creation time of an object."""
        ...


def generate_object_id() -> str:
    """Return a fresh, unique object id."""
    return f"{uuid.uuid4()}-{time.time_ns()}"


def create_store(settings: StoreSettings) -> BackendStore:
    """Instantiate the backend selected in ``settings``."""
    if settings.backend == "s3":
        from .s3 import S3Store

        return S3Store(
            bucket_prefix=settings.s3.bucket_prefix,
            region=settings.s3.region,
            endpoint_url=settings.s3.endpoint_url,
            profile=settings.s3.profile,
        )

    from .filesystem import LocalFilesystemStore

    return LocalFilesystemStore(Path(settings.filesystem.directory).expanduser())


__all__ = [
    "BackendStore",
    "ObjectContent",
    "ObjectNotFoundError",
    "ObjectProperties",
    "StoreError",
    "create_store",
    "generate_object_id",
]

"""Backend store on Amazon S3 (or an S3-compatible service)."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator, Mapping, Optional
from urllib.parse import quote, unquote, urlencode

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from folderback.locator import TagQuery

from . import ObjectContent, ObjectProperties, generate_object_id
from .errors import ObjectNotFoundError, StoreError

LOGGER = logging.getLogger(__name__)

CREATED_AT_KEY = "folderback-created-at"
_NOT_FOUND_CODES = {"NoSuchKey", "NoSuchBucket", "404", "NotFound"}
_TAG_SAFE = " +-=._/@"


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


@contextmanager
def _translate_errors(action: str) -> Iterator[None]:
    try:
        yield
    except ClientError as exc:
        if _error_code(exc) in _NOT_FOUND_CODES:
            raise ObjectNotFoundError(f"{action}: {exc}") from exc
        raise StoreError(f"{action}: {exc}") from exc
    except BotoCoreError as exc:
        raise StoreError(f"{action}: {exc}") from exc


def _encode_metadata(metadata: Mapping[str, str]) -> dict[str, str]:
    # S3 user metadata travels as HTTP headers and must be ASCII.
    return {key: quote(value, safe="") for key, value in metadata.items()}


def _decode_metadata(metadata: Mapping[str, str]) -> dict[str, str]:
    return {key: unquote(value) for key, value in metadata.items()}


def _encode_tag_value(value: str) -> str:
    # Tag values allow letters, digits, spaces and + - = . _ : / @ only. Other
    # characters are percent-encoded with ":" standing in for "%".
    encoded = quote(value, safe=_TAG_SAFE).replace("~", "%7E")
    return encoded.replace("%", ":")


def _decode_tag_value(value: str) -> str:
    return unquote(value.replace(":", "%"))


class S3Store:
    """Store objects in S3, one bucket per container.

    Tags map onto S3 object tagging and metadata onto user metadata. S3 has no
    creation timestamp and rewrites metadata by copying the object in place, so
    the original write time is kept in a store-managed metadata entry.
    Tag filters are evaluated client side against decoded tag values.

    Tag values are encoded into the character set S3 accepts for tags. S3 still
    rejects encoded values longer than 256 characters, which surfaces as a
    :class:`StoreError` for that write.
    """

    def __init__(
        self,
        *,
        bucket_prefix: str = "",
        region: str | None = None,
        endpoint_url: str | None = None,
        profile: str | None = None,
        client: Any | None = None,
    ) -> None:
        self._bucket_prefix = bucket_prefix
        self._region = region
        if client is None:
            with _translate_errors("Creating S3 client"):
                session = boto3.Session(profile_name=profile, region_name=region)
                client = session.client(
                    "s3",
                    endpoint_url=endpoint_url,
                    config=BotoConfig(retries={"max_attempts": 5, "mode": "standard"}),
                )
        self._s3 = client
        self._known_buckets: set[str] = set()

    def bucket_for(self, container: str) -> str:
        """Return the bucket name backing ``container``."""
        return f"{self._bucket_prefix}{container}"

    def list_objects(self, container: str, query: Optional[TagQuery] = None) -> list[str]:
        bucket = self.bucket_for(container)
        keys: list[str] = []
        try:
            with _translate_errors(f"Listing {bucket}"):
                paginator = self._s3.get_paginator("list_objects_v2")
                for page in paginator.paginate(Bucket=bucket):
                    keys.extend(item["Key"] for item in page.get("Contents", []))
        except ObjectNotFoundError:
            return []

        if query is None:
            return keys
        return [key for key in keys if query.matches(self._get_tags(bucket, key))]

    def get_object(self, container: str, object_id: str) -> bytes:
        bucket = self.bucket_for(container)
        with _translate_errors(f"Reading {bucket}/{object_id}"):
            response = self._s3.get_object(Bucket=bucket, Key=object_id)
            return response["Body"].read()

    def put_object(
        self,
        container: str,
        data: ObjectContent,
        *,
        tags: Mapping[str, str],
        metadata: Mapping[str, str],
        object_id: Optional[str] = None,
    ) -> str:
        bucket = self.bucket_for(container)
        self._ensure_bucket(bucket)
        object_id = object_id or generate_object_id()

        created_at = self._existing_created_at(bucket, object_id)
        if created_at is None:
            created_at = datetime.now(timezone.utc).isoformat()

        encoded = _encode_metadata(metadata)
        encoded[CREATED_AT_KEY] = created_at
        with _translate_errors(f"Writing {bucket}/{object_id}"):
            self._s3.put_object(
                Bucket=bucket,
                Key=object_id,
                Body=data,
                Metadata=encoded,
                Tagging=urlencode(
                    {key: _encode_tag_value(value) for key, value in tags.items()}
                ),
            )
        LOGGER.debug("Stored s3://%s/%s", bucket, object_id)
        return object_id

    def set_tags(self, container: str, object_id: str, tags: Mapping[str, str]) -> None:
        bucket = self.bucket_for(container)
        with _translate_errors(f"Tagging {bucket}/{object_id}"):
            self._s3.put_object_tagging(
                Bucket=bucket,
                Key=object_id,
                Tagging={
                    "TagSet": [
                        {"Key": key, "Value": _encode_tag_value(value)}
                        for key, value in tags.items()
                    ]
                },
            )

    def set_metadata(self, container: str, object_id: str, metadata: Mapping[str, str]) -> None:
        bucket = self.bucket_for(container)
        created_at = self._existing_created_at(bucket, object_id)
        if created_at is None:
            raise ObjectNotFoundError(f"Object not found: {bucket}/{object_id}")

        encoded = _encode_metadata(metadata)
        encoded[CREATED_AT_KEY] = created_at
        with _translate_errors(f"Updating metadata of {bucket}/{object_id}"):
            self._s3.copy_object(
                Bucket=bucket,
                Key=object_id,
                CopySource={"Bucket": bucket, "Key": object_id},
                Metadata=encoded,
                MetadataDirective="REPLACE",
                TaggingDirective="COPY",
            )

    def delete_object(self, container: str, object_id: str) -> None:
        bucket = self.bucket_for(container)
        with _translate_errors(f"Deleting {bucket}/{object_id}"):
            self._s3.delete_object(Bucket=bucket, Key=object_id)

    def get_properties(self, container: str, object_id: str) -> ObjectProperties:
        bucket = self.bucket_for(container)
        with _translate_errors(f"Reading properties of {bucket}/{object_id}"):
            head = self._s3.head_object(Bucket=bucket, Key=object_id)

        raw_metadata = dict(head.get("Metadata", {}))
        created_raw = raw_metadata.pop(CREATED_AT_KEY, None)
        created_at = _parse_created_at(created_raw) or head["LastModified"]
        return ObjectProperties(
            tags=self._get_tags(bucket, object_id),
            metadata=_decode_metadata(raw_metadata),
            created_at=created_at,
        )

    # Internal helpers -------------------------------------------------

    def _get_tags(self, bucket: str, key: str) -> dict[str, str]:
        with _translate_errors(f"Reading tags of {bucket}/{key}"):
            response = self._s3.get_object_tagging(Bucket=bucket, Key=key)
        return {
            tag["Key"]: _decode_tag_value(tag["Value"]) for tag in response.get("TagSet", [])
        }

    def _existing_created_at(self, bucket: str, key: str) -> Optional[str]:
        try:
            with _translate_errors(f"Reading {bucket}/{key}"):
                head = self._s3.head_object(Bucket=bucket, Key=key)
        except ObjectNotFoundError:
            return None
        created = head.get("Metadata", {}).get(CREATED_AT_KEY)
        if created:
            return created
        return head["LastModified"].isoformat()

    def _ensure_bucket(self, bucket: str) -> None:
        if bucket in self._known_buckets:
            return
        try:
            with _translate_errors(f"Checking bucket {bucket}"):
                self._s3.head_bucket(Bucket=bucket)
        except ObjectNotFoundError:
            LOGGER.info("Creating bucket %s", bucket)
            kwargs: dict[str, Any] = {"Bucket": bucket}
            if self._region and self._region != "us-east-1":
                kwargs["CreateBucketConfiguration"] = {"LocationConstraint": self._region}
            with _translate_errors(f"Creating bucket {bucket}"):
                self._s3.create_bucket(**kwargs)
        self._known_buckets.add(bucket)


def _parse_created_at(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(unquote(value))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


__all__ = ["CREATED_AT_KEY", "S3Store"]

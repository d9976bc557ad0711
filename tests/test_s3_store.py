"""Tests for the S3 backend store using botocore's Stubber."""

from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

import boto3
import pytest
from botocore.stub import ANY, Stubber

from folderback.locator import TagQuery
from folderback.store import ObjectNotFoundError, StoreError
from folderback.store.s3 import CREATED_AT_KEY, S3Store

BUCKET = "fb-backups"
CREATED = "2024-01-01T00:00:00+00:00"


def _client(region: str = "us-east-1"):
    return boto3.client(
        "s3",
        region_name=region,
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.fixture
def stubbed() -> Iterator[tuple[S3Store, Stubber]]:
    client = _client()
    with Stubber(client) as stubber:
        yield S3Store(bucket_prefix="fb-", client=client), stubber
        stubber.assert_no_pending_responses()


def test_bucket_for_applies_prefix() -> None:
    assert S3Store(bucket_prefix="fb-", client=_client()).bucket_for("backups") == BUCKET


def test_put_object_creates_missing_bucket_in_region() -> None:
    client = _client("eu-west-1")
    store = S3Store(bucket_prefix="fb-", region="eu-west-1", client=client)
    with Stubber(client) as stubber:
        stubber.add_client_error(
            "head_bucket", service_error_code="404", http_status_code=404
        )
        stubber.add_response(
            "create_bucket",
            {"Location": "/fb-backups"},
            {
                "Bucket": BUCKET,
                "CreateBucketConfiguration": {"LocationConstraint": "eu-west-1"},
            },
        )
        stubber.add_client_error(
            "head_object", service_error_code="404", http_status_code=404
        )
        stubber.add_response(
            "put_object",
            {"ETag": '"etag"'},
            {
                "Bucket": BUCKET,
                "Key": "object-1",
                "Body": b"payload",
                "Metadata": ANY,
                "Tagging": "file_name=a.bak&relative_path=dir-_-a.bak",
            },
        )

        object_id = store.put_object(
            "backups",
            b"payload",
            tags={"file_name": "a.bak", "relative_path": "dir-_-a.bak"},
            metadata={"relative_path": "dir/a.bak"},
            object_id="object-1",
        )

        stubber.assert_no_pending_responses()
    assert object_id == "object-1"


def test_list_objects_filters_tags_client_side(stubbed: tuple[S3Store, Stubber]) -> None:
    store, stubber = stubbed
    stubber.add_response(
        "list_objects_v2",
        {"Contents": [{"Key": "a"}, {"Key": "b"}], "IsTruncated": False},
        {"Bucket": BUCKET},
    )
    stubber.add_response(
        "get_object_tagging",
        {"TagSet": [{"Key": "file_extension", "Value": "bak"}]},
        {"Bucket": BUCKET, "Key": "a"},
    )
    stubber.add_response(
        "get_object_tagging",
        {"TagSet": [{"Key": "file_extension", "Value": "trn"}]},
        {"Bucket": BUCKET, "Key": "b"},
    )

    assert store.list_objects("backups", TagQuery((("file_extension", "bak"),))) == ["a"]


def test_list_objects_of_missing_bucket_is_empty(stubbed: tuple[S3Store, Stubber]) -> None:
    store, stubber = stubbed
    stubber.add_client_error(
        "list_objects_v2", service_error_code="NoSuchBucket", http_status_code=404
    )

    assert store.list_objects("backups") == []


def test_get_properties_decodes_metadata(stubbed: tuple[S3Store, Stubber]) -> None:
    store, stubber = stubbed
    stubber.add_response(
        "head_object",
        {
            "Metadata": {
                "compressed": "true",
                "relative_path": "daily%2Fa.bak",
                CREATED_AT_KEY: CREATED,
            },
            "LastModified": datetime(2024, 5, 1, tzinfo=timezone.utc),
        },
        {"Bucket": BUCKET, "Key": "a"},
    )
    stubber.add_response(
        "get_object_tagging",
        {"TagSet": [{"Key": "file_name", "Value": "a.bak"}]},
        {"Bucket": BUCKET, "Key": "a"},
    )

    properties = store.get_properties("backups", "a")

    assert properties.created_at == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert properties.tags == {"file_name": "a.bak"}
    assert CREATED_AT_KEY not in properties.metadata
    assert properties.record.compressed is True
    assert properties.record.relative_path == "daily/a.bak"


def test_set_metadata_copies_in_place_keeping_creation_time(
    stubbed: tuple[S3Store, Stubber],
) -> None:
    store, stubber = stubbed
    stubber.add_response(
        "head_object",
        {
            "Metadata": {CREATED_AT_KEY: CREATED},
            "LastModified": datetime(2024, 5, 1, tzinfo=timezone.utc),
        },
        {"Bucket": BUCKET, "Key": "a"},
    )
    stubber.add_response(
        "copy_object",
        {},
        {
            "Bucket": BUCKET,
            "Key": "a",
            "CopySource": ANY,
            "Metadata": {"relative_path": "moved%2Fa.bak", CREATED_AT_KEY: CREATED},
            "MetadataDirective": "REPLACE",
            "TaggingDirective": "COPY",
        },
    )

    store.set_metadata("backups", "a", {"relative_path": "moved/a.bak"})


def test_set_tags_replaces_tag_set(stubbed: tuple[S3Store, Stubber]) -> None:
    store, stubber = stubbed
    stubber.add_response(
        "put_object_tagging",
        {},
        {
            "Bucket": BUCKET,
            "Key": "a",
            "Tagging": {"TagSet": [{"Key": "file_name", "Value": "b.bak"}]},
        },
    )

    store.set_tags("backups", "a", {"file_name": "b.bak"})


def test_errors_are_translated(stubbed: tuple[S3Store, Stubber]) -> None:
    store, stubber = stubbed
    stubber.add_client_error("get_object", service_error_code="NoSuchKey", http_status_code=404)
    stubber.add_client_error(
        "delete_object", service_error_code="AccessDenied", http_status_code=403
    )

    with pytest.raises(ObjectNotFoundError):
        store.get_object("backups", "missing")
    with pytest.raises(StoreError) as excinfo:
        store.delete_object("backups", "a")
    assert not isinstance(excinfo.value, ObjectNotFoundError)


def test_tag_values_are_encoded_into_the_allowed_character_set(
    stubbed: tuple[S3Store, Stubber],
) -> None:
    store, stubber = stubbed
    stubber.add_response(
        "put_object_tagging",
        {},
        {
            "Bucket": BUCKET,
            "Key": "a",
            "Tagging": {
                "TagSet": [{"Key": "file_name", "Value": "Copy :282:29 50:25_backup.bak"}]
            },
        },
    )
    stubber.add_response(
        "list_objects_v2",
        {"Contents": [{"Key": "a"}], "IsTruncated": False},
        {"Bucket": BUCKET},
    )
    stubber.add_response(
        "get_object_tagging",
        {"TagSet": [{"Key": "file_name", "Value": "Copy :282:29 50:25_backup.bak"}]},
        {"Bucket": BUCKET, "Key": "a"},
    )

    store.set_tags("backups", "a", {"file_name": "Copy (2) 50%_backup.bak"})
    query = TagQuery((("file_name", "Copy (2) 50%_backup.bak"),))

    assert store.list_objects("backups", query) == ["a"]


def test_put_object_encodes_tagging_header() -> None:
    client = _client()
    store = S3Store(bucket_prefix="fb-", client=client)
    with Stubber(client) as stubber:
        stubber.add_response("head_bucket", {}, {"Bucket": BUCKET})
        stubber.add_client_error(
            "head_object", service_error_code="404", http_status_code=404
        )
        stubber.add_response(
            "put_object",
            {"ETag": '"etag"'},
            {
                "Bucket": BUCKET,
                "Key": "object-1",
                "Body": b"payload",
                "Metadata": ANY,
                "Tagging": "file_name=Copy+%3A282%3A29_backup.bak",
            },
        )

        store.put_object(
            "backups",
            b"payload",
            tags={"file_name": "Copy (2)_backup.bak"},
            metadata={},
            object_id="object-1",
        )

        stubber.assert_no_pending_responses()


def test_unknown_profile_is_a_store_error(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("AWS_CONFIG_FILE", str(tmp_path / "config"))
    monkeypatch.setenv("AWS_SHARED_CREDENTIALS_FILE", str(tmp_path / "credentials"))
    monkeypatch.delenv("AWS_PROFILE", raising=False)

    with pytest.raises(StoreError, match="missing-profile"):
        S3Store(bucket_prefix="fb-", profile="missing-profile")

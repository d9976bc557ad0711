"""Tests for the retention sweep."""

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

from folderback.backup import ChangeDispatcher
from folderback.config.models import (
    FolderBackupSettings,
    FolderRetentionSettings,
    RetentionSettings,
)
from folderback.records import ChangeEvent, ChangeKind
from folderback.retention import RetentionSweeper
from folderback.store.filesystem import LocalFilesystemStore

NOW = datetime(2024, 6, 30, 12, 0, tzinfo=timezone.utc)
THRESHOLD = NOW - timedelta(days=30)


class _FixedClock:
    def __init__(self, value: datetime) -> None:
        self.value = value

    def __call__(self) -> datetime:
        return self.value


def _put(
    tmp_path: Path,
    *,
    created_at: datetime,
    last_write: datetime | str | None,
    extension: str = "bak",
) -> tuple[LocalFilesystemStore, str]:
    store = LocalFilesystemStore(tmp_path / "store", clock=_FixedClock(created_at))
    metadata = {"compressed": "false"}
    if isinstance(last_write, datetime):
        metadata["last_write_time_utc"] = last_write.isoformat()
    elif last_write is not None:
        metadata["last_write_time_utc"] = last_write
    object_id = store.put_object(
        "sql", b"data", tags={"file_extension": extension}, metadata=metadata
    )
    return store, object_id


def _sweep(store: LocalFilesystemStore, **overrides: object):
    values: dict[str, object] = {"container_name": "sql", "file_extension": "bak"}
    values.update(overrides)
    sweeper = RetentionSweeper(store, clock=_FixedClock(NOW))
    return sweeper.sweep(FolderRetentionSettings.model_validate(values))


def test_recent_last_write_is_kept_even_when_old(tmp_path: Path) -> None:
    store, object_id = _put(
        tmp_path, created_at=NOW - timedelta(days=90), last_write=NOW - timedelta(days=1)
    )

    report = _sweep(store)

    assert report.kept == [object_id]
    assert store.list_objects("sql") == [object_id]


def test_old_last_write_and_old_creation_is_deleted(tmp_path: Path) -> None:
    store, object_id = _put(
        tmp_path, created_at=NOW - timedelta(days=31), last_write=NOW - timedelta(days=40)
    )

    report = _sweep(store)

    assert report.deleted == [object_id]
    assert store.list_objects("sql") == []


def test_old_last_write_but_recent_creation_is_kept(tmp_path: Path) -> None:
    store, object_id = _put(
        tmp_path, created_at=NOW - timedelta(days=2), last_write=NOW - timedelta(days=400)
    )

    assert _sweep(store).kept == [object_id]


def test_boundary_values_are_kept(tmp_path: Path) -> None:
    store, object_id = _put(tmp_path, created_at=THRESHOLD, last_write=THRESHOLD)

    report = _sweep(store)

    assert report.kept == [object_id]
    assert report.deleted == []


def test_last_write_exactly_at_threshold_is_kept_for_old_objects(tmp_path: Path) -> None:
    store, object_id = _put(
        tmp_path, created_at=NOW - timedelta(days=90), last_write=THRESHOLD
    )

    report = _sweep(store)

    assert report.kept == [object_id]
    assert report.deleted == []
    assert store.list_objects("sql") == [object_id]


def test_last_write_one_day_past_threshold_is_deleted(tmp_path: Path) -> None:
    store, object_id = _put(
        tmp_path,
        created_at=NOW - timedelta(days=90),
        last_write=THRESHOLD - timedelta(days=1),
    )

    report = _sweep(store)

    assert report.deleted == [object_id]
    assert store.list_objects("sql") == []


def test_uppercase_extension_backups_are_swept(tmp_path: Path) -> None:
    store = LocalFilesystemStore(tmp_path / "store", clock=_FixedClock(NOW - timedelta(days=60)))
    folder = FolderBackupSettings(
        container_name="sql", folder_path=str(tmp_path / "watched"), file_extension="bak"
    )
    folder.root.mkdir(parents=True, exist_ok=True)
    path = folder.root / "sales_backup_2024_01_02_030405.BAK"
    path.write_bytes(b"data")
    os.utime(path, (0, 0))
    ChangeDispatcher(store).dispatch(ChangeEvent.for_path(ChangeKind.CREATED, folder, path))
    (object_id,) = store.list_objects("sql")

    assert store.get_properties("sql", object_id).tags["file_extension"] == "bak"
    assert _sweep(store, file_extension="BAK").deleted == [object_id]


def test_missing_or_unparseable_last_write_uses_creation_time(tmp_path: Path) -> None:
    store, missing = _put(tmp_path / "a", created_at=NOW - timedelta(days=60), last_write=None)
    assert _sweep(store).deleted == [missing]

    store, garbled = _put(
        tmp_path / "b", created_at=NOW - timedelta(days=60), last_write="not-a-date"
    )
    assert _sweep(store).deleted == [garbled]


def test_extension_filter_limits_the_sweep(tmp_path: Path) -> None:
    store, object_id = _put(
        tmp_path, created_at=NOW - timedelta(days=60), last_write=None, extension="trn"
    )

    assert _sweep(store).deleted == []
    assert _sweep(store, file_extension=None).deleted == [object_id]


def test_run_reports_every_container(tmp_path: Path) -> None:
    store, _ = _put(tmp_path, created_at=NOW, last_write=NOW)
    settings = RetentionSettings.model_validate(
        {"folders": [{"container_name": "sql"}, {"container_name": "empty", "retention_days": 7}]}
    )

    reports = RetentionSweeper(store, clock=_FixedClock(NOW)).run(settings)

    assert [report.container for report in reports] == ["sql", "empty"]
    assert reports[1].kept == [] and reports[1].deleted == []

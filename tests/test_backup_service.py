"""Tests for the continuous backup service."""

import threading
import time
from pathlib import Path
from typing import Any, Callable

import pytest

from folderback.backup import BackupService, is_file_locked
from folderback.config import ConfigError
from folderback.config.models import BackupSettings
from folderback.locator import ObjectLocator, ObjectSearch
from folderback.records import ChangeEvent, ChangeKind
from folderback.store.filesystem import LocalFilesystemStore

CONTAINER = "backups"


class _FakeObserver:
    def __init__(self) -> None:
        self.scheduled: list[str] = []
        self.started = False
        self.stopped = False

    def schedule(self, handler: Any, path: str, recursive: bool = False) -> None:
        self.scheduled.append(path)

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stopped = True

    def join(self, timeout: float | None = None) -> None:
        return None


def _settings(tmp_path: Path, **overrides: Any) -> BackupSettings:
    root = tmp_path / "watched"
    root.mkdir(exist_ok=True)
    values: dict[str, Any] = {
        "poll_interval_seconds": 0.01,
        "folders": [
            {"container_name": CONTAINER, "folder_path": str(root), "file_extension": "bak"}
        ],
    }
    values.update(overrides)
    return BackupSettings.model_validate(values)


def _wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_process_once_backs_up_existing_files(tmp_path: Path) -> None:
    settings = _settings(tmp_path)
    root = settings.folders[0].root
    (root / "a_backup_2024_01_01_000000.bak").write_bytes(b"a")
    (root / "b_backup_2024_01_02_000000.bak").write_bytes(b"b")
    (root / "readme.txt").write_bytes(b"ignored")
    (root / "broken.bak").write_bytes(b"no timestamp")
    store = LocalFilesystemStore(tmp_path / "store")

    summary = BackupService(settings, store).process_once()

    assert summary.processed == 2
    assert summary.skipped == ["broken.bak"]
    assert summary.locked == []
    assert len(store.list_objects(CONTAINER)) == 2


def test_locked_files_are_requeued_until_released(tmp_path: Path) -> None:
    settings = _settings(tmp_path)
    root = settings.folders[0].root
    locked_path = root / "locked_backup_2024_01_01_000000.bak"
    locked_path.write_bytes(b"busy")
    (root / "free_backup_2024_01_01_000000.bak").write_bytes(b"free")
    store = LocalFilesystemStore(tmp_path / "store")
    probes: list[Path] = []

    def _probe(path: Path) -> bool:
        probes.append(path)
        # Locked on the first check only.
        return path == locked_path and probes.count(path) == 1

    summary = BackupService(settings, store, lock_probe=_probe).process_once()

    assert summary.processed == 2
    assert probes.count(locked_path) == 2
    assert len(store.list_objects(CONTAINER)) == 2


def test_process_once_gives_up_on_permanently_locked_files(tmp_path: Path) -> None:
    settings = _settings(tmp_path)
    root = settings.folders[0].root
    (root / "locked_backup_2024_01_01_000000.bak").write_bytes(b"busy")
    store = LocalFilesystemStore(tmp_path / "store")

    summary = BackupService(settings, store, lock_probe=lambda _: True).process_once()

    assert summary.processed == 0
    assert summary.locked == ["locked_backup_2024_01_01_000000.bak"]
    assert store.list_objects(CONTAINER) == []


def test_max_requeues_drops_locked_events(tmp_path: Path) -> None:
    settings = _settings(tmp_path, locked_files={"max_requeues": 2})
    folder = settings.folders[0]
    path = folder.root / "locked_backup_2024_01_01_000000.bak"
    path.write_bytes(b"busy")
    service = BackupService(
        settings, LocalFilesystemStore(tmp_path / "store"), lock_probe=lambda _: True
    )

    event = ChangeEvent.for_path(ChangeKind.CREATED, folder, path)
    event.requeues = 2
    service.queue.put(event)
    summary = service.drain()

    assert summary.skipped == [path.name]
    assert summary.locked == []
    assert len(service.queue) == 0


def test_missing_folder_is_a_config_error(tmp_path: Path) -> None:
    settings = BackupSettings.model_validate(
        {"folders": [{"container_name": CONTAINER, "folder_path": str(tmp_path / "absent")}]}
    )

    with pytest.raises(ConfigError):
        BackupService(settings, LocalFilesystemStore(tmp_path / "store")).process_once()


def test_run_processes_queue_until_stopped(tmp_path: Path) -> None:
    settings = _settings(tmp_path)
    folder = settings.folders[0]
    (folder.root / "a_backup_2024_01_01_000000.bak").write_bytes(b"existing")
    store = LocalFilesystemStore(tmp_path / "store")
    observer = _FakeObserver()
    service = BackupService(settings, store, observer_factory=lambda: observer)
    stop_event = threading.Event()

    worker = threading.Thread(target=service.run, args=(stop_event,), daemon=True)
    worker.start()
    try:
        assert _wait_for(lambda: len(store.list_objects(CONTAINER)) == 1)

        new_path = folder.root / "b_backup_2024_01_02_000000.bak"
        new_path.write_bytes(b"arrived later")
        service.queue.put(ChangeEvent.for_path(ChangeKind.CREATED, folder, new_path))
        assert _wait_for(lambda: len(store.list_objects(CONTAINER)) == 2)
    finally:
        stop_event.set()
        worker.join(timeout=5)

    assert not worker.is_alive()
    assert observer.started and observer.stopped
    assert observer.scheduled == [str(folder.root)]
    located = ObjectLocator(store).find_one(
        CONTAINER, ObjectSearch(relative_path=new_path.name, file_name=new_path.name)
    )
    assert located is not None


def test_is_file_locked_detects_exclusive_flock(tmp_path: Path) -> None:
    fcntl = pytest.importorskip("fcntl")
    path = tmp_path / "db_backup_2024_01_01_000000.bak"
    path.write_bytes(b"data")

    assert is_file_locked(path) is False
    assert is_file_locked(tmp_path / "missing.bak") is False

    with path.open("rb") as holder:
        fcntl.flock(holder.fileno(), fcntl.LOCK_EX)
        try:
            assert is_file_locked(path) is True
        finally:
            fcntl.flock(holder.fileno(), fcntl.LOCK_UN)

    assert is_file_locked(path) is False

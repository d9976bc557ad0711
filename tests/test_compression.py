"""Tests for gzip helpers."""

from pathlib import Path

from folderback.compression import compress_bytes, compress_file, decompress_bytes


def test_compress_file_round_trip(tmp_path: Path) -> None:
    payload = bytes(range(256)) * 64
    path = tmp_path / "db_backup_2024_01_01_000000.bak"
    path.write_bytes(payload)

    compressed = compress_file(path)

    assert compressed != payload
    assert decompress_bytes(compressed) == payload


def test_compression_is_deterministic() -> None:
    assert compress_bytes(b"same input") == compress_bytes(b"same input")
    assert decompress_bytes(compress_bytes(b"")) == b""

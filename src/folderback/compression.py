"""Gzip helpers applied when content is written and reversed during restore."""

from __future__ import annotations

import gzip
from pathlib import Path


def compress_bytes(data: bytes) -> bytes:
    """Return gzip-compressed ``data``.

    The header mtime is pinned so identical input always yields identical output.
    """
    return gzip.compress(data, mtime=0)


def compress_file(path: Path) -> bytes:
    """Read ``path`` fully and return its gzip-compressed content."""
    return compress_bytes(path.read_bytes())


def decompress_bytes(data: bytes) -> bytes:
    """Return the original bytes of gzip-compressed ``data``."""
    return gzip.decompress(data)


__all__ = ["compress_bytes", "compress_file", "decompress_bytes"]

"""Derive an application type version from file modification times."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterator, Set, Tuple

from sfrun.core.exceptions import StagingError
from sfrun.core.models import VersionStamp

VERSION_MAJOR = 1
VERSION_MINOR = 0

_LOW_WORD = 0xFFFFFFFF


def iter_file_mtimes(root: Path) -> Iterator[int]:
    """Yield the modification time of every file under ``root`` in whole milliseconds.

    Symlinked directories are followed, each real directory is visited once,
    and links whose target is missing are skipped.
    """
    visited: Set[Tuple[int, int]] = set()
    for dirpath, dirnames, filenames in os.walk(root, followlinks=True):
        st = os.stat(dirpath)
        if (st.st_dev, st.st_ino) in visited:
            dirnames[:] = []
            continue
        visited.add((st.st_dev, st.st_ino))
        for name in filenames:
            try:
                st = os.stat(os.path.join(dirpath, name))
            except FileNotFoundError:
                continue
            yield st.st_mtime_ns // 1_000_000


def latest_mtime_ms(root: Path) -> int:
    """Most recent file modification time under ``root``; 0 for a tree without files."""
    return max(iter_file_mtimes(root), default=0)


def split_timestamp(timestamp_ms: int) -> VersionStamp:
    """Encode a millisecond timestamp as ``1.0.high.low``.

    ``high`` holds bits 32-63 and ``low`` the full unsigned bits 0-31, so
    version ordering matches timestamp ordering.
    """
    timestamp_ms = max(timestamp_ms, 0)
    return VersionStamp(VERSION_MAJOR, VERSION_MINOR, timestamp_ms >> 32, timestamp_ms & _LOW_WORD)


def derive_version(root: Path) -> VersionStamp:
    """Version of the tree under ``root``.

    Raises:
        StagingError: If the tree cannot be read
    """
    try:
        return split_timestamp(latest_mtime_ms(Path(root)))
    except OSError as e:
        raise StagingError(f"Failed to read file times under {root}: {e}") from e

"""Durable file writes: stage in the same directory, fsync, then rename."""
import contextlib
import os
import tempfile
from pathlib import Path
from typing import Union

OWNER_ONLY = 0o600


def fsync_dir(directory: Path) -> None:
    """Flush a directory entry so a preceding rename survives a crash."""
    fd = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def stage_file(directory: Path, prefix: str, data: bytes, mode: int = OWNER_ONLY) -> Path:
    """
    Write data to a new temp file in directory and flush it to disk.

    The caller owns the returned path and must rename or remove it.
    """
    fd, tmp_name = tempfile.mkstemp(dir=directory, prefix=prefix, suffix=".tmp")
    try:
        os.fchmod(fd, mode)
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp_name)
        raise
    return Path(tmp_name)


def write_atomic(path: Path, data: Union[bytes, str], mode: int = OWNER_ONLY) -> None:
    """Replace path with data so readers see either the old or new content."""
    path = Path(path)
    if isinstance(data, str):
        data = data.encode()
    tmp = stage_file(path.parent, f".{path.name}.", data, mode)
    try:
        os.replace(tmp, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp)
        raise
    fsync_dir(path.parent)


def remove_quietly(*paths: Path) -> None:
    """Remove files that may or may not exist."""
    for path in paths:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(path)


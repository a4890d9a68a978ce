"""
Atomic file writes.

Every write goes to a sibling temp file first and is moved into place with
os.replace, so a concurrent reader sees either the old or the new content and
never a partially written file.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Mapping

TEMP_SUFFIX = ".tpm-tmp"


def temp_path_for(path: Path) -> Path:
    """Return the sibling temp path used while writing `path`."""
    return path.with_name(path.name + TEMP_SUFFIX)


def is_temp_path(path: Path) -> bool:
    return path.name.endswith(TEMP_SUFFIX)


def stage_bytes(path: Path, data: bytes) -> Path:
    """
    Write `data` to the temp sibling of `path` and flush it to disk.

    Parameters
    ----------
    path:
        Final destination.
    data:
        Bytes to stage.

    Returns
    -------
    Path
        The temp file. The caller moves it into place with os.replace.

    Raises
    ------
    OSError
        If the temp file cannot be written. The temp file is removed.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = temp_path_for(path)
    try:
        with temp_path.open("wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
    except OSError:
        discard_temp(temp_path)
        raise
    return temp_path


def discard_temp(temp_path: Path) -> None:
    try:
        temp_path.unlink(missing_ok=True)
    except OSError:
        pass


def write_bytes_atomic(path: Path, data: bytes) -> None:
    """
    Write bytes atomically to disk.

    Raises
    ------
    OSError
        If staging or replacing fails. No temp file is left behind.
    """
    path = path.expanduser()
    temp_path = stage_bytes(path, data)
    try:
        os.replace(temp_path, path)
    except OSError:
        discard_temp(temp_path)
        raise


def dump_json_bytes(payload: Mapping[str, Any], *, indent: int = 2, sort_keys: bool = False) -> bytes:
    """Serialize a mapping as UTF-8 JSON text with a trailing newline."""
    text = json.dumps(payload, indent=indent, sort_keys=sort_keys, ensure_ascii=False)
    return (text + "\n").encode("utf-8")


def write_json_atomic(path: Path, payload: Mapping[str, Any], *, sort_keys: bool = True) -> None:
    """Write JSON atomically to disk."""
    write_bytes_atomic(path, dump_json_bytes(payload, sort_keys=sort_keys))

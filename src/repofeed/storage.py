"""
Atomic file persistence for cache records and the served index.

Every write goes to a temporary file in the destination directory and is
then renamed over the target, so readers observe either the previous file
or the complete new one.
"""
from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Optional


def write_json_atomic(path: Path, data: Any, mtime: Optional[float] = None) -> None:
    """Serialize ``data`` to ``path`` atomically.

    When ``mtime`` is given the file's access and modification times are set
    to it before the rename, so the new file never appears with a wrong time.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(data, handle, ensure_ascii=False, separators=(",", ":"))
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(temp_path, 0o644)
        if mtime is not None:
            os.utime(temp_path, (mtime, mtime))
        os.replace(temp_path, path)
    except BaseException:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise


def file_mtime(path: Path) -> Optional[float]:
    """Return the modification time of ``path`` or None when it is absent."""
    try:
        return path.stat().st_mtime
    except FileNotFoundError:
        return None

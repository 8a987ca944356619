"""Atomic file writes.

Content is written to a temporary file in the target directory, flushed with
fsync and moved into place with ``os.replace`` so a concurrent reader sees
either the old file or the new one, never a partial write.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any


class AtomicWriteError(OSError):
    """Raised when an atomic write fails."""


def atomic_write_text(path: Path | str, content: str, encoding: str = "utf-8") -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding=encoding) as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except OSError as e:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise AtomicWriteError(f"Failed to write {path}: {e}") from e


def atomic_write_json(path: Path | str, data: Any, indent: int = 2) -> None:
    """Serialize ``data`` first so serialization errors never touch the file."""
    content = json.dumps(data, indent=indent, ensure_ascii=False) + "\n"
    atomic_write_text(path, content)

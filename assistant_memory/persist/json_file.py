"""
Atomic JSON document persistence.

Writes go to ``<path>.tmp`` and are renamed over the target, so readers
only ever see a complete document. The previous document is copied to
``<path>.backup`` first and restored if anything in the write fails.
"""

import json
import os
import shutil
from pathlib import Path
from typing import Any, Optional

from ..errors import StorageError


def backup_path(path: Path) -> Path:
    return path.with_name(path.name + ".backup")


def temp_path(path: Path) -> Path:
    return path.with_name(path.name + ".tmp")


def read_json(path: Path) -> Optional[Any]:
    """
    Load a JSON document.

    Returns:
        Parsed document, or None if the file does not exist

    Raises:
        StorageError: if the file exists but cannot be read or parsed
    """
    if not path.exists():
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise StorageError(f"Cannot read {path}: {e}") from e


def write_json_atomic(path: Path, data: Any) -> None:
    """
    Persist ``data`` at ``path`` without ever exposing a partial file.

    Raises:
        StorageError: if the write failed (the previous document is restored)
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = temp_path(path)
    backup = backup_path(path)
    had_previous = path.exists()

    try:
        if had_previous:
            shutil.copy2(path, backup)

        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
            f.flush()
            os.fsync(f.fileno())

        os.replace(tmp, path)

        if had_previous and backup.exists():
            backup.unlink()
    except (OSError, TypeError, ValueError) as e:
        if tmp.exists():
            tmp.unlink()
        if had_previous and backup.exists():
            os.replace(backup, path)
        raise StorageError(f"Cannot write {path}: {e}") from e

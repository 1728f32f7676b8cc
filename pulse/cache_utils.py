from __future__ import annotations

import json
import os
import tempfile
from contextlib import suppress
from pathlib import Path
from typing import Any


def atomic_write_json(path: Path, data: Any) -> None:
    """Write JSON atomically using a temp file + rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(tmp_fd, "w") as f:
            json.dump(data, f)
        os.replace(tmp_path, path)
    except Exception:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def read_json(path: Path, default: Any = None) -> Any:
    """Load JSON from path; missing or corrupt files yield default."""
    if not path.exists():
        return default
    try:
        with open(path) as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError):
        return default


def evict_old_files(directory: Path, pattern: str, max_files: int) -> list[Path]:
    """Remove the oldest matching files beyond max_files (LRU by mtime)."""
    if max_files <= 0 or not directory.exists():
        return []
    files = list(directory.glob(pattern))
    if len(files) <= max_files:
        return []
    files.sort(key=lambda p: (p.stat().st_mtime, p.name))
    removed: list[Path] = []
    for f in files[: len(files) - max_files]:
        with suppress(OSError):
            f.unlink()
            removed.append(f)
    return removed

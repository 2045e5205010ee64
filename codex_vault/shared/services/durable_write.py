"""Crash-safe JSON file helpers for chat persistence."""
from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any


def fsync_directory(directory: Path) -> None:
    """Flush a rename into the directory entry where the OS allows it."""
    flags = os.O_RDONLY | getattr(os, "O_DIRECTORY", 0)
    try:
        fd = os.open(directory, flags)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        # Not supported on every filesystem (and never on Windows).
        pass
    finally:
        os.close(fd)


def atomic_write_json(path: Path, payload: Any) -> None:
    """Serialize *payload* next to *path*, fsync it, then rename over *path*.

    Readers see either the old file or the complete new one. Raises
    OSError / TypeError on failure; callers decide how to recover.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    text = json.dumps(payload, indent=2, ensure_ascii=False)

    with tempfile.NamedTemporaryFile(
        "w",
        encoding="utf-8",
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
        delete=False,
    ) as handle:
        tmp_path = Path(handle.name)
        try:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        except BaseException:
            handle.close()
            tmp_path.unlink(missing_ok=True)
            raise

    try:
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
    fsync_directory(path.parent)


def read_json(path: Path) -> Any:
    """Load JSON from *path*. Raises FileNotFoundError / ValueError."""
    with open(path, encoding="utf-8") as handle:
        return json.load(handle)

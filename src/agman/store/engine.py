"""Atomic file persistence for task directories."""

import json
import os
import tempfile
from pathlib import Path

from agman.errors import StateError


def write_text_atomic(path: Path, content: str):
    """Write file atomically via temp + rename so readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def write_json_atomic(path: Path, data: dict | list):
    write_text_atomic(path, json.dumps(data, indent=2) + "\n")


def read_json(path: Path):
    """Read a JSON document. Raises StateError if it is missing or corrupt."""
    try:
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError as e:
        raise StateError(f"Missing {path}") from e
    except (OSError, json.JSONDecodeError) as e:
        raise StateError(f"Unreadable {path}: {e}") from e

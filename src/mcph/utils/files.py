# File read/write helpers shared by the stores
import json
import os
import tempfile
from pathlib import Path
from typing import Any, cast


def read_json_file(path: Path) -> dict[str, Any]:
    """Read a JSON object from disk.

    ABOUTME: Raises FileNotFoundError if the file doesn't exist
    ABOUTME: Raises ValueError for invalid JSON or a non-object top level
    """
    try:
        with open(path, encoding="utf-8") as f:
            result = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {path}: {e}") from e

    if not isinstance(result, dict):
        raise ValueError(f"Expected a JSON object in {path}, got {type(result).__name__}")
    return cast(dict[str, Any], result)


def atomic_write(path: Path, content: str) -> None:
    """Write text so readers see either the old file or the new one.

    ABOUTME: Writes a temp file in the same directory then os.replace()s it
    ABOUTME: Creates parent directories if needed
    ABOUTME: The temp file is removed if anything fails before the replace
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def write_json_file(path: Path, data: dict[str, Any]) -> None:
    """Write a JSON object atomically.

    ABOUTME: Uses 2-space indentation and a trailing newline
    ABOUTME: Key order is preserved so user settings files keep their layout
    """
    atomic_write(path, json.dumps(data, indent=2, ensure_ascii=False) + "\n")

"""
File-system helpers shared across the pipeline.

Provides parent-directory creation, atomic JSON writes (so a crash never
leaves a half-written record or manifest behind), JSON reads and a
filesystem-safe stem for item identifiers.
"""

from __future__ import annotations

import json
import os
import re
import tempfile
from pathlib import Path
from typing import Any

_UNSAFE_CHARS = re.compile(r"[^\w.\-]+", re.UNICODE)


def ensure_parent(path: str | Path) -> None:
    """
    Ensure that the parent directory for the given path exists.

    Args:
      path: Target file path whose parent should be created.
    """
    Path(path).parent.mkdir(parents=True, exist_ok=True)


def write_json(path: str | Path, obj: Any) -> None:
    """
    Atomically write a JSON value to disk using UTF-8 encoding.

    The payload goes to a temporary file in the destination directory,
    which then replaces the target with `os.replace`. Readers see either
    the previous content or the new content, never a partial file.

    Args:
      path: Destination file path.
      obj: JSON-serializable value to persist.
    """
    target = Path(path)
    ensure_parent(target)
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{target.name}.", suffix=".tmp", dir=str(target.parent)
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(obj, f, ensure_ascii=False, indent=2)
        os.replace(tmp_name, target)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


def read_json(path: str | Path) -> Any:
    """
    Read and parse a JSON file using UTF-8 encoding.

    Args:
      path: Source file path.

    Returns:
      The decoded JSON value (usually a dict or list).
    """
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def safe_stem(item_id: str) -> str:
    """
    Map an item identifier to a deterministic file stem.

    Identifiers made of word characters, dots and dashes are kept as-is;
    anything else collapses to ``_``.

    Example:
        >>> safe_stem("12")
        '12'
        >>> safe_stem("a/b c")
        'a_b_c'
    """
    stem = _UNSAFE_CHARS.sub("_", item_id).strip("._")
    if not stem:
        raise ValueError(f"Item id cannot be mapped to a file name: {item_id!r}")
    return stem

"""
Materialization of work items from an input directory.

Two strategies are offered: the numbered layout written by the PDF
splitter (``1.pdf`` .. ``N.pdf``) and a plain directory listing.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Iterable

from receipt_ocr.core.config import INPUT_SUFFIXES, NUMBERED_INPUT_PATTERN
from receipt_ocr.core.exceptions import InvalidConfiguration
from receipt_ocr.pipeline.models import WorkItem

_LEADING_NUMBER = re.compile(r"^(\d+)")


def _check_max_items(max_items: int) -> None:
    if max_items < 0:
        raise InvalidConfiguration(
            f"max_items must be >= 0, got {max_items}", field="max_items"
        )


def numbered_work_items(
    input_dir: str | Path,
    max_items: int,
    pattern: str = NUMBERED_INPUT_PATTERN,
) -> list[WorkItem]:
    """
    Build ``max_items`` work items ``1..max_items`` from a numbered layout.

    Files are not checked for existence: a missing file surfaces as a
    permanent failure of that item when the invoker tries to read it.

    Args:
      input_dir: Directory holding the numbered files.
      max_items: How many items to enumerate.
      pattern: File name template with an ``{index}`` placeholder.
    """
    _check_max_items(max_items)
    base = Path(input_dir)
    return [
        WorkItem(item_id=str(index), source_ref=str(base / pattern.format(index=index)))
        for index in range(1, max_items + 1)
    ]


def _sort_key(path: Path) -> tuple[int, int, str]:
    match = _LEADING_NUMBER.match(path.stem)
    if match:
        return (0, int(match.group(1)), path.name)
    return (1, 0, path.name)


def discover_work_items(
    input_dir: str | Path,
    max_items: int,
    suffixes: Iterable[str] = INPUT_SUFFIXES,
) -> list[WorkItem]:
    """
    List input files in ``input_dir`` and turn them into work items.

    Files are ordered by numeric stem first (``2.pdf`` before ``10.pdf``),
    then by name, and capped at ``max_items``. The item id is the file stem.

    Raises:
      InvalidConfiguration: If two files share a stem (ids must be unique).
    """
    _check_max_items(max_items)
    wanted = {suffix.lower() for suffix in suffixes}
    files = sorted(
        (p for p in Path(input_dir).iterdir() if p.is_file() and p.suffix.lower() in wanted),
        key=_sort_key,
    )[:max_items]

    items: list[WorkItem] = []
    seen: set[str] = set()
    for path in files:
        if path.stem in seen:
            raise InvalidConfiguration(
                f"Duplicate item id {path.stem!r} in {input_dir}", field="input_dir"
            )
        seen.add(path.stem)
        items.append(WorkItem(item_id=path.stem, source_ref=str(path)))
    return items

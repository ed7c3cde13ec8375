"""Partitioning of a run's work items into fixed-size batches."""

from __future__ import annotations

from typing import Sequence

from receipt_ocr.core.exceptions import InvalidConfiguration
from receipt_ocr.pipeline.models import Batch, WorkItem


def make_batches(items: Sequence[WorkItem], batch_size: int) -> list[Batch]:
    """
    Split ``items`` into consecutive batches of ``batch_size``.

    Concatenating the batches reproduces the input order; every batch but
    the last holds exactly ``batch_size`` items and indices run 0..n-1.

    Raises:
        InvalidConfiguration: If batch_size is not a positive integer

    Example:
        >>> [len(b) for b in make_batches(items_of_len_5, 2)]
        [2, 2, 1]
    """
    if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size <= 0:
        raise InvalidConfiguration(
            f"batch_size must be a positive integer, got {batch_size!r}",
            field="batch_size",
        )
    return [
        Batch(index=index, items=tuple(items[start : start + batch_size]))
        for index, start in enumerate(range(0, len(items), batch_size))
    ]

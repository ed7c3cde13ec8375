"""
Lightweight helpers for measuring per-stage timings in the pipeline.

Stage timers accumulate elapsed wall-clock seconds per named stage so
that the controller can report where a run spent its time.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Dict


class StageTimers:
    """
    Accumulate elapsed time per logical stage name.

    Use `timer(name)` as a context manager around stage blocks;
    each exit adds the elapsed seconds to `totals[name]`. Concurrent
    item tasks on one event loop may share an instance: each update
    happens between suspension points.
    """

    def __init__(self) -> None:
        self.totals: Dict[str, float] = {}

    @contextmanager
    def timer(self, name: str):
        """
        Measure and accumulate elapsed time for the given stage name.

        Args:
          name: Logical stage identifier (e.g. "invoke" or "persist").
        """
        start_time = time.perf_counter()
        try:
            yield
        finally:
            self.add(name, time.perf_counter() - start_time)

    def add(self, name: str, seconds: float) -> None:
        self.totals[name] = self.totals.get(name, 0.0) + seconds

    def snapshot(self) -> Dict[str, float]:
        return {name: round(total, 6) for name, total in self.totals.items()}

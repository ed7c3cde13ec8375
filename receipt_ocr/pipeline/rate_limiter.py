"""Inter-batch rate limiting.

The policy is coarse on purpose: the controller measures how long a batch
took to settle and, before starting the next one, sleeps whatever is left
of the window. A batch that overran the window is followed immediately,
with no catch-up burst.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

logger = logging.getLogger(__name__)


def wait_duration(elapsed: float, window: float) -> float:
    """Seconds to sleep so that consecutive batch starts are ``window`` apart.

    Args:
        elapsed: Seconds since the current batch started
        window: Minimum spacing between batch starts, in seconds

    Returns:
        ``max(0, window - elapsed)``
    """
    return max(0.0, window - elapsed)


async def sleep_for_window(
    elapsed: float,
    window: float,
    cancel_event: Optional[asyncio.Event] = None,
) -> bool:
    """Sleep out the remainder of the rate-limit window.

    Returns early when ``cancel_event`` is set. Task cancellation propagates
    as ``asyncio.CancelledError``.

    Returns:
        True if the full remainder was slept (or nothing was due), False if
        the wait was cut short by the cancel event.
    """
    delay = wait_duration(elapsed, window)
    if delay <= 0:
        return True

    logger.info(
        f"Waiting {delay:.3f}s before next batch",
        extra={"duration_ms": round(delay * 1000)},
    )
    if cancel_event is None:
        await asyncio.sleep(delay)
        return True

    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return True
    return False

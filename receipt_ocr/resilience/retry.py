"""Retry logic with exponential backoff and jitter.

The pipeline does not retry by default. A controller configured with a
RetryConfig wraps each inference call in retry_with_backoff, retrying
only transient inference errors.

Example:
    >>> config = RetryConfig(max_attempts=3, initial_delay_seconds=1.0)
    >>> raw = await retry_with_backoff(
    ...     invoker.invoke,
    ...     config,
    ...     (TransientInferenceError,),
    ...     "data/receipt/1.pdf",
    ... )
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Tuple, Type

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry logic.

    Attributes:
        max_attempts: Maximum number of attempts (including initial)
        initial_delay_seconds: Initial delay before first retry
        max_delay_seconds: Maximum delay between retries
        exponential_base: Base for exponential backoff (delay *= base ** attempt)
        jitter: Whether to add random jitter to delays
    """

    max_attempts: int = 3
    initial_delay_seconds: float = 1.0
    max_delay_seconds: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True


def compute_delay(config: RetryConfig, attempt: int) -> float:
    """Delay before retry number ``attempt + 1`` (attempt is zero-based)."""
    delay = min(
        config.initial_delay_seconds * (config.exponential_base**attempt),
        config.max_delay_seconds,
    )
    if config.jitter:
        delay = delay * (0.5 + random.random())  # Random between 50% and 150%
    return delay


async def retry_with_backoff(
    func: Callable[..., Awaitable[Any]],
    config: RetryConfig,
    retryable_exceptions: Tuple[Type[BaseException], ...],
    *args,
    **kwargs,
) -> Any:
    """Await ``func`` with exponential backoff and jitter between attempts.

    Args:
        func: Coroutine function to execute
        config: Retry configuration
        retryable_exceptions: Tuple of exception types that trigger retry
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result from the first successful call

    Raises:
        The last exception if all attempts fail, or any non-retryable
        exception immediately
    """
    for attempt in range(config.max_attempts):
        try:
            return await func(*args, **kwargs)
        except retryable_exceptions as e:
            if attempt == config.max_attempts - 1:
                logger.error(
                    f"All {config.max_attempts} retry attempts failed",
                    extra={"retry_attempt": attempt + 1},
                )
                raise

            delay = compute_delay(config, attempt)
            logger.warning(
                f"Attempt {attempt + 1}/{config.max_attempts} failed: {type(e).__name__}: {e}. "
                f"Retrying in {delay:.2f}s...",
                extra={"retry_attempt": attempt + 1},
            )
            await asyncio.sleep(delay)

    raise ValueError(f"max_attempts must be >= 1, got {config.max_attempts}")

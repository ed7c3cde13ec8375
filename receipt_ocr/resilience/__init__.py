"""Resilience utilities for external service calls.

- Retry Logic: opt-in handling of transient inference errors
"""

from receipt_ocr.resilience.retry import RetryConfig, retry_with_backoff

__all__ = [
    "retry_with_backoff",
    "RetryConfig",
]

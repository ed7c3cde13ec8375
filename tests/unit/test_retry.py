"""Unit tests for retry logic with exponential backoff."""

from unittest.mock import AsyncMock, patch

import pytest

from receipt_ocr.core.exceptions import PermanentInferenceError, TransientInferenceError
from receipt_ocr.resilience.retry import RetryConfig, compute_delay, retry_with_backoff


class FlakyCall:
    """Coroutine callable failing a set number of times before succeeding."""

    def __init__(self, failures: int, exc_factory=lambda n: TransientInferenceError(f"attempt {n}")):
        self.failures = failures
        self.exc_factory = exc_factory
        self.calls = 0

    async def __call__(self, *args, **kwargs):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc_factory(self.calls)
        return ("success", args, kwargs)


def _fast(max_attempts: int = 3) -> RetryConfig:
    return RetryConfig(max_attempts=max_attempts, initial_delay_seconds=0.001, jitter=False)


class TestRetryBasics:
    """Tests for basic retry functionality."""

    @pytest.mark.asyncio
    async def test_immediate_success_no_retry(self):
        """Test a call that succeeds immediately is not retried."""
        call = FlakyCall(failures=0)
        result = await retry_with_backoff(call, _fast(), (TransientInferenceError,))

        assert result[0] == "success"
        assert call.calls == 1

    @pytest.mark.asyncio
    async def test_retries_on_specified_exception(self):
        """Test retry happens on the specified exception type."""
        call = FlakyCall(failures=2)
        result = await retry_with_backoff(call, _fast(), (TransientInferenceError,))

        assert result[0] == "success"
        assert call.calls == 3

    @pytest.mark.asyncio
    async def test_raises_after_max_attempts(self):
        """Test the last exception is raised once attempts are exhausted."""
        call = FlakyCall(failures=10)
        with pytest.raises(TransientInferenceError, match="attempt 3"):
            await retry_with_backoff(call, _fast(), (TransientInferenceError,))
        assert call.calls == 3

    @pytest.mark.asyncio
    async def test_does_not_retry_on_other_exceptions(self):
        """Test non-retryable exceptions propagate immediately."""
        call = FlakyCall(failures=5, exc_factory=lambda n: PermanentInferenceError("400"))
        with pytest.raises(PermanentInferenceError):
            await retry_with_backoff(call, _fast(), (TransientInferenceError,))
        assert call.calls == 1

    @pytest.mark.asyncio
    async def test_passes_arguments(self):
        """Test positional and keyword arguments reach the function."""
        call = FlakyCall(failures=1)
        result = await retry_with_backoff(
            call, _fast(), (TransientInferenceError,), "1.pdf", timeout=5
        )
        assert result == ("success", ("1.pdf",), {"timeout": 5})


class TestRetryConfiguration:
    """Tests for backoff computation."""

    @pytest.mark.asyncio
    async def test_exponential_backoff_delays(self):
        """Test delays grow exponentially between attempts."""
        config = RetryConfig(max_attempts=4, initial_delay_seconds=1.0, jitter=False)
        sleep = AsyncMock()
        with patch("receipt_ocr.resilience.retry.asyncio.sleep", sleep):
            with pytest.raises(TransientInferenceError):
                await retry_with_backoff(FlakyCall(failures=10), config, (TransientInferenceError,))

        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0, 4.0]

    def test_max_delay_cap(self):
        """Test the delay never exceeds max_delay_seconds."""
        config = RetryConfig(initial_delay_seconds=10.0, max_delay_seconds=15.0, jitter=False)
        assert compute_delay(config, 5) == 15.0

    def test_jitter_stays_within_bounds(self):
        """Test jitter keeps the delay between 50% and 150%."""
        config = RetryConfig(initial_delay_seconds=1.0, jitter=True)
        delays = [compute_delay(config, 0) for _ in range(50)]
        assert all(0.5 <= d <= 1.5 for d in delays)
        assert len(set(delays)) > 1

    @pytest.mark.asyncio
    async def test_single_attempt_no_retry(self):
        """Test max_attempts=1 makes a single call."""
        call = FlakyCall(failures=1)
        with pytest.raises(TransientInferenceError):
            await retry_with_backoff(call, _fast(max_attempts=1), (TransientInferenceError,))
        assert call.calls == 1

    @pytest.mark.asyncio
    async def test_zero_attempts_rejected(self):
        """Test max_attempts=0 is a configuration error."""
        with pytest.raises(ValueError):
            await retry_with_backoff(FlakyCall(0), _fast(max_attempts=0), (Exception,))

    def test_default_config_values(self):
        """Test RetryConfig defaults."""
        config = RetryConfig()
        assert config.max_attempts == 3
        assert config.initial_delay_seconds == 1.0
        assert config.max_delay_seconds == 60.0
        assert config.exponential_base == 2.0
        assert config.jitter is True


class TestRetryLogging:
    """Tests for retry log output."""

    @pytest.mark.asyncio
    async def test_logs_retry_attempts(self, caplog):
        """Test retries and final failure are logged."""
        with pytest.raises(TransientInferenceError):
            await retry_with_backoff(FlakyCall(failures=5), _fast(2), (TransientInferenceError,))

        assert any("Retrying" in record.message for record in caplog.records)
        assert any("All 2 retry attempts failed" in record.message for record in caplog.records)

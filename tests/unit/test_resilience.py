"""Tests for the retry schedule and transient-error classification."""

import asyncio

import httpx
import pytest

from usage_engine.core.resilience import (
    RetryConfig,
    calculate_backoff,
    is_transient_error,
)


class TestRetryConfig:
    """Tests for RetryConfig dataclass."""

    def test_default_values(self):
        """Test default retry configuration."""
        config = RetryConfig()
        assert config.max_retries == 3
        assert config.base_delay_seconds == 1.0
        assert config.exponential_base == 2.0
        assert config.max_delay_seconds is None
        assert config.jitter_factor == 0.0

    def test_max_attempts_includes_first_try(self):
        assert RetryConfig(max_retries=3).max_attempts == 4
        assert RetryConfig(max_retries=0).max_attempts == 1

    def test_negative_retries_rejected(self):
        with pytest.raises(ValueError):
            RetryConfig(max_retries=-1)

    def test_negative_delay_rejected(self):
        with pytest.raises(ValueError):
            RetryConfig(base_delay_seconds=-0.5)


class TestBackoffCalculation:
    """Tests for exponential backoff calculation."""

    def test_backoff_doubles_each_attempt(self):
        """Attempt n waits base * 2^n."""
        config = RetryConfig(base_delay_seconds=1.0)

        assert calculate_backoff(0, config) == 1.0
        assert calculate_backoff(1, config) == 2.0
        assert calculate_backoff(2, config) == 4.0

    def test_backoff_scales_with_base(self):
        config = RetryConfig(base_delay_seconds=0.25)
        assert calculate_backoff(3, config) == 2.0

    def test_backoff_capped_at_max(self):
        """Test that backoff is capped at max_delay."""
        config = RetryConfig(base_delay_seconds=1.0, max_delay_seconds=5.0)

        # Attempt 10 would be 1 * 2^10 = 1024, but capped at 5
        assert calculate_backoff(10, config) == 5.0

    def test_backoff_includes_jitter(self):
        """Test that jitter adds randomness within the configured fraction."""
        config = RetryConfig(base_delay_seconds=1.0, jitter_factor=0.25)

        delays = [calculate_backoff(1, config) for _ in range(10)]

        # Base delay at attempt 1 is 2.0, jitter adds 0-25%
        assert all(2.0 <= d <= 2.5 for d in delays)


class TestTransientErrorDetection:
    """Tests for transient error classification."""

    def test_httpx_transport_errors_are_transient(self):
        request = httpx.Request("GET", "https://amplitude.com/api/2/users")
        assert is_transient_error(httpx.ConnectError("refused", request=request))
        assert is_transient_error(httpx.ReadTimeout("slow", request=request))
        assert is_transient_error(httpx.RemoteProtocolError("reset", request=request))

    def test_socket_errors_are_transient(self):
        assert is_transient_error(ConnectionRefusedError())
        assert is_transient_error(ConnectionResetError())
        assert is_transient_error(asyncio.TimeoutError())

    def test_programming_errors_are_not_transient(self):
        assert not is_transient_error(ValueError("bad"))
        assert not is_transient_error(KeyError("missing"))

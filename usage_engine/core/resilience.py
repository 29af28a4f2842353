"""Retry schedule for rate-limited upstream APIs.

Provides the exponential backoff arithmetic and transient-failure
classification shared by outbound HTTP gateways.

Usage:
    from usage_engine.core.resilience import RetryConfig, calculate_backoff

    config = RetryConfig(max_retries=3, base_delay_seconds=1.0)
    delay = calculate_backoff(attempt, config)  # 1.0, 2.0, 4.0, ...
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Optional

import httpx


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior.

    ``max_retries`` counts retries after the first attempt, so a request is
    tried at most ``max_retries + 1`` times.
    """

    max_retries: int = 3
    base_delay_seconds: float = 1.0
    exponential_base: float = 2.0
    max_delay_seconds: Optional[float] = None
    jitter_factor: float = 0.0  # Fraction of the delay added as random jitter

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay_seconds < 0:
            raise ValueError("base_delay_seconds must be >= 0")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


def calculate_backoff(attempt: int, config: RetryConfig) -> float:
    """Calculate delay with exponential backoff.

    Args:
        attempt: Current attempt number (0-indexed)
        config: Retry configuration

    Returns:
        Delay in seconds before next retry
    """
    # base_delay * (exponential_base ^ attempt)
    delay = config.base_delay_seconds * (config.exponential_base**attempt)

    if config.max_delay_seconds is not None:
        delay = min(delay, config.max_delay_seconds)

    if config.jitter_factor:
        delay += delay * config.jitter_factor * random.random()

    return delay


def is_transient_error(error: BaseException) -> bool:
    """Check if a transport-level error is worth retrying.

    Returns True for connection failures, resets and timeouts.
    HTTP status handling is the caller's concern.
    """
    if isinstance(error, httpx.TransportError):
        return True

    return isinstance(
        error,
        (
            ConnectionRefusedError,
            ConnectionResetError,
            TimeoutError,
            asyncio.TimeoutError,
        ),
    )

"""Error taxonomy for upstream analytics queries."""

from typing import Any, Optional


class UsageEngineError(Exception):
    """Base class for failures surfaced by the usage engine."""

    kind = "usage_engine_error"
    retryable = False


class RateLimitExceeded(UsageEngineError):
    """Raised when 429 responses persist after every retry."""

    kind = "rate_limit_exceeded"
    retryable = True

    def __init__(self, endpoint: str, attempts: int, body: Any = None):
        self.endpoint = endpoint
        self.attempts = attempts
        self.body = body
        super().__init__(
            f"Amplitude API rate limited after {attempts} attempts: {endpoint}"
        )


class NetworkError(UsageEngineError):
    """Raised when transport failures persist after every retry."""

    kind = "network_error"
    retryable = True

    def __init__(self, endpoint: str, attempts: int, cause: Optional[BaseException] = None):
        self.endpoint = endpoint
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"Amplitude API unreachable after {attempts} attempts: {endpoint} ({cause})"
        )


class ApiError(UsageEngineError):
    """Raised on any non-2xx, non-429 response. Never retried."""

    kind = "api_error"

    def __init__(self, endpoint: str, status: int, body: Any = None):
        self.endpoint = endpoint
        self.status = status
        self.body = body
        super().__init__(f"Amplitude API error: {status} - {body}")

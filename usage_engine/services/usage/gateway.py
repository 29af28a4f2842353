"""Authenticated gateway to the Amplitude Dashboard REST API."""

import asyncio
import base64
import time
from typing import Any, Mapping, Optional

import httpx
import structlog

from usage_engine.core.resilience import RetryConfig, calculate_backoff, is_transient_error
from usage_engine.routers.metrics import record_upstream_query, record_upstream_retry
from usage_engine.services.usage.errors import ApiError, NetworkError, RateLimitExceeded

logger = structlog.get_logger(__name__)

DEFAULT_BASE_URL = "https://amplitude.com/api/2"


def basic_auth_header(api_key: str, secret_key: str) -> str:
    """Build the HTTP Basic header value for ``api_key:secret_key``."""
    encoded = base64.b64encode(f"{api_key}:{secret_key}".encode("utf-8")).decode("ascii")
    return f"Basic {encoded}"


class RequestGateway:
    """
    Issues authenticated GET requests against one Amplitude project.

    Features:
    - HTTP Basic auth over api_key:secret_key
    - Exponential backoff on 429 and transport failures
    - Immediate failure on any other non-2xx status
    - No caching; callers memoize
    """

    def __init__(
        self,
        api_key: str,
        secret_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        retry: Optional[RetryConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the gateway.

        Args:
            api_key: Amplitude API key
            secret_key: Amplitude secret key
            base_url: API base URL (no trailing slash needed)
            timeout: Per-request timeout in seconds
            retry: Default retry schedule (3 retries, 1s base)
            client: Optional shared httpx client; created lazily when omitted
        """
        self._auth_header = basic_auth_header(api_key, secret_key)
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry = retry or RetryConfig()
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP client if this gateway created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def fetch(
        self,
        endpoint: str,
        params: Optional[Mapping[str, str]] = None,
        max_retries: Optional[int] = None,
        base_delay_seconds: Optional[float] = None,
    ) -> Any:
        """
        GET ``endpoint`` and return the parsed JSON body.

        Args:
            endpoint: Path below the base URL (e.g. "/events/segmentation")
            params: Query parameters
            max_retries: Retries after the first attempt (default from config)
            base_delay_seconds: Backoff base; attempt n waits base * 2^n

        Returns:
            Parsed JSON response body

        Raises:
            RateLimitExceeded: 429 persisted through every retry
            NetworkError: Transport failure persisted through every retry
            ApiError: Any other non-2xx status (not retried)
        """
        config = RetryConfig(
            max_retries=self.retry.max_retries if max_retries is None else max_retries,
            base_delay_seconds=(
                self.retry.base_delay_seconds
                if base_delay_seconds is None
                else base_delay_seconds
            ),
            exponential_base=self.retry.exponential_base,
            max_delay_seconds=self.retry.max_delay_seconds,
            jitter_factor=self.retry.jitter_factor,
        )
        url = f"{self.base_url}{endpoint}"
        headers = {
            "Authorization": self._auth_header,
            "Content-Type": "application/json",
        }
        client = self._get_client()
        log = logger.bind(endpoint=endpoint)
        start = time.perf_counter()

        for attempt in range(config.max_attempts):
            try:
                response = await client.get(url, params=dict(params or {}), headers=headers)
            except Exception as e:
                if not is_transient_error(e):
                    raise

                if attempt < config.max_retries:
                    delay = calculate_backoff(attempt, config)
                    log.warning(
                        "amplitude_network_error",
                        attempt=attempt + 1,
                        max_attempts=config.max_attempts,
                        delay_seconds=delay,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    record_upstream_retry("network_error")
                    await asyncio.sleep(delay)
                    continue

                log.error(
                    "amplitude_network_retries_exhausted",
                    attempts=config.max_attempts,
                    error=str(e),
                )
                record_upstream_query(endpoint, "network_error", time.perf_counter() - start)
                raise NetworkError(endpoint, config.max_attempts, e) from e

            if response.is_success:
                # A 2xx without a JSON body (204, maintenance page) is an upstream fault
                try:
                    body = response.json()
                except ValueError:
                    log.warning(
                        "amplitude_invalid_body",
                        status=response.status_code,
                        response=response.text[:200],
                    )
                    record_upstream_query(endpoint, "api_error", time.perf_counter() - start)
                    raise ApiError(endpoint, response.status_code, response.text) from None
                record_upstream_query(endpoint, "ok", time.perf_counter() - start)
                return body

            if response.status_code == 429:
                if attempt < config.max_retries:
                    delay = calculate_backoff(attempt, config)
                    log.warning(
                        "amplitude_rate_limited",
                        attempt=attempt + 1,
                        max_attempts=config.max_attempts,
                        delay_seconds=delay,
                    )
                    record_upstream_retry("rate_limited")
                    await asyncio.sleep(delay)
                    continue

                log.error(
                    "amplitude_rate_limit_exhausted",
                    attempts=config.max_attempts,
                    response=response.text[:200],
                )
                record_upstream_query(endpoint, "rate_limited", time.perf_counter() - start)
                raise RateLimitExceeded(endpoint, config.max_attempts, response.text)

            # Bad query shape, auth failure, etc. - don't retry
            log.warning(
                "amplitude_api_error",
                status=response.status_code,
                response=response.text[:200],
            )
            record_upstream_query(endpoint, "api_error", time.perf_counter() - start)
            raise ApiError(endpoint, response.status_code, response.text)

        # Unreachable: every iteration returns, continues or raises
        raise RuntimeError("Unexpected exit from Amplitude retry loop")

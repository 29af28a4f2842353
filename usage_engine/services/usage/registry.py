"""Registry of configured products and their usage engines."""

from typing import Iterator, Optional

import httpx
import structlog

from usage_engine.config import ProductCredentials, Settings
from usage_engine.core.resilience import RetryConfig
from usage_engine.services.usage.cache import UsageCache
from usage_engine.services.usage.engine import CacheTTLs, UsageEngine
from usage_engine.services.usage.gateway import RequestGateway
from usage_engine.services.usage.limiter import ProjectQueryQueue

logger = structlog.get_logger(__name__)


class ProductNotFoundError(LookupError):
    """Raised when a product slug is not configured."""

    def __init__(self, slug: str, available: list[str]):
        self.slug = slug
        self.available = available
        super().__init__(f"Product not found: {slug}")


class ProductRegistry:
    """
    One UsageEngine per configured product, keyed by slug.

    All engines share a single cache, query queue and HTTP client; the
    registry owns the client and closes it on shutdown.
    """

    def __init__(
        self,
        products: list[ProductCredentials],
        cache: UsageCache,
        queue: ProjectQueryQueue,
        base_url: str,
        timeout: float = 30.0,
        retry: Optional[RetryConfig] = None,
        ttls: Optional[CacheTTLs] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.cache = cache
        self.queue = queue
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._engines: dict[str, UsageEngine] = {}

        for product in products:
            if product.slug in self._engines:
                raise ValueError(f"Duplicate product slug: {product.slug}")
            gateway = RequestGateway(
                api_key=product.api_key,
                secret_key=product.secret_key,
                base_url=base_url,
                timeout=timeout,
                retry=retry,
                client=self._client,
            )
            self._engines[product.slug] = UsageEngine(
                product=product,
                gateway=gateway,
                cache=cache,
                queue=queue,
                ttls=ttls,
            )

        logger.info("product_registry_initialized", products=list(self._engines))

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        cache: Optional[UsageCache] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> "ProductRegistry":
        """Build the registry, cache and queue from application settings."""
        return cls(
            products=settings.amplitude_products,
            cache=cache or UsageCache(default_ttl_minutes=settings.usage_cache_ttl_minutes),
            queue=ProjectQueryQueue(max_concurrent=settings.project_query_concurrency),
            base_url=settings.amplitude_base_url,
            timeout=settings.amplitude_timeout_s,
            retry=RetryConfig(
                max_retries=settings.amplitude_max_retries,
                base_delay_seconds=settings.amplitude_base_delay_s,
            ),
            ttls=CacheTTLs(
                usage=settings.usage_cache_ttl_minutes,
                quarterly=settings.quarterly_cache_ttl_minutes,
                taxonomy=settings.taxonomy_cache_ttl_minutes,
            ),
            client=client,
        )

    def __len__(self) -> int:
        return len(self._engines)

    def __iter__(self) -> Iterator[UsageEngine]:
        return iter(self._engines.values())

    def slugs(self) -> list[str]:
        return list(self._engines)

    def get(self, slug: str) -> UsageEngine:
        """Engine for ``slug``, or ProductNotFoundError listing the known slugs."""
        try:
            return self._engines[slug]
        except KeyError:
            raise ProductNotFoundError(slug, self.slugs()) from None

    async def close(self) -> None:
        """Close the shared HTTP client if the registry created it."""
        if self._owns_client:
            await self._client.aclose()

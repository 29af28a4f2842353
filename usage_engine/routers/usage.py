"""
Usage analytics endpoints.

Thin translation layer over the per-product UsageEngine: resolves the
product slug, calls the engine, and returns its JSON-ready result. Engine
failures are mapped to error responses by the handlers in core.middleware.
"""

import asyncio
from datetime import date
from typing import Any, Optional

import structlog
from fastapi import APIRouter, HTTPException, Query, status

from usage_engine.schemas import (
    CacheClearResponse,
    LabelTotal,
    PresetListResponse,
    ProductInfo,
    ProductListResponse,
    ProductSummary,
    SegmentationResponse,
    SummaryListResponse,
)
from usage_engine.services.usage import (
    DEFAULT_ORG_PROPERTY,
    PRESETS,
    ProductRegistry,
    UsageEngine,
    UsageEngineError,
    generic_preset,
    get_preset,
    sum_totals,
)
from usage_engine.services.usage.quarters import format_api_date

router = APIRouter(prefix="/api/usage", tags=["usage"])
logger = structlog.get_logger(__name__)

# Product registry (set during app startup)
_registry: Optional[ProductRegistry] = None


def set_registry(registry: Optional[ProductRegistry]) -> None:
    """Set the product registry for this router."""
    global _registry
    _registry = registry


def _get_registry() -> ProductRegistry:
    if _registry is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Usage engine not initialized",
        )
    return _registry


def _get_engine(product: str) -> UsageEngine:
    """Resolve a product slug; unknown slugs raise ProductNotFoundError."""
    return _get_registry().get(product)


async def _summary_or_error(
    engine: UsageEngine, organization: Optional[str]
) -> ProductSummary:
    """Summary for one product; a failure is reported in place of the numbers."""
    try:
        summary = await engine.usage_summary(organization)
    except UsageEngineError as e:
        logger.warning(
            "product_summary_failed",
            product=engine.product.slug,
            organization=organization,
            error=str(e),
            error_code=e.kind,
        )
        return ProductSummary(
            slug=engine.product.slug,
            product=engine.product.name,
            organization=organization,
            error=str(e),
            error_code=e.kind,
        )
    return ProductSummary(slug=engine.product.slug, **summary)


# =============================================================================
# Products & summaries
# =============================================================================


@router.get("/products", response_model=ProductListResponse)
async def list_products() -> ProductListResponse:
    """List configured products."""
    registry = _get_registry()
    return ProductListResponse(
        products=[
            ProductInfo(
                name=engine.product.name,
                slug=engine.product.slug,
                project_id=engine.product.project_id,
            )
            for engine in registry
        ]
    )


@router.get("/presets", response_model=PresetListResponse)
async def list_presets() -> PresetListResponse:
    """List quarterly report presets."""
    return PresetListResponse(presets=[p.to_dict() for p in PRESETS.values()])


@router.get("/summary", response_model=SummaryListResponse)
async def all_summaries() -> SummaryListResponse:
    """7- and 30-day usage summary for every product."""
    registry = _get_registry()
    summaries = await asyncio.gather(
        *(_summary_or_error(engine, None) for engine in registry)
    )
    return SummaryListResponse(summaries=list(summaries))


@router.get("/summary/{product}", response_model=ProductSummary)
async def product_summary(product: str) -> ProductSummary:
    """7- and 30-day usage summary for one product."""
    engine = _get_engine(product)
    summary = await engine.usage_summary()
    return ProductSummary(slug=engine.product.slug, **summary)


@router.get("/org/{organization}", response_model=SummaryListResponse)
async def organization_summaries(organization: str) -> SummaryListResponse:
    """Usage summary of one organization across every product."""
    registry = _get_registry()
    summaries = await asyncio.gather(
        *(_summary_or_error(engine, organization) for engine in registry)
    )
    return SummaryListResponse(organization=organization, summaries=list(summaries))


# =============================================================================
# Daily usage
# =============================================================================


@router.get("/usage/{product}")
async def product_usage(
    product: str,
    days: int = Query(30, ge=1, le=365, description="Days to look back"),
) -> dict[str, Any]:
    """Daily active and new users for a product."""
    return await _get_engine(product).product_usage(days=days)


@router.get("/usage/{product}/org/{organization}")
async def organization_usage(
    product: str,
    organization: str,
    days: int = Query(30, ge=1, le=365, description="Days to look back"),
) -> dict[str, Any]:
    """Daily active and new users for one organization of a product."""
    return await _get_engine(product).product_usage(days=days, organization=organization)


# =============================================================================
# Quarterly
# =============================================================================


@router.get("/quarterly/{product}/events")
async def quarterly_event_usage(
    product: str,
    event_type: str = Query(..., description="Event to count"),
    group_by: str = Query(DEFAULT_ORG_PROPERTY, description="gp:/up:/ep: property"),
) -> dict[str, Any]:
    """Unique users of an event per label for the last three quarters."""
    return await _get_engine(product).event_usage_by_label_quarterly(
        event_type, group_by=group_by
    )


@router.get("/quarterly/{product}/org/{organization}")
async def quarterly_organization_metrics(
    product: str,
    organization: str,
    preset: str = Query(..., description="Preset slug, or 'generic'"),
    event_type: Optional[str] = Query(None, description="Event for the generic preset"),
    org_property: str = Query(
        DEFAULT_ORG_PROPERTY, description="Organization property for the generic preset"
    ),
) -> dict[str, Any]:
    """Quarterly report of a preset for one organization."""
    engine = _get_engine(product)
    if preset == "generic":
        if not event_type:
            raise ValueError("event_type is required for the generic preset")
        selected = generic_preset(event_type, org_property=org_property)
    else:
        selected = get_preset(preset)
    return await engine.quarterly_metrics(organization, selected)


@router.get("/quarterly/{product}/totals")
async def quarterly_product_totals(
    product: str,
    page_view_event: str = Query("page_view", description="Page view event name"),
) -> dict[str, Any]:
    """Page views and time spent across all organizations, per quarter."""
    return await _get_engine(product).quarterly_product_metrics(page_view_event)


# =============================================================================
# Segmentation & features
# =============================================================================


@router.get("/segmentation/{product}", response_model=SegmentationResponse)
async def segmentation(
    product: str,
    event_type: str = Query(..., description="Event to count"),
    group_by: str = Query(..., description="gp:/up:/ep: property"),
    start: date = Query(..., description="First day (inclusive)"),
    end: date = Query(..., description="Last day (inclusive)"),
    metric: str = Query("uniques", description="uniques, totals, avg or propSum"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum groups"),
) -> SegmentationResponse:
    """Per-label totals of an event over an explicit date range."""
    engine = _get_engine(product)
    labels = await engine.event_segmentation(
        event_type, group_by, start, end, metric=metric, limit=limit
    )
    return SegmentationResponse(
        product=engine.product.slug,
        event_type=event_type,
        group_by=group_by,
        metric=metric,
        start_date=format_api_date(start),
        end_date=format_api_date(end),
        labels=[LabelTotal(label=m.label, total=m.total) for m in labels],
        total=sum_totals(labels),
    )


@router.get("/features/{product}")
async def feature_usage(
    product: str,
    group_by: str = Query("gp:initial_referring_domain", description="gp:/up:/ep: property"),
    days: int = Query(30, ge=1, le=365, description="Days to look back"),
) -> dict[str, Any]:
    """Visitors and paid-feature users per label."""
    return await _get_engine(product).feature_usage_by_label(group_by=group_by, days=days)


# =============================================================================
# Discovery
# =============================================================================


@router.get("/properties/{product}")
async def user_properties(product: str) -> dict[str, Any]:
    """User properties defined in the product's project."""
    engine = _get_engine(product)
    return {"product": engine.product.slug, "properties": await engine.user_properties()}


@router.get("/probe/{product}")
async def probe_property(
    product: str,
    organization: str = Query(..., description="Organization to match"),
    event_type: str = Query(..., description="Event to count"),
    property_key: str = Query(..., description="Property holding the organization"),
    property_type: str = Query("user", pattern="^(user|event)$"),
) -> dict[str, Any]:
    """Current-quarter event count with a property matched to an organization."""
    engine = _get_engine(product)
    count = await engine.probe_property(
        organization, event_type, property_key, property_type=property_type
    )
    return {
        "product": engine.product.slug,
        "organization": organization,
        "event_type": event_type,
        "property_key": property_key,
        "property_type": property_type,
        "count": count,
        "matched": count > 0,
    }


# =============================================================================
# Cache
# =============================================================================


@router.post("/cache/clear", response_model=CacheClearResponse)
async def clear_cache() -> CacheClearResponse:
    """Drop every cached usage result."""
    registry = _get_registry()
    removed = len(registry.cache)
    registry.cache.clear()
    logger.info("usage_cache_cleared", entries_removed=removed)
    return CacheClearResponse(entries_removed=removed)

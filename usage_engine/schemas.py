"""Request/response schemas for the usage API."""

from typing import Any, Optional

from pydantic import BaseModel, Field


# ===========================================
# Errors
# ===========================================


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str = Field(..., description="Error message")
    error_code: Optional[str] = Field(None, description="Error code")
    retryable: bool = Field(default=False, description="Whether error is retryable")


class ProductNotFoundResponse(ErrorResponse):
    """Error response for an unknown product slug."""

    available: list[str] = Field(default_factory=list, description="Configured slugs")


# ===========================================
# Health
# ===========================================


class CacheStats(BaseModel):
    """Usage cache occupancy and lookup counters."""

    entries: int
    hits: int
    misses: int


class HealthResponse(BaseModel):
    """Response for health endpoint."""

    status: str = Field(..., description="Overall service status")
    version: str = Field(..., description="Service version")
    products: list[str] = Field(..., description="Configured product slugs")
    cache: CacheStats = Field(..., description="Usage cache statistics")


# ===========================================
# Products & summaries
# ===========================================


class ProductInfo(BaseModel):
    """A configured product."""

    name: str
    slug: str
    project_id: str


class ProductListResponse(BaseModel):
    """Response listing configured products."""

    products: list[ProductInfo]


class WindowCounts(BaseModel):
    """Unique active and new users over a rolling window."""

    active_users: float = 0
    new_users: float = 0


class ProductSummary(BaseModel):
    """7- and 30-day summary for one product, or the error that prevented it."""

    slug: str
    product: str
    organization: Optional[str] = None
    last_7_days: Optional[WindowCounts] = None
    last_30_days: Optional[WindowCounts] = None
    error: Optional[str] = Field(None, description="Set when the product failed")
    error_code: Optional[str] = None


class SummaryListResponse(BaseModel):
    """Summaries across every configured product."""

    organization: Optional[str] = None
    summaries: list[ProductSummary]


# ===========================================
# Segmentation
# ===========================================


class LabelTotal(BaseModel):
    """Per-label total of a grouped segmentation query."""

    label: str
    total: float


class SegmentationResponse(BaseModel):
    """Grouped segmentation result over an explicit date range."""

    product: str
    event_type: str
    group_by: str
    metric: str
    start_date: str
    end_date: str
    labels: list[LabelTotal]
    total: float


class CacheClearResponse(BaseModel):
    """Result of clearing the usage cache."""

    status: str = "cleared"
    entries_removed: int


class PresetListResponse(BaseModel):
    """Available quarterly presets."""

    presets: list[dict[str, Any]]

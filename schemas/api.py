"""
Pydantic schemas for API request/response models

Groups: sync log (status and history), health, listings (reads over the
replicated tables) and sync triggers.
"""

from pydantic import BaseModel, Field, validator
from typing import Optional, List, Dict, Any, Generic, TypeVar
from datetime import datetime, timezone
from models.base import FeedScope, SyncStatus

T = TypeVar("T")


class APIResponse(BaseModel, Generic[T]):
    request_id: str
    api_latency_ms: int
    data: T


# ============================================================================
# Sync Log Schemas
# ============================================================================

class SyncLogEntryResponse(BaseModel):
    """One sync log entry"""
    timestamp: datetime
    status: SyncStatus
    pipeline: Optional[str] = None
    cursors: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    total_processed: int = 0
    total_successful: int = 0
    total_failed: int = 0
    total_skipped: int = 0
    error_count: int = 0
    last_error_message: Optional[str] = None
    duration_seconds: Optional[float] = None

    class Config:
        from_attributes = True
        use_enum_values = True


class SyncStatusResponse(BaseModel):
    """Newest sync log entry plus the resume cursors it carries"""
    latest: Optional[SyncLogEntryResponse] = None
    cursors: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    running: bool = False


class SyncHistoryResponse(BaseModel):
    entries: List[SyncLogEntryResponse] = Field(default_factory=list)
    count: int = 0


class SyncConfigResponse(BaseModel):
    """Effective sync configuration (secrets excluded)"""
    feed_base_url: str
    idx_token_configured: bool
    vow_token_configured: bool
    sync_start_date: str
    sync_interval_minutes: int
    batch_size_property: int
    child_page_size: int
    child_key_chunk_size: int
    db_chunk_size: int
    rate_limit_per_minute: int
    rate_limit_per_hour: int
    max_retries: int
    circuit_failure_threshold: int
    circuit_recovery_timeout: float


# ============================================================================
# Health Check Schemas
# ============================================================================

class HealthCheckResponse(BaseModel):
    """Health check response model"""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    database_connected: bool
    last_sync_status: Optional[str] = None
    last_sync_at: Optional[datetime] = None
    last_error_message: Optional[str] = None
    status: str = Field("healthy", description="Overall system status: healthy, degraded, unhealthy")

    @validator("status", pre=True, always=True)
    def determine_status(cls, v, values):
        """Determine overall health status"""
        if not values.get("database_connected", False):
            return "unhealthy"
        if values.get("last_sync_status") == SyncStatus.FAILED.value:
            return "degraded"
        return "healthy"

    class Config:
        json_schema_extra = {
            "example": {
                "status": "healthy",
                "timestamp": "2024-01-15T10:30:00Z",
                "database_connected": True,
                "last_sync_status": "success",
                "last_sync_at": "2024-01-15T10:00:00Z",
                "last_error_message": None,
            }
        }


# ============================================================================
# Listing Schemas
# ============================================================================

class PropertyResponse(BaseModel):
    """Replicated listing (typed columns only)"""
    listing_key: str
    feed_scope: FeedScope
    mls_status: Optional[str] = None
    contract_status: Optional[str] = None
    standard_status: Optional[str] = None
    transaction_type: Optional[str] = None
    list_price: Optional[float] = None
    close_price: Optional[float] = None
    property_type: Optional[str] = None
    property_sub_type: Optional[str] = None
    unparsed_address: Optional[str] = None
    city: Optional[str] = None
    state_or_province: Optional[str] = None
    postal_code: Optional[str] = None
    bedrooms_total: Optional[int] = None
    bathrooms_total_integer: Optional[int] = None
    modification_timestamp: datetime
    synced_at: Optional[datetime] = None

    class Config:
        from_attributes = True
        use_enum_values = True


class PropertyDetailResponse(PropertyResponse):
    """Listing with the full feed record and child counts"""
    payload: Dict[str, Any] = Field(default_factory=dict)
    media_count: int = 0
    room_count: int = 0
    open_house_count: int = 0


class MediaResponse(BaseModel):
    media_key: str
    resource_record_key: str
    media_url: Optional[str] = None
    media_category: Optional[str] = None
    media_type: Optional[str] = None
    media_status: Optional[str] = None
    image_size_description: Optional[str] = None
    class_name: Optional[str] = None
    display_order: Optional[int] = None
    preferred_photo: Optional[bool] = None
    media_modification_timestamp: datetime

    class Config:
        from_attributes = True


class PaginationMetadata(BaseModel):
    """Pagination metadata"""
    current_page: int
    page_size: int
    total_items: int
    total_pages: int
    has_next: bool
    has_previous: bool


class PropertyListResponse(BaseModel):
    items: List[PropertyResponse]
    pagination: PaginationMetadata
    filters_applied: Dict[str, Any] = Field(default_factory=dict)


class PropertyMediaResponse(BaseModel):
    listing_key: str
    items: List[MediaResponse]
    count: int


class PropertyStatsResponse(BaseModel):
    """Aggregate counts over the replicated tables"""
    total_properties: int
    by_feed_scope: Dict[str, int] = Field(default_factory=dict)
    by_property_type: Dict[str, int] = Field(default_factory=dict)
    by_contract_status: Dict[str, int] = Field(default_factory=dict)
    average_list_price: Optional[float] = None
    total_media: int = 0
    total_rooms: int = 0
    total_open_houses: int = 0
    last_modification: Optional[datetime] = None


# ============================================================================
# Sync Trigger Schemas
# ============================================================================

class SyncTriggerRequest(BaseModel):
    """Body for POST /sync/full and /sync/incremental"""
    sync_properties: bool = True
    sync_media: bool = True
    feed_scopes: List[FeedScope] = Field(default_factory=lambda: [FeedScope.IDX, FeedScope.VOW], min_length=1)
    max_records: Optional[int] = Field(None, ge=1)


class ResourceSyncRequest(BaseModel):
    """Body for POST /sync/properties and /sync/media"""
    incremental: bool = True
    feed_scopes: List[FeedScope] = Field(default_factory=lambda: [FeedScope.IDX, FeedScope.VOW], min_length=1)
    max_records: Optional[int] = Field(None, ge=1)


class SyncTriggerResponse(BaseModel):
    sync_id: str
    message: str
    started_at: datetime
    feed_scopes: List[str]
    parents: bool
    include_children: bool
    standalone_children: List[str] = Field(default_factory=list)
    force: bool = False
    max_records: Optional[int] = None


class ListingSyncResponse(BaseModel):
    """Outcome of a single-listing sync"""
    listing_key: str
    feed_scope: str
    state: str
    processed: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    error_count: int = 0
    last_error_message: Optional[str] = None
    children: Dict[str, int] = Field(default_factory=dict)

"""
Listing endpoints: paginated reads over the replicated tables and
on-demand sync of a single listing.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, and_
from typing import Literal, Optional
import time
import math
import logging

from api.dependencies import ListingSyncer, get_db, get_listing_syncer
from core.exceptions import ListingNotFoundError
from models.base import FeedScope
from models.listings import Media, OpenHouse, Property, PropertyRoom
from schemas.api import (
    APIResponse,
    ListingSyncResponse,
    MediaResponse,
    PaginationMetadata,
    PropertyDetailResponse,
    PropertyListResponse,
    PropertyMediaResponse,
    PropertyResponse,
    PropertyStatsResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/properties", tags=["Properties"])

SORT_COLUMNS = {
    "modification_timestamp": Property.modification_timestamp,
    "list_price": Property.list_price,
    "listing_key": Property.listing_key,
}


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "")


async def _count(db: AsyncSession, model, *where) -> int:
    stmt = select(func.count()).select_from(model)
    if where:
        stmt = stmt.where(and_(*where))
    return (await db.execute(stmt)).scalar() or 0


async def _grouped(db: AsyncSession, column) -> dict:
    result = await db.execute(
        select(column, func.count()).where(column.isnot(None)).group_by(column)
    )
    return {getattr(value, "value", value): count for value, count in result.all()}


@router.get("", response_model=APIResponse[PropertyListResponse])
async def list_properties(
    request: Request,
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    feed_scope: Optional[FeedScope] = Query(None, description="Filter by feed scope"),
    city: Optional[str] = Query(None, description="City contains (case-insensitive)"),
    property_type: Optional[str] = Query(None),
    contract_status: Optional[str] = Query(None),
    mls_status: Optional[str] = Query(None),
    min_price: Optional[float] = Query(None, ge=0, description="Minimum list price"),
    max_price: Optional[float] = Query(None, ge=0, description="Maximum list price"),
    min_bedrooms: Optional[int] = Query(None, ge=0),
    search: Optional[str] = Query(None, description="Search in the address"),
    sort_by: Literal["modification_timestamp", "list_price", "listing_key"] = Query("modification_timestamp"),
    sort_order: Literal["asc", "desc"] = Query("desc"),
    db: AsyncSession = Depends(get_db),
):
    """Replicated listings, filtered and paginated."""
    start_time = time.perf_counter()
    request_id = _request_id(request)

    filters = []
    if feed_scope:
        filters.append(Property.feed_scope == feed_scope)
    if city:
        filters.append(Property.city.ilike(f"%{city}%"))
    if property_type:
        filters.append(Property.property_type == property_type)
    if contract_status:
        filters.append(Property.contract_status == contract_status)
    if mls_status:
        filters.append(Property.mls_status == mls_status)
    if min_price is not None:
        filters.append(Property.list_price >= min_price)
    if max_price is not None:
        filters.append(Property.list_price <= max_price)
    if min_bedrooms is not None:
        filters.append(Property.bedrooms_total >= min_bedrooms)
    if search:
        filters.append(Property.unparsed_address.ilike(f"%{search}%"))

    total_items = await _count(db, Property, *filters)
    total_pages = math.ceil(total_items / page_size) if total_items > 0 else 0

    sort_column = SORT_COLUMNS[sort_by]
    order = sort_column.asc() if sort_order == "asc" else sort_column.desc()
    query = select(Property)
    if filters:
        query = query.where(and_(*filters))
    # Key as tie-break keeps pages stable
    query = query.order_by(order, Property.listing_key.asc()).offset((page - 1) * page_size).limit(page_size)

    items = (await db.execute(query)).scalars().all()

    logger.info(f"[{request_id}] GET /properties - page={page}, returned {len(items)} of {total_items}")

    data = PropertyListResponse(
        items=[PropertyResponse.model_validate(item) for item in items],
        pagination=PaginationMetadata(
            current_page=page,
            page_size=page_size,
            total_items=total_items,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_previous=page > 1,
        ),
        filters_applied={k: v for k, v in {
            "feed_scope": feed_scope.value if feed_scope else None,
            "city": city,
            "property_type": property_type,
            "contract_status": contract_status,
            "mls_status": mls_status,
            "min_price": min_price,
            "max_price": max_price,
            "min_bedrooms": min_bedrooms,
            "search": search,
        }.items() if v is not None},
    )
    return APIResponse[PropertyListResponse](
        request_id=request_id,
        api_latency_ms=int((time.perf_counter() - start_time) * 1000),
        data=data,
    )


@router.get("/stats", response_model=APIResponse[PropertyStatsResponse])
async def property_stats(request: Request, db: AsyncSession = Depends(get_db)):
    """Totals and distributions over the replicated tables."""
    start_time = time.perf_counter()

    average_price = (await db.execute(
        select(func.avg(Property.list_price)).where(Property.list_price.isnot(None))
    )).scalar()
    last_modification = (await db.execute(select(func.max(Property.modification_timestamp)))).scalar()

    data = PropertyStatsResponse(
        total_properties=await _count(db, Property),
        by_feed_scope=await _grouped(db, Property.feed_scope),
        by_property_type=await _grouped(db, Property.property_type),
        by_contract_status=await _grouped(db, Property.contract_status),
        average_list_price=round(average_price, 2) if average_price is not None else None,
        total_media=await _count(db, Media),
        total_rooms=await _count(db, PropertyRoom),
        total_open_houses=await _count(db, OpenHouse),
        last_modification=last_modification,
    )
    return APIResponse[PropertyStatsResponse](
        request_id=_request_id(request),
        api_latency_ms=int((time.perf_counter() - start_time) * 1000),
        data=data,
    )


@router.get("/{listing_key}", response_model=APIResponse[PropertyDetailResponse])
async def get_property(request: Request, listing_key: str, db: AsyncSession = Depends(get_db)):
    start_time = time.perf_counter()
    item = await db.get(Property, listing_key)
    if item is None:
        raise HTTPException(status_code=404, detail=f"Property {listing_key} not found")

    data = PropertyDetailResponse.model_validate(item)
    data.media_count = await _count(db, Media, Media.resource_record_key == listing_key)
    data.room_count = await _count(db, PropertyRoom, PropertyRoom.listing_key == listing_key)
    data.open_house_count = await _count(db, OpenHouse, OpenHouse.listing_key == listing_key)
    return APIResponse[PropertyDetailResponse](
        request_id=_request_id(request),
        api_latency_ms=int((time.perf_counter() - start_time) * 1000),
        data=data,
    )


@router.get("/{listing_key}/media", response_model=APIResponse[PropertyMediaResponse])
async def get_property_media(
    request: Request,
    listing_key: str,
    media_category: Optional[str] = Query(None, description="e.g. Photo"),
    preferred_only: bool = Query(False),
    db: AsyncSession = Depends(get_db),
):
    """Media of one listing in display order."""
    start_time = time.perf_counter()
    if await db.get(Property, listing_key) is None:
        raise HTTPException(status_code=404, detail=f"Property {listing_key} not found")

    query = select(Media).where(Media.resource_record_key == listing_key)
    if media_category:
        query = query.where(Media.media_category == media_category)
    if preferred_only:
        query = query.where(Media.preferred_photo.is_(True))
    query = query.order_by(Media.display_order.asc(), Media.media_key.asc())

    items = (await db.execute(query)).scalars().all()
    data = PropertyMediaResponse(
        listing_key=listing_key,
        items=[MediaResponse.model_validate(item) for item in items],
        count=len(items),
    )
    return APIResponse[PropertyMediaResponse](
        request_id=_request_id(request),
        api_latency_ms=int((time.perf_counter() - start_time) * 1000),
        data=data,
    )


@router.post("/{listing_key}/sync", response_model=ListingSyncResponse)
async def sync_property(
    request: Request,
    listing_key: str,
    feed_scope: FeedScope = Query(FeedScope.IDX, description="Scope (token) to fetch the listing with"),
    syncer: ListingSyncer = Depends(get_listing_syncer),
):
    """Fetch one listing from the feed and write it with its children."""
    logger.info(f"[{_request_id(request)}] Single listing sync for {listing_key} ({feed_scope.value})")
    try:
        summary = await syncer(listing_key, feed_scope)
    except ListingNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    return ListingSyncResponse(**summary)

"""
Pydantic schemas mapping raw feed records to sink rows.

Field aliases are the feed's field names; attribute names are the sink's
column names. Unknown feed fields are ignored here and preserved in the
row's ``payload`` column by the mapper.
"""

import math
from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, validator


def _floor_int(v: Any) -> Optional[int]:
    """Feed sends some counts as decimals ("2.0", 2.5); store the floor."""
    if v is None or v == "":
        return None
    if isinstance(v, bool):
        return int(v)
    if isinstance(v, (int, float)):
        return int(math.floor(v))
    return int(math.floor(float(str(v).strip())))


def _blank_to_none(v: Any) -> Any:
    if isinstance(v, str) and not v.strip():
        return None
    return v


class FeedRecord(BaseModel):
    """Shared configuration for feed record schemas."""

    class Config:
        populate_by_name = True
        extra = "ignore"
        str_strip_whitespace = True


class PropertyRecord(FeedRecord):
    listing_key: str = Field(..., alias="ListingKey", min_length=1, max_length=64)

    mls_status: Optional[str] = Field(None, alias="MlsStatus")
    contract_status: Optional[str] = Field(None, alias="ContractStatus")
    standard_status: Optional[str] = Field(None, alias="StandardStatus")
    transaction_type: Optional[str] = Field(None, alias="TransactionType")

    list_price: Optional[float] = Field(None, alias="ListPrice", ge=0)
    close_price: Optional[float] = Field(None, alias="ClosePrice", ge=0)

    property_type: Optional[str] = Field(None, alias="PropertyType")
    property_sub_type: Optional[str] = Field(None, alias="PropertySubType")
    unparsed_address: Optional[str] = Field(None, alias="UnparsedAddress", max_length=500)
    city: Optional[str] = Field(None, alias="City")
    state_or_province: Optional[str] = Field(None, alias="StateOrProvince")
    postal_code: Optional[str] = Field(None, alias="PostalCode")

    bedrooms_total: Optional[int] = Field(None, alias="BedroomsTotal")
    bathrooms_total_integer: Optional[int] = Field(None, alias="BathroomsTotalInteger")

    modification_timestamp: datetime = Field(..., alias="ModificationTimestamp")

    @validator("bedrooms_total", "bathrooms_total_integer", pre=True)
    def floor_counts(cls, v):
        return _floor_int(v)

    @validator("list_price", "close_price", "city", "postal_code", pre=True)
    def blank_is_missing(cls, v):
        return _blank_to_none(v)


class MediaRecord(FeedRecord):
    media_key: str = Field(..., alias="MediaKey", min_length=1, max_length=128)
    resource_record_key: str = Field(..., alias="ResourceRecordKey", min_length=1, max_length=64)

    media_url: Optional[str] = Field(None, alias="MediaURL")
    media_category: Optional[str] = Field(None, alias="MediaCategory")
    media_type: Optional[str] = Field(None, alias="MediaType")
    media_status: Optional[str] = Field(None, alias="MediaStatus")
    image_size_description: Optional[str] = Field(None, alias="ImageSizeDescription")
    class_name: Optional[str] = Field(None, alias="ClassName")
    display_order: Optional[int] = Field(None, alias="Order")
    preferred_photo: Optional[bool] = Field(None, alias="PreferredPhotoYN")

    media_modification_timestamp: datetime = Field(..., alias="MediaModificationTimestamp")

    @validator("display_order", pre=True)
    def floor_order(cls, v):
        return _floor_int(v)


class PropertyRoomRecord(FeedRecord):
    room_key: str = Field(..., alias="RoomKey", min_length=1, max_length=128)
    listing_key: str = Field(..., alias="ListingKey", min_length=1, max_length=64)

    room_type: Optional[str] = Field(None, alias="RoomType")
    room_level: Optional[str] = Field(None, alias="RoomLevel")
    room_description: Optional[str] = Field(None, alias="RoomDescription")
    room_length: Optional[float] = Field(None, alias="RoomLength")
    room_width: Optional[float] = Field(None, alias="RoomWidth")
    room_length_width_units: Optional[str] = Field(None, alias="RoomLengthWidthUnits")
    display_order: Optional[int] = Field(None, alias="Order")

    modification_timestamp: datetime = Field(..., alias="ModificationTimestamp")

    @validator("display_order", pre=True)
    def floor_order(cls, v):
        return _floor_int(v)

    @validator("room_length", "room_width", pre=True)
    def blank_dimension(cls, v):
        return _blank_to_none(v)


class OpenHouseRecord(FeedRecord):
    open_house_key: str = Field(..., alias="OpenHouseKey", min_length=1, max_length=128)
    listing_key: str = Field(..., alias="ListingKey", min_length=1, max_length=64)

    open_house_date: Optional[date] = Field(None, alias="OpenHouseDate")
    open_house_start_time: Optional[datetime] = Field(None, alias="OpenHouseStartTime")
    open_house_end_time: Optional[datetime] = Field(None, alias="OpenHouseEndTime")
    open_house_status: Optional[str] = Field(None, alias="OpenHouseStatus")
    open_house_type: Optional[str] = Field(None, alias="OpenHouseType")

    modification_timestamp: datetime = Field(..., alias="ModificationTimestamp")

    @validator("open_house_end_time")
    def end_after_start(cls, v, values):
        start = values.get("open_house_start_time")
        if v is None or start is None or (v.tzinfo is None) != (start.tzinfo is None):
            return v
        if v < start:
            raise ValueError("OpenHouseEndTime is before OpenHouseStartTime")
        return v

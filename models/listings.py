from sqlalchemy import (
    Column, String, Integer, DateTime, Date, Text,
    Boolean, Float, Enum, Index, ForeignKey, func
)
from models.base import Base, FeedScope, JSONPayload


class Property(Base):
    """
    Listing parent record.

    Every child table references ``listing_key``; the sync engine only
    writes a child once its parent row has been committed here.
    """
    __tablename__ = "properties"

    listing_key = Column(String(64), primary_key=True)
    feed_scope = Column(Enum(FeedScope), nullable=False, index=True)

    # Status
    mls_status = Column(String(50), nullable=True)
    contract_status = Column(String(50), nullable=True, index=True)
    standard_status = Column(String(50), nullable=True)
    transaction_type = Column(String(50), nullable=True)

    # Pricing
    list_price = Column(Float, nullable=True)
    close_price = Column(Float, nullable=True)

    # Type and address
    property_type = Column(String(100), nullable=True)
    property_sub_type = Column(String(100), nullable=True)
    unparsed_address = Column(String(500), nullable=True)
    city = Column(String(100), nullable=True, index=True)
    state_or_province = Column(String(50), nullable=True)
    postal_code = Column(String(20), nullable=True)

    bedrooms_total = Column(Integer, nullable=True)
    bathrooms_total_integer = Column(Integer, nullable=True)

    modification_timestamp = Column(DateTime(timezone=True), nullable=False, index=True)

    # Full feed record
    payload = Column(JSONPayload, nullable=False)
    synced_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Media(Base):
    """Photos and documents attached to a listing."""
    __tablename__ = "media"

    media_key = Column(String(128), primary_key=True)
    resource_record_key = Column(
        String(64), ForeignKey("properties.listing_key", ondelete="CASCADE"), nullable=False, index=True
    )

    media_url = Column(Text, nullable=True)
    media_category = Column(String(50), nullable=True)
    media_type = Column(String(50), nullable=True)
    media_status = Column(String(50), nullable=True)
    image_size_description = Column(String(50), nullable=True)
    class_name = Column(String(50), nullable=True)
    display_order = Column(Integer, nullable=True)
    preferred_photo = Column(Boolean, nullable=True)

    media_modification_timestamp = Column(DateTime(timezone=True), nullable=False, index=True)

    payload = Column(JSONPayload, nullable=False)
    synced_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("idx_media_record_order", "resource_record_key", "display_order"),
    )


class PropertyRoom(Base):
    __tablename__ = "property_rooms"

    room_key = Column(String(128), primary_key=True)
    listing_key = Column(
        String(64), ForeignKey("properties.listing_key", ondelete="CASCADE"), nullable=False, index=True
    )

    room_type = Column(String(100), nullable=True)
    room_level = Column(String(50), nullable=True)
    room_description = Column(Text, nullable=True)
    room_length = Column(Float, nullable=True)
    room_width = Column(Float, nullable=True)
    room_length_width_units = Column(String(20), nullable=True)
    display_order = Column(Integer, nullable=True)

    modification_timestamp = Column(DateTime(timezone=True), nullable=False, index=True)

    payload = Column(JSONPayload, nullable=False)
    synced_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class OpenHouse(Base):
    __tablename__ = "open_houses"

    open_house_key = Column(String(128), primary_key=True)
    listing_key = Column(
        String(64), ForeignKey("properties.listing_key", ondelete="CASCADE"), nullable=False, index=True
    )

    open_house_date = Column(Date, nullable=True)
    open_house_start_time = Column(DateTime(timezone=True), nullable=True)
    open_house_end_time = Column(DateTime(timezone=True), nullable=True)
    open_house_status = Column(String(50), nullable=True)
    open_house_type = Column(String(50), nullable=True)

    modification_timestamp = Column(DateTime(timezone=True), nullable=False, index=True)

    payload = Column(JSONPayload, nullable=False)
    synced_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("idx_open_house_listing_date", "listing_key", "open_house_date"),
    )

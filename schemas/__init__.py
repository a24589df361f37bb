"""
Pydantic schemas for data validation and serialization.

Schemas:
    records: Feed record schemas mapping feed fields to sink columns
    api: API response models for the status service

Usage:
    from schemas.records import PropertyRecord, MediaRecord
    from schemas.api import HealthCheckResponse, SyncStatusResponse

Example:
    # Feed field names are aliases; attributes are column names
    record = PropertyRecord(ListingKey="X123", ModificationTimestamp="2024-01-01T00:00:00Z")
    assert record.listing_key == "X123"
"""

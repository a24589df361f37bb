"""
SQLAlchemy ORM models for database tables.

Models:
    base: Declarative base and shared enums (FeedScope, SyncStatus)
    listings: Replicated feed resources (Property, Media, PropertyRoom, OpenHouse)
    sync_log: Append-only sync progress log

Database Schema:
    Child tables reference ``properties.listing_key``. Raw feed records are
    kept in a JSONB ``payload`` column next to the typed columns.

Usage:
    from models import Property, Media, SyncLog
    from models.base import FeedScope, SyncStatus

Relationships:
    - Property → Media (one-to-many via resource_record_key)
    - Property → PropertyRoom (one-to-many via listing_key)
    - Property → OpenHouse (one-to-many via listing_key)
"""

from models.base import Base, FeedScope, SyncStatus
from models.listings import Property, Media, PropertyRoom, OpenHouse
from models.sync_log import SyncLog

__all__ = [
    "Base",
    "FeedScope",
    "SyncStatus",
    "Property",
    "Media",
    "PropertyRoom",
    "OpenHouse",
    "SyncLog",
]

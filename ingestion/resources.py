"""
Registry of replicated feed resources.

Each resource is declared once: feed endpoint, identity and ordering
fields, the parent foreign key for child resources, the sink table and
the schema that maps raw records to rows.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, Mapping, Optional, Type

from pydantic import BaseModel

from core.config import settings
from ingestion.extractors.odata import and_filters, in_filter, or_eq_filter
from models.base import FeedScope
from models.listings import Property, Media, PropertyRoom, OpenHouse
from schemas.records import PropertyRecord, MediaRecord, PropertyRoomRecord, OpenHouseRecord


@dataclass(frozen=True)
class ResourceSpec:
    """
    Attributes:
        name: Feed endpoint, e.g. ``Property``
        key_field: Feed field holding the record's identity
        timestamp_field: Feed field the cursor orders by
        model: Sink ORM model
        schema: Pydantic schema mapping feed fields to columns
        conflict_column: Sink column used for ON CONFLICT
        parent_field: Feed field referencing the parent key (children only)
        parent_column: Sink column holding the parent key (children only)
        base_filter: OData filter always applied to this resource
        scope_filters: Extra OData filter per feed scope
        parent_match: How parent keys are matched in child queries,
            ``in`` (``FK in (...)``) or ``or`` (chained ``FK eq ...``)
    """
    name: str
    key_field: str
    timestamp_field: str
    model: Type
    schema: Type[BaseModel]
    conflict_column: str
    parent_field: Optional[str] = None
    parent_column: Optional[str] = None
    base_filter: Optional[str] = None
    scope_filters: Mapping[FeedScope, str] = field(default_factory=dict)
    parent_match: str = "in"

    @property
    def is_child(self) -> bool:
        return self.parent_field is not None

    def filter_for(self, feed_scope: FeedScope) -> Optional[str]:
        """Static filter for this resource in ``feed_scope`` (without cursor terms)."""
        return and_filters(self.base_filter, self.scope_filters.get(feed_scope))

    def parent_filter(self, parent_keys: Iterable[str]) -> str:
        """OData expression matching children of ``parent_keys``."""
        if self.parent_match == "or":
            return or_eq_filter(self.parent_field, parent_keys)
        return in_filter(self.parent_field, parent_keys)


PROPERTY = ResourceSpec(
    name="Property",
    key_field="ListingKey",
    timestamp_field="ModificationTimestamp",
    model=Property,
    schema=PropertyRecord,
    conflict_column="listing_key",
    scope_filters={
        FeedScope.IDX: settings.IDX_PROPERTY_FILTER,
        FeedScope.VOW: settings.VOW_PROPERTY_FILTER,
    },
)

MEDIA = ResourceSpec(
    name="Media",
    key_field="MediaKey",
    timestamp_field="MediaModificationTimestamp",
    model=Media,
    schema=MediaRecord,
    conflict_column="media_key",
    parent_field="ResourceRecordKey",
    parent_column="resource_record_key",
    base_filter=settings.MEDIA_FILTER,
)

PROPERTY_ROOMS = ResourceSpec(
    name="PropertyRooms",
    key_field="RoomKey",
    timestamp_field="ModificationTimestamp",
    model=PropertyRoom,
    schema=PropertyRoomRecord,
    conflict_column="room_key",
    parent_field="ListingKey",
    parent_column="listing_key",
    parent_match="or",
)

OPEN_HOUSE = ResourceSpec(
    name="OpenHouse",
    key_field="OpenHouseKey",
    timestamp_field="ModificationTimestamp",
    model=OpenHouse,
    schema=OpenHouseRecord,
    conflict_column="open_house_key",
    parent_field="ListingKey",
    parent_column="listing_key",
    parent_match="or",
)

CHILD_RESOURCES = (MEDIA, PROPERTY_ROOMS, OPEN_HOUSE)

RESOURCES: Dict[str, ResourceSpec] = {
    spec.name: spec for spec in (PROPERTY, *CHILD_RESOURCES)
}

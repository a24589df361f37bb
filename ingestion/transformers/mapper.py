"""
Map raw feed records into sink rows with Pydantic validation
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List

from pydantic import ValidationError as PydanticValidationError

from core.exceptions import ValidationError
from ingestion.resources import ResourceSpec
from models.base import FeedScope
import logging

logger = logging.getLogger(__name__)


@dataclass
class MappedBatch:
    rows: List[Dict[str, Any]] = field(default_factory=list)
    failed: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)


def map_record(spec: ResourceSpec, raw: Dict[str, Any], feed_scope: FeedScope) -> Dict[str, Any]:
    """
    Map one raw record to a row for ``spec.model``.

    Raises:
        ValidationError: If the record fails schema validation
    """
    try:
        record = spec.schema(**raw)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid {spec.name} record",
            context={
                "resource": spec.name,
                "record_key": raw.get(spec.key_field),
                "field_errors": [
                    {"field": ".".join(str(p) for p in err["loc"]), "error": err["msg"]}
                    for err in e.errors()
                ],
            },
            original_exception=e
        )

    row = record.model_dump()
    row["payload"] = raw
    if not spec.is_child:
        row["feed_scope"] = feed_scope
    return row


def map_batch(spec: ResourceSpec, records: List[Dict[str, Any]], feed_scope: FeedScope) -> MappedBatch:
    """Map a page of records; invalid records are counted and left out."""
    batch = MappedBatch()
    for raw in records:
        try:
            batch.rows.append(map_record(spec, raw, feed_scope))
        except ValidationError as e:
            batch.failed += 1
            batch.errors.append(e.to_dict())
            logger.warning(f"Skipping invalid {spec.name} record {raw.get(spec.key_field)}: {e.message}")
    return batch

"""
In-memory set of known parent (Property) keys and the referential
integrity filter applied to child records before they are written.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from core.config import settings
from ingestion.loaders.postgres_loader import PostgresLoader
from ingestion.resources import PROPERTY, ResourceSpec
import logging

logger = logging.getLogger(__name__)


@dataclass
class FilterResult:
    kept: List[Dict[str, Any]] = field(default_factory=list)
    skipped_count: int = 0


class ParentKeyCache:
    """
    Known parent keys for the current run.

    Loaded once from the sink with paged key reads, then extended with the
    keys each parent batch commits.
    """

    def __init__(
        self,
        loader: PostgresLoader,
        spec: ResourceSpec = PROPERTY,
        page_size: Optional[int] = None,
    ):
        self.loader = loader
        self.spec = spec
        self.page_size = page_size or settings.PARENT_KEY_PAGE_SIZE
        self._keys: Set[str] = set()

    def __len__(self) -> int:
        return len(self._keys)

    async def load(self) -> int:
        """Read every parent key from the sink, page by page until an empty page."""
        after: Optional[str] = None
        pages = 0
        while True:
            page = await self.loader.read_keys(self.spec.model, self.spec.conflict_column, after, self.page_size)
            if not page:
                break
            self._keys.update(page)
            after = page[-1]
            pages += 1

        logger.info(f"Loaded {len(self._keys)} {self.spec.name} keys in {pages} pages")
        return len(self._keys)

    def contains(self, key: str) -> bool:
        return key in self._keys

    def add(self, keys: Iterable[str]) -> None:
        self._keys.update(keys)

    def filter_children(
        self,
        records: List[Dict[str, Any]],
        key_field: str,
        within: Optional[Iterable[str]] = None,
    ) -> FilterResult:
        """
        Keep children whose ``key_field`` names a known parent.

        Args:
            records: Raw child records
            key_field: Child field holding the parent key
            within: Restrict the check to these parent keys (a batch's committed keys)

        Returns:
            FilterResult; orphans are counted, never raised
        """
        allowed = self._keys if within is None else set(within)
        result = FilterResult()
        for record in records:
            parent_key = record.get(key_field)
            if parent_key is not None and str(parent_key) in allowed:
                result.kept.append(record)
            else:
                result.skipped_count += 1

        if result.skipped_count:
            logger.info(f"Skipped {result.skipped_count} child records without a committed parent")
        return result

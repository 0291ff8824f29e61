"""Batched counts through a single ``$facet`` aggregation.

Each distinct filter becomes one named sub-pipeline ``[$match, $count]``.
Names are digests of the canonical filter, which keeps them valid field
names and unique within the batch.
"""

from collections.abc import Mapping, Sequence

import typing as t

from .adapters.nosql._base import StoreCollection
from .keys import CacheKeyDeriver
from .logger import get_logger

logger = get_logger(__name__)

COUNT_FIELD = "count"


class FacetCountEngine:
    def __init__(self, collection: StoreCollection) -> None:
        self.collection = collection

    @staticmethod
    def pipeline(filters: Sequence[Mapping[str, t.Any]]) -> list[dict[str, t.Any]]:
        facets = {
            CacheKeyDeriver.facet_name(filter): [
                {"$match": dict(filter)},
                {"$count": COUNT_FIELD},
            ]
            for filter in filters
        }
        return [{"$facet": facets}]

    @staticmethod
    def extract(
        rows: Sequence[Mapping[str, t.Any]],
        filters: Sequence[Mapping[str, t.Any]],
    ) -> list[int]:
        """Read each facet's count; a facet with no matches yields no bucket."""
        result = rows[0] if rows else {}
        counts = []
        for filter in filters:
            buckets = result.get(CacheKeyDeriver.facet_name(filter)) or []
            counts.append(int(buckets[0].get(COUNT_FIELD, 0)) if buckets else 0)
        return counts

    async def load(self, filters: Sequence[Mapping[str, t.Any]]) -> list[int]:
        if not filters:
            return []
        rows = await self.collection.aggregate(self.pipeline(filters))
        logger.debug(
            f"Counted {len(filters)} filter(s) on {self.collection.name} "
            "with one facet aggregation",
        )
        return self.extract(rows, filters)

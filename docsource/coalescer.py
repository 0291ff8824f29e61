"""Coalescing of filter lookups into one store query.

Given the distinct filters of one batch, the coalescer issues a single
``find`` for ``common AND (f1 OR f2 OR ...)``, where ``common`` holds the
top-level fields every filter pins to the same value, then splits the
combined result back per filter by re-evaluating each filter in memory.
"""

from collections.abc import Mapping, Sequence

import typing as t

from .adapters.nosql._base import StoreCollection
from .keys import canonical_value
from .logger import get_logger
from .matcher import ResultMatcher

logger = get_logger(__name__)


class QueryCoalescer:
    def __init__(
        self,
        collection: StoreCollection,
        matcher: ResultMatcher | None = None,
    ) -> None:
        self.collection = collection
        self.matcher = matcher or ResultMatcher()

    @staticmethod
    def common_filter(filters: Sequence[Mapping[str, t.Any]]) -> dict[str, t.Any]:
        """Top-level fields present with canonically equal values in every filter."""
        if not filters:
            return {}
        first, rest = filters[0], filters[1:]
        common: dict[str, t.Any] = {}
        for field, value in first.items():
            expected = canonical_value(value)
            if all(
                field in other and canonical_value(other[field]) == expected
                for other in rest
            ):
                common[field] = value
        return common

    @classmethod
    def combined_filter(cls, filters: Sequence[Mapping[str, t.Any]]) -> dict[str, t.Any]:
        common = cls.common_filter(filters)
        union = {"$or": [dict(filter) for filter in filters]}
        if not common:
            return union
        if "$or" in common:
            return {"$and": [common, union]}
        return common | union

    def split(
        self,
        documents: Sequence[Mapping[str, t.Any]],
        filters: Sequence[Mapping[str, t.Any]],
    ) -> list[list[t.Any]]:
        """Attribute each document to every filter it independently satisfies."""
        return [self.matcher.select(documents, filter) for filter in filters]

    async def load(self, filters: Sequence[Mapping[str, t.Any]]) -> list[list[t.Any]]:
        if not filters:
            return []
        query = self.combined_filter(filters)
        documents = await self.collection.find(query)
        logger.debug(
            f"Coalesced {len(filters)} filter(s) on {self.collection.name} "
            f"into one query returning {len(documents)} document(s)",
        )
        return self.split(documents, filters)

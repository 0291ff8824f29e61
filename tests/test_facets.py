"""Tests for batched counting."""

import pytest
from conftest import FakeStore

from docsource.adapters.nosql._base import StoreCollection
from docsource.facets import COUNT_FIELD, FacetCountEngine
from docsource.keys import CacheKeyDeriver


@pytest.fixture
def engine(users: StoreCollection) -> FacetCountEngine:
    return FacetCountEngine(users)


@pytest.mark.unit
class TestPipeline:
    def test_one_facet_per_filter(self) -> None:
        filters = [{"a": 1}, {"a": 1, "b": 2}]
        pipeline = FacetCountEngine.pipeline(filters)

        assert len(pipeline) == 1
        facets = pipeline[0]["$facet"]
        assert len(facets) == 2
        for filter in filters:
            assert facets[CacheKeyDeriver.facet_name(filter)] == [
                {"$match": filter},
                {"$count": COUNT_FIELD},
            ]

    def test_extract_reads_counts_in_filter_order(self) -> None:
        filters = [{"a": 1}, {"a": 1, "b": 2}]
        rows = [
            {
                CacheKeyDeriver.facet_name(filters[1]): [{"count": 4}],
                CacheKeyDeriver.facet_name(filters[0]): [{"count": 9}],
            },
        ]
        assert FacetCountEngine.extract(rows, filters) == [9, 4]

    def test_missing_or_empty_bucket_is_zero(self) -> None:
        filters = [{"a": 1}, {"b": 1}]
        rows = [{CacheKeyDeriver.facet_name(filters[0]): []}]
        assert FacetCountEngine.extract(rows, filters) == [0, 0]

    def test_no_rows_is_zero(self) -> None:
        assert FacetCountEngine.extract([], [{"a": 1}]) == [0]


@pytest.mark.unit
class TestLoad:
    @pytest.mark.asyncio
    async def test_counts_in_one_aggregation(
        self,
        engine: FacetCountEngine,
        store: FakeStore,
    ) -> None:
        counts = await engine.load(
            [{"status": "A"}, {"status": "A", "age": 31}, {"status": "Z"}],
        )

        assert counts == [2, 1, 0]
        assert store.round_trips("aggregate") == 1
        assert store.round_trips("find") == 0

    @pytest.mark.asyncio
    async def test_empty_batch_skips_store(
        self,
        engine: FacetCountEngine,
        store: FakeStore,
    ) -> None:
        assert await engine.load([]) == []
        assert store.round_trips() == 0

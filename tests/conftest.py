"""Shared fixtures: an in-memory store that records every round-trip."""

import typing as t
from uuid import uuid4

import pytest
from bson import ObjectId

from docsource.adapters.cache.memory import Cache, CacheSettings
from docsource.adapters.nosql._base import StoreCollection
from docsource.datasource import MongoDataSource


def _field_matches(value: t.Any, condition: t.Any) -> bool:
    if isinstance(condition, dict) and condition and next(iter(condition)).startswith("$"):
        for operator, operand in condition.items():
            if operator == "$in" and value not in operand:
                return False
            if operator == "$gt" and not (value is not None and value > operand):
                return False
            if operator == "$lt" and not (value is not None and value < operand):
                return False
        return True
    if isinstance(value, list) and not isinstance(condition, list):
        return condition in value
    return value == condition and type(value) is type(condition)


def evaluate(document: dict[str, t.Any], filter: dict[str, t.Any]) -> bool:
    """A deliberately small filter evaluator, independent of ResultMatcher."""
    for key, condition in filter.items():
        if key == "$or":
            if not any(evaluate(document, clause) for clause in condition):
                return False
        elif key == "$and":
            if not all(evaluate(document, clause) for clause in condition):
                return False
        elif not _field_matches(document.get(key), condition):
            return False
    return True


class FakeStore:
    """Implements the store protocol over lists of dicts."""

    def __init__(self, documents: dict[str, list[dict[str, t.Any]]]) -> None:
        self.documents = documents
        self.calls: list[tuple[str, str, t.Any]] = []
        self.error: Exception | None = None

    def round_trips(self, method: str | None = None) -> int:
        return len([call for call in self.calls if method in (None, call[0])])

    async def find(
        self,
        collection: str,
        filter: dict[str, t.Any],
        **kwargs: t.Any,
    ) -> list[dict[str, t.Any]]:
        self.calls.append(("find", collection, filter))
        if self.error is not None:
            raise self.error
        return [
            dict(document)
            for document in self.documents.get(collection, [])
            if evaluate(document, filter)
        ]

    async def aggregate(
        self,
        collection: str,
        pipeline: list[dict[str, t.Any]],
        **kwargs: t.Any,
    ) -> list[dict[str, t.Any]]:
        self.calls.append(("aggregate", collection, pipeline))
        if self.error is not None:
            raise self.error
        facets = pipeline[0]["$facet"]
        row = {}
        for name, (match, _) in facets.items():
            total = len(
                [
                    document
                    for document in self.documents.get(collection, [])
                    if evaluate(document, match["$match"])
                ],
            )
            row[name] = [{"count": total}] if total else []
        return [row]


ALICE_ID = ObjectId("64b7f0c2a1b2c3d4e5f60001")
BOB_ID = ObjectId("64b7f0c2a1b2c3d4e5f60002")


@pytest.fixture
def user_documents() -> list[dict[str, t.Any]]:
    return [
        {"_id": ALICE_ID, "name": "alice", "status": "A", "age": 31, "tags": ["admin"]},
        {"_id": BOB_ID, "name": "bob", "status": "B", "age": 25, "tags": []},
        {"_id": "carol", "name": "carol", "status": "A", "age": 40, "tags": ["ops"]},
        {"_id": str(BOB_ID), "name": "bob-string-id", "status": "C", "age": 19},
    ]


@pytest.fixture
def store(user_documents: list[dict[str, t.Any]]) -> FakeStore:
    return FakeStore({"users": user_documents})


@pytest.fixture
def users(store: FakeStore) -> StoreCollection:
    return StoreCollection(store, "users")


@pytest.fixture
def cache() -> Cache:
    return Cache(CacheSettings(namespace=f"test-{uuid4().hex}"))


@pytest.fixture
def datasource(users: StoreCollection, cache: Cache) -> MongoDataSource[t.Any]:
    return MongoDataSource(users, cache)


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "integration: mark test as requiring a running MongoDB or Redis",
    )
    config.addinivalue_line("markers", "unit: mark test as fast-running")


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--run-external",
        action="store_true",
        default=False,
        help="Run tests that require external services",
    )


def pytest_runtest_setup(item: pytest.Item) -> None:
    if item.get_closest_marker("integration") and not item.config.getoption(
        "--run-external",
        default=False,
    ):
        pytest.skip("Skipping external integration test. Use --run-external to run.")

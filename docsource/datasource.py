"""Cached, batched read access to one document collection.

``MongoDataSource`` is built once per inbound request. Every read first
looks in the external cache; a miss goes through the request's
``BatchScheduler`` so concurrent reads in the same turn share store
round-trips, and the result is written back to the cache.

Example:
    ```python
    store = Nosql(NosqlSettings(database="app"))
    cache = Cache()

    async with MongoDataSource(store.collection("users"), cache) as users:
        alice, bob = await asyncio.gather(
            users.find_by_id(alice_id),
            users.find_by_id(bob_id),
        )
        active = await users.count({"status": "active"}, ttl=60)
    ```
"""

import asyncio
from dataclasses import dataclass

import typing as t
from bson import ObjectId
from bson.errors import BSONError

from .adapters.cache._base import CacheProtocol
from .adapters.nosql._base import StoreCollection
from .cleanup import CleanupMixin
from .config import DataSourceSettings
from .errors import CacheUnavailableError
from .keys import CacheKeyDeriver
from .logger import get_logger
from .matcher import ResultMatcher
from .scheduler import BatchScheduler
from .serializers import dumps, dumps_count, loads, loads_count

logger = get_logger(__name__)

TDocument = t.TypeVar("TDocument", bound=dict[str, t.Any])

FIND = "find"
FIND_BY_ID = "findById"
COUNT = "count"


@dataclass
class CacheMetrics:
    """Cache performance metrics."""

    hits: int = 0
    misses: int = 0
    writes: int = 0
    invalidations: int = 0
    errors: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def as_dict(self) -> dict[str, float]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "writes": self.writes,
            "invalidations": self.invalidations,
            "errors": self.errors,
            "hit_rate": self.hit_rate,
        }


class MongoDataSource(CleanupMixin, t.Generic[TDocument]):
    def __init__(
        self,
        collection: StoreCollection,
        cache: CacheProtocol | None = None,
        settings: DataSourceSettings | None = None,
        *,
        context: t.Any = None,
        matcher: ResultMatcher | None = None,
        max_batch_size: int | None = None,
    ) -> None:
        super().__init__()
        self.collection = collection
        self.settings = settings or DataSourceSettings()
        self.cache = cache if self.settings.cache_enabled else None
        self.context = context
        self.keys = CacheKeyDeriver(self.settings.namespace(collection.name))
        self.scheduler = BatchScheduler(
            collection,
            matcher,
            strict_operators=self.settings.strict_operators,
            max_batch_size=max_batch_size,
        )
        self.metrics = CacheMetrics()

    def cache_key(self, id_or_filter: t.Any, operation: str = "") -> str:
        return self.keys.derive(id_or_filter, operation)

    async def find(
        self,
        filter: dict[str, t.Any],
        ttl: int | float | None = None,
    ) -> list[TDocument]:
        """Find every document matching ``filter``.

        An empty result is returned without being cached, so a document
        created later is not hidden behind a cached absence.
        """
        key = self.cache_key(filter, FIND)
        cached = await self._cache_get(key)
        if cached is not None:
            return t.cast("list[TDocument]", cached)

        documents = await self.scheduler.load_many(filter)
        if not documents:
            return []

        await self._cache_set(key, dumps(documents), ttl)
        return list(documents)

    async def find_one(
        self,
        filter: dict[str, t.Any],
        ttl: int | float | None = None,
    ) -> TDocument | None:
        documents = await self.find(filter, ttl)
        return documents[0] if documents else None

    async def find_by_id(
        self,
        id: str | ObjectId,
        ttl: int | float | None = None,
    ) -> TDocument | None:
        key = self.cache_key(id, FIND_BY_ID)
        cached = await self._cache_get(key)
        if cached is not None:
            return t.cast("TDocument", cached)

        document = await self.scheduler.load_by_id(id)
        if document is None:
            return None

        await self._cache_set(key, dumps(document), ttl)
        return t.cast("TDocument", document)

    async def count(
        self,
        filter: dict[str, t.Any],
        ttl: int | float | None = None,
    ) -> int:
        key = self.cache_key(filter, COUNT)
        cached = await self._cache_get(key, loads_count)
        if cached is not None:
            return int(cached)

        count = await self.scheduler.load_count(filter)
        await self._cache_set(key, dumps_count(count), ttl)
        return count

    async def delete_from_cache_by_id(self, id: str | ObjectId) -> None:
        """Drop one document's cached copy; the store is left untouched."""
        key = self.cache_key(id, FIND_BY_ID)
        self.scheduler.clear_id(id)
        await self._cache_delete(key)

    async def delete_from_cache(self, filter: dict[str, t.Any]) -> None:
        """Drop the cached find and count results for ``filter``."""
        find_key = self.cache_key(filter, FIND)
        count_key = self.cache_key(filter, COUNT)
        self.scheduler.clear_filter(filter)
        await asyncio.gather(
            self._cache_delete(find_key),
            self._cache_delete(count_key),
        )

    async def _cache_get(
        self,
        key: str,
        decode: t.Callable[[str], t.Any] = loads,
    ) -> t.Any:
        if self.cache is None:
            return None
        try:
            payload = await self.cache.get(key)
        except Exception as e:
            self.metrics.errors += 1
            logger.warning(f"Cache read failed for {self.collection.name}, using store: {e}")
            return None
        if payload is None:
            self.metrics.misses += 1
            return None
        try:
            value = decode(payload)
        except (ValueError, TypeError, KeyError, BSONError) as e:
            self.metrics.errors += 1
            logger.warning(f"Discarding undecodable cache entry {key}: {e}")
            return None
        self.metrics.hits += 1
        logger.debug(f"Cache hit for {self.collection.name} key {key}")
        return value

    async def _cache_set(self, key: str, payload: str, ttl: int | float | None) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.set(key, payload, ttl=self.settings.resolve_ttl(ttl))
        except Exception as e:
            self.metrics.errors += 1
            logger.warning(f"Cache write failed for {self.collection.name}: {e}")
            return
        self.metrics.writes += 1

    async def _cache_delete(self, key: str) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.delete(key)
        except Exception as e:
            self.metrics.errors += 1
            raise CacheUnavailableError(key, self.collection.name) from e
        self.metrics.invalidations += 1

    async def _cleanup_resources(self) -> None:
        await self.scheduler.aclose()
        self.scheduler.clear_all()

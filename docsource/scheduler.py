"""Per-turn batching of id, filter and count lookups.

A ``BatchLoader`` collects every key requested during one turn of the event
loop and hands them to its batch function in a single call. The first
``load`` of a turn arms one ``loop.call_soon`` callback; that callback takes
the queue, disarms, and starts the dispatch, so keys requested afterwards
form the next batch.

Equal keys share one future for the lifetime of the loader (the loader is
owned by a request-scoped data source), which is what guarantees a single
round-trip per key. Keys of a failed batch are forgotten so a later call
can retry.
"""

import asyncio
from collections.abc import Awaitable, Callable, Hashable, Mapping, Sequence

import typing as t
from bson import ObjectId

from .adapters.nosql._base import StoreCollection
from .coalescer import QueryCoalescer
from .errors import (
    BatchSizeMismatchError,
    DataSourceError,
    StoreUnavailableError,
    UnsupportedOperatorError,
)
from .facets import FacetCountEngine
from .keys import CacheKeyDeriver, canonical_filter, canonical_id, is_id
from .logger import get_logger
from .matcher import ResultMatcher

logger = get_logger(__name__)

K = t.TypeVar("K")
V = t.TypeVar("V")

BatchFn = Callable[[list[K]], Awaitable[Sequence[V]]]


class BatchLoader(t.Generic[K, V]):
    def __init__(
        self,
        batch_fn: BatchFn[K, V],
        *,
        key_fn: Callable[[K], Hashable],
        name: str = "loader",
        collection: str | None = None,
        max_batch_size: int | None = None,
        cache: bool = True,
    ) -> None:
        self._batch_fn = batch_fn
        self._key_fn = key_fn
        self.name = name
        self.collection = collection
        self.max_batch_size = max_batch_size
        self.cache = cache
        self._memo: dict[Hashable, asyncio.Future[V]] = {}
        self._queue: list[tuple[Hashable, K, asyncio.Future[V]]] = []
        self._armed = False
        self._tasks: set[asyncio.Task[None]] = set()
        self.dispatch_count = 0

    @property
    def pending(self) -> int:
        return len(self._queue)

    def load(self, key: K) -> Awaitable[V]:
        """Enqueue ``key`` for the current turn and return its result awaitable.

        The key is validated here, so a malformed key fails only its own
        caller and never reaches a batch.
        """
        dedup_key = self._key_fn(key)
        future = self._memo.get(dedup_key)
        if future is None:
            loop = asyncio.get_running_loop()
            future = loop.create_future()
            if self.cache:
                self._memo[dedup_key] = future
            self._queue.append((dedup_key, key, future))
            if not self._armed:
                self._armed = True
                loop.call_soon(self._dispatch)
        return asyncio.shield(future)

    def clear(self, key: K) -> None:
        self._memo.pop(self._key_fn(key), None)

    def clear_all(self) -> None:
        self._memo.clear()

    def _dispatch(self) -> None:
        self._armed = False
        batch, self._queue = self._queue, []
        if not batch:
            return
        size = self.max_batch_size or len(batch)
        loop = asyncio.get_running_loop()
        for start in range(0, len(batch), size):
            task = loop.create_task(self._run(batch[start : start + size]))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _call_batch_fn(self, keys: list[K]) -> list[V]:
        try:
            results = list(await self._batch_fn(keys))
        except DataSourceError:
            raise
        except Exception as e:
            raise StoreUnavailableError(self.collection, self.name) from e
        if len(results) != len(keys):
            raise BatchSizeMismatchError(len(keys), len(results), self.name)
        return results

    async def _run(self, batch: list[tuple[Hashable, K, asyncio.Future[V]]]) -> None:
        keys = [key for _, key, _ in batch]
        self.dispatch_count += 1
        logger.debug(f"Dispatching {len(keys)} key(s) through {self.name}")
        try:
            results = await self._call_batch_fn(keys)
        except DataSourceError as e:
            logger.error(f"Batch {self.name} failed for {len(keys)} key(s): {e}")
            self._fail(batch, e)
            return
        except asyncio.CancelledError:
            self._fail(batch, None)
            raise
        for (_, _, future), result in zip(batch, results, strict=True):
            if not future.done():
                future.set_result(result)

    def _fail(
        self,
        batch: list[tuple[Hashable, K, asyncio.Future[V]]],
        error: BaseException | None,
    ) -> None:
        for dedup_key, _, future in batch:
            if self._memo.get(dedup_key) is future:
                del self._memo[dedup_key]
            if future.done():
                continue
            if error is None:
                future.cancel()
            else:
                future.set_exception(error)

    async def aclose(self) -> None:
        """Wait for in-flight batches and forget every memoized key."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._memo.clear()


class BatchScheduler:
    """The lookup queues of one collection: by id, by filter and by count."""

    def __init__(
        self,
        collection: StoreCollection,
        matcher: ResultMatcher | None = None,
        *,
        strict_operators: bool = True,
        max_batch_size: int | None = None,
    ) -> None:
        self.collection = collection
        self.matcher = matcher or ResultMatcher()
        self.strict_operators = strict_operators
        self.coalescer = QueryCoalescer(collection, self.matcher)
        self.facets = FacetCountEngine(collection)

        options: dict[str, t.Any] = {
            "collection": collection.name,
            "max_batch_size": max_batch_size,
        }
        self.by_id: BatchLoader[str | ObjectId, dict[str, t.Any] | None] = BatchLoader(
            self._load_by_ids,
            key_fn=self._id_key,
            name="findById",
            **options,
        )
        self.by_filter: BatchLoader[Mapping[str, t.Any], list[t.Any]] = BatchLoader(
            self.coalescer.load,
            key_fn=canonical_filter,
            name="find",
            **options,
        )
        self.by_count: BatchLoader[Mapping[str, t.Any], int] = BatchLoader(
            self.facets.load,
            key_fn=canonical_filter,
            name="count",
            **options,
        )
        # one dispatch per filter: the store alone decides membership
        self.by_direct: BatchLoader[Mapping[str, t.Any], list[t.Any]] = BatchLoader(
            self._load_direct,
            key_fn=canonical_filter,
            name="findDirect",
            collection=collection.name,
            max_batch_size=1,
        )

    @staticmethod
    def _id_key(id: str | ObjectId) -> Hashable:
        canonical_id(id)
        return CacheKeyDeriver.dedup_key(id)

    async def _load_by_ids(
        self,
        ids: list[str | ObjectId],
    ) -> list[dict[str, t.Any] | None]:
        documents = await self.collection.find({"_id": {"$in": list(ids)}})
        return self.match_ids(documents, ids)

    @staticmethod
    def match_ids(
        documents: Sequence[dict[str, t.Any]],
        ids: Sequence[str | ObjectId],
    ) -> list[dict[str, t.Any] | None]:
        """Pair each requested id with its document, keeping id kinds apart."""
        by_id = {
            CacheKeyDeriver.dedup_key(document["_id"]): document
            for document in documents
            if is_id(document.get("_id"))
        }
        return [by_id.get(CacheKeyDeriver.dedup_key(id)) for id in ids]

    async def _load_direct(
        self,
        filters: list[Mapping[str, t.Any]],
    ) -> list[list[t.Any]]:
        return [await self.collection.find(dict(filter)) for filter in filters]

    def load_by_id(self, id: str | ObjectId) -> Awaitable[dict[str, t.Any] | None]:
        return self.by_id.load(id)

    def load_many(self, filter: Mapping[str, t.Any]) -> Awaitable[list[t.Any]]:
        """Enqueue a filter lookup.

        Filters the matcher cannot evaluate are never coalesced. They are
        rejected when ``strict_operators`` is set and otherwise sent to the
        store on their own.
        """
        try:
            self.matcher.validate(filter)
        except UnsupportedOperatorError:
            if self.strict_operators:
                raise
            logger.debug(f"Sending {filter!r} to the store uncoalesced")
            return self.by_direct.load(filter)
        return self.by_filter.load(filter)

    def load_count(self, filter: Mapping[str, t.Any]) -> Awaitable[int]:
        return self.by_count.load(filter)

    def clear_id(self, id: str | ObjectId) -> None:
        self.by_id.clear(id)

    def clear_filter(self, filter: Mapping[str, t.Any]) -> None:
        self.by_filter.clear(filter)
        self.by_direct.clear(filter)
        self.by_count.clear(filter)

    @property
    def loaders(self) -> tuple[BatchLoader[t.Any, t.Any], ...]:
        return (self.by_id, self.by_filter, self.by_direct, self.by_count)

    def clear_all(self) -> None:
        for loader in self.loaders:
            loader.clear_all()

    @property
    def dispatch_counts(self) -> dict[str, int]:
        return {loader.name: loader.dispatch_count for loader in self.loaders}

    async def aclose(self) -> None:
        await asyncio.gather(*(loader.aclose() for loader in self.loaders))

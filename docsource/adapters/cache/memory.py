import typing as t
from aiocache.backends.memory import SimpleMemoryCache
from aiocache.serializers import StringSerializer

from ._base import CacheBase, CacheBaseSettings


class CacheSettings(CacheBaseSettings): ...


class Cache(CacheBase):
    """In-process cache backed by aiocache's ``SimpleMemoryCache``."""

    def __init__(self, settings: CacheSettings | None = None, **kwargs: t.Any) -> None:
        super().__init__(settings or CacheSettings())
        self._init_kwargs = kwargs

    async def _create_client(self) -> SimpleMemoryCache:
        cache = SimpleMemoryCache(
            serializer=StringSerializer(),
            namespace=f"{self.settings.namespace}:",
            **self._init_kwargs,
        )
        cache.timeout = 0.0
        return cache

    async def get(self, key: str) -> str | None:
        client = await self.get_client()
        return t.cast("str | None", await client.get(key))

    async def set(self, key: str, value: str, ttl: int | float | None = None) -> None:
        client = await self.get_client()
        await client.set(key, value, ttl=self._ttl(ttl))

    async def delete(self, key: str) -> bool:
        client = await self.get_client()
        return bool(await client.delete(key))

    async def clear(self) -> None:
        client = await self.get_client()
        await client.clear(namespace=client.namespace)

    async def _cleanup_resources(self) -> None:
        if self._client is not None:
            try:
                await self._client.clear(namespace=self._client.namespace)
            except Exception as e:
                self.logger.warning(f"Failed to clear memory cache: {e}")
        await super()._cleanup_resources()

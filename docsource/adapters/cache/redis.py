"""Redis cache adapter.

Stores payloads as plain strings under ``{namespace}:{key}``. TTLs are
rounded up to whole seconds.

Example:
    ```python
    cache = Cache(CacheSettings(host=SecretStr("redis.internal"), db=2))
    await cache.init()
    await cache.set("users:1", payload, ttl=300)
    ```
"""

from __future__ import annotations

import math

import typing as t
from coredis import Redis

from ._base import CacheBase, CacheBaseSettings


class CacheSettings(CacheBaseSettings):
    port: int | None = 6379

    def model_post_init(self, __context: t.Any) -> None:
        if self.connection_string:
            return
        host = self.host.get_secret_value()
        auth_part = ""
        if self.user and self.password:
            auth_part = (
                f"{self.user.get_secret_value()}:{self.password.get_secret_value()}@"
            )
        elif self.password:
            auth_part = f":{self.password.get_secret_value()}@"
        self.connection_string = f"redis://{auth_part}{host}:{self.port}/{self.db}"


class Cache(CacheBase):
    def __init__(self, settings: CacheSettings | None = None, **kwargs: t.Any) -> None:
        super().__init__(settings or CacheSettings())
        self._init_kwargs = kwargs

    def _namespaced(self, key: str) -> str:
        return f"{self.settings.namespace}:{key}"

    async def _create_client(self) -> Redis[str]:
        redis_kwargs = self._init_kwargs | {
            "decode_responses": True,
            "connect_timeout": self.settings.connect_timeout,
            "max_connections": self.settings.max_connections,
        }
        return Redis.from_url(self.settings.connection_string, **redis_kwargs)

    async def init(self) -> None:
        self.logger.info(
            f"Initializing Redis cache connection to {self._masked_connection_string()}",
        )
        try:
            client = await self.get_client()
            await client.ping()
            self.logger.info("Redis cache connection initialized successfully")
        except Exception as e:
            self.logger.exception(f"Failed to initialize Redis cache connection: {e}")
            raise

    def _masked_connection_string(self) -> str:
        connection_string = self.settings.connection_string or ""
        if "@" not in connection_string:
            return connection_string
        credentials, location = connection_string.rsplit("@", maxsplit=1)
        scheme, _, auth = credentials.partition("://")
        user = auth.split(":", maxsplit=1)[0]
        return f"{scheme}://{user}:***@{location}"

    async def get(self, key: str) -> str | None:
        client = await self.get_client()
        return t.cast("str | None", await client.get(self._namespaced(key)))

    async def set(self, key: str, value: str, ttl: int | float | None = None) -> None:
        client = await self.get_client()
        ttl = self._ttl(ttl)
        expires = math.ceil(ttl) if ttl else None
        await client.set(self._namespaced(key), value, ex=expires)

    async def delete(self, key: str) -> int:
        client = await self.get_client()
        return int(await client.delete([self._namespaced(key)]))

    async def _cleanup_resources(self) -> None:
        if self._client is not None:
            pool = getattr(self._client, "connection_pool", None)
            if pool is not None:
                self.register_resource(pool)
        await super()._cleanup_resources()

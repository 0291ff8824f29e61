import asyncio

import typing as t
from pydantic import SecretStr

from docsource.cleanup import CleanupMixin
from docsource.config import Settings
from docsource.logger import get_logger


class CacheBaseSettings(Settings):
    namespace: str = "docsource"
    default_ttl: int | None = None

    host: SecretStr = SecretStr("127.0.0.1")
    port: int | None = None
    user: SecretStr | None = None
    password: SecretStr | None = None
    db: int = 0

    connection_string: str | None = None
    connect_timeout: float | None = 3.0
    max_connections: int | None = 50


class CacheProtocol(t.Protocol):
    """The external cache contract: opaque string payloads keyed by string."""

    async def get(self, key: str) -> str | None: ...

    async def set(
        self,
        key: str,
        value: str,
        ttl: int | float | None = None,
    ) -> None: ...

    async def delete(self, key: str) -> t.Any: ...


class CacheBase(CleanupMixin):
    def __init__(self, settings: CacheBaseSettings | None = None) -> None:
        super().__init__()
        self.settings = settings or CacheBaseSettings()
        self.logger = get_logger(self.__class__.__module__)
        self._client: t.Any = None
        self._client_lock: asyncio.Lock | None = None

    async def _ensure_client(self) -> t.Any:
        if self._client is None:
            if self._client_lock is None:
                self._client_lock = asyncio.Lock()
            async with self._client_lock:
                if self._client is None:
                    self._client = await self._create_client()
                    self.register_resource(self._client)
        return self._client

    async def _create_client(self) -> t.Any:
        msg = "Subclasses must implement _create_client()"
        raise NotImplementedError(msg)

    async def get_client(self) -> t.Any:
        return await self._ensure_client()

    def _ttl(self, ttl: int | float | None) -> int | float | None:
        return self.settings.default_ttl if ttl is None else ttl

    async def get(self, key: str) -> str | None:
        raise NotImplementedError

    async def set(self, key: str, value: str, ttl: int | float | None = None) -> None:
        raise NotImplementedError

    async def delete(self, key: str) -> t.Any:
        raise NotImplementedError

    async def _cleanup_resources(self) -> None:
        self._client = None

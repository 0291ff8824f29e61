from abc import abstractmethod

import typing as t
from pydantic import SecretStr

from docsource.cleanup import CleanupMixin
from docsource.config import Settings
from docsource.logger import get_logger


class NosqlBaseSettings(Settings):
    host: SecretStr = SecretStr("127.0.0.1")
    port: int | None = None
    user: SecretStr | None = None
    password: SecretStr | None = None
    database: str = "docsource"
    connection_string: str | None = None
    collection_prefix: str = ""

    connect_timeout: float | None = 30.0
    socket_timeout: float | None = 30.0
    max_pool_size: int | None = 100
    min_pool_size: int | None = None


class StoreProtocol(t.Protocol):
    async def find(
        self,
        collection: str,
        filter: dict[str, t.Any],
        **kwargs: t.Any,
    ) -> list[dict[str, t.Any]]: ...

    async def aggregate(
        self,
        collection: str,
        pipeline: list[dict[str, t.Any]],
        **kwargs: t.Any,
    ) -> list[dict[str, t.Any]]: ...


class StoreCollection:
    """A store adapter bound to one collection.

    This is the only surface the batching layer talks to: one ``find`` per
    id or filter batch and one ``aggregate`` per count batch.
    """

    def __init__(self, adapter: StoreProtocol, name: str) -> None:
        self.adapter = adapter
        self.name = name

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name!r})"

    async def find(
        self,
        filter: dict[str, t.Any],
        **kwargs: t.Any,
    ) -> list[dict[str, t.Any]]:
        return await self.adapter.find(self.name, filter, **kwargs)

    async def aggregate(
        self,
        pipeline: list[dict[str, t.Any]],
        **kwargs: t.Any,
    ) -> list[dict[str, t.Any]]:
        return await self.adapter.aggregate(self.name, pipeline, **kwargs)


class NosqlBase(CleanupMixin):
    def __init__(self, settings: NosqlBaseSettings | None = None) -> None:
        super().__init__()
        self.settings = settings or NosqlBaseSettings()
        self.logger = get_logger(self.__class__.__module__)
        self._collections: dict[str, StoreCollection] = {}

    def collection(self, name: str) -> StoreCollection:
        name = f"{self.settings.collection_prefix}{name}"
        if name not in self._collections:
            self._collections[name] = StoreCollection(self, name)
        return self._collections[name]

    def __getitem__(self, name: str) -> StoreCollection:
        return self.collection(name)

    @abstractmethod
    async def init(self) -> None:
        pass

    @abstractmethod
    async def find(
        self,
        collection: str,
        filter: dict[str, t.Any],
        **kwargs: t.Any,
    ) -> list[dict[str, t.Any]]:
        pass

    @abstractmethod
    async def aggregate(
        self,
        collection: str,
        pipeline: list[dict[str, t.Any]],
        **kwargs: t.Any,
    ) -> list[dict[str, t.Any]]:
        pass

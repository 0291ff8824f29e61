from __future__ import annotations

from functools import cached_property

import typing as t
from motor.motor_asyncio import AsyncIOMotorClient

from ._base import NosqlBase, NosqlBaseSettings


class NosqlSettings(NosqlBaseSettings):
    port: int | None = 27017
    connection_options: dict[str, t.Any] = {}

    def _build_connection_timeouts(self) -> dict[str, t.Any]:
        timeouts = {}
        timeout_mapping = {
            "connect_timeout": ("connectTimeoutMS", 1000),
            "socket_timeout": ("socketTimeoutMS", 1000),
            "max_pool_size": ("maxPoolSize", 1),
            "min_pool_size": ("minPoolSize", 1),
        }
        for attr, (key, multiplier) in timeout_mapping.items():
            if value := getattr(self, attr):
                timeouts[key] = int(value * multiplier) if multiplier > 1 else value

        return timeouts

    def model_post_init(self, __context: t.Any) -> None:
        self.connection_options = self._build_connection_timeouts() | self.connection_options
        if not self.connection_string:
            host = self.host.get_secret_value()
            auth_part = ""
            if self.user and self.password:
                auth_part = f"{self.user.get_secret_value()}:{self.password.get_secret_value()}@"
            self.connection_string = (
                f"mongodb://{auth_part}{host}:{self.port}/{self.database}"
            )


class Nosql(NosqlBase):
    """MongoDB store adapter on motor."""

    settings: NosqlSettings

    def __init__(self, settings: NosqlSettings | None = None) -> None:
        super().__init__(settings or NosqlSettings())

    @cached_property
    def client(self) -> AsyncIOMotorClient[t.Any]:
        client: AsyncIOMotorClient[t.Any] = AsyncIOMotorClient(
            self.settings.connection_string,
            **self.settings.connection_options,
        )
        self.register_resource(client)
        return client

    @cached_property
    def db(self) -> t.Any:
        return self.client[self.settings.database]

    async def init(self) -> None:
        self.logger.info(f"Initializing MongoDB connection to {self.settings.database}")
        try:
            await self.db.command("ping")
            self.logger.info("MongoDB connection initialized successfully")
        except Exception as e:
            self.logger.exception(f"Failed to initialize MongoDB connection: {e}")
            raise

    async def find(
        self,
        collection: str,
        filter: dict[str, t.Any],
        **kwargs: t.Any,
    ) -> list[dict[str, t.Any]]:
        cursor = self.db[collection].find(filter, **kwargs)
        result = await cursor.to_list(length=None)
        return t.cast("list[dict[str, t.Any]]", result)

    async def aggregate(
        self,
        collection: str,
        pipeline: list[dict[str, t.Any]],
        **kwargs: t.Any,
    ) -> list[dict[str, t.Any]]:
        cursor = self.db[collection].aggregate(pipeline, **kwargs)
        result = await cursor.to_list(length=None)
        return t.cast("list[dict[str, t.Any]]", result)

    async def _cleanup_resources(self) -> None:
        self.__dict__.pop("db", None)
        self.__dict__.pop("client", None)

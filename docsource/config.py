import typing as t
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PREFIX = "DOCSOURCE_"


class Settings(BaseSettings):
    """Base for every docsource settings class.

    Values come from keyword arguments first, then ``DOCSOURCE_*``
    environment variables, then the field defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        extra="allow",
        arbitrary_types_allowed=True,
        validate_default=True,
        protected_namespaces=("model_", "settings_"),
    )


class DataSourceSettings(Settings):
    cache_prefix: str = Field(default="mongo", description="Cache key namespace")
    default_ttl: int | None = Field(
        default=None,
        description="TTL in seconds applied when a call passes none",
    )
    strict_operators: bool = Field(
        default=True,
        description="Reject find filters the in-memory matcher cannot evaluate",
    )
    cache_enabled: bool = True

    @field_validator("default_ttl")
    @classmethod
    def ttl_not_negative(cls, v: int | None) -> int | None:
        if v is not None and v < 0:
            msg = "default_ttl must be zero or positive"
            raise ValueError(msg)
        return v

    def namespace(self, collection_name: str) -> str:
        return f"{self.cache_prefix}-{collection_name}-"

    def resolve_ttl(self, ttl: t.Any = None) -> int | float | None:
        return self.default_ttl if ttl is None else ttl

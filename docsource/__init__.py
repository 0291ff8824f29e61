"""Batched, cached read access to document collections."""

from .adapters.cache._base import CacheProtocol
from .adapters.nosql._base import StoreCollection, StoreProtocol
from .coalescer import QueryCoalescer
from .config import DataSourceSettings
from .datasource import CacheMetrics, MongoDataSource
from .errors import (
    BatchSizeMismatchError,
    CacheUnavailableError,
    DataSourceError,
    MalformedFilterError,
    StoreUnavailableError,
    UnsupportedOperatorError,
)
from .facets import FacetCountEngine
from .keys import CacheKeyDeriver
from .matcher import SUPPORTED_OPERATORS, ResultMatcher
from .scheduler import BatchLoader, BatchScheduler

__version__ = "0.1.0"

__all__ = [
    "SUPPORTED_OPERATORS",
    "BatchLoader",
    "BatchScheduler",
    "BatchSizeMismatchError",
    "CacheKeyDeriver",
    "CacheMetrics",
    "CacheProtocol",
    "CacheUnavailableError",
    "DataSourceError",
    "DataSourceSettings",
    "FacetCountEngine",
    "MalformedFilterError",
    "MongoDataSource",
    "QueryCoalescer",
    "ResultMatcher",
    "StoreCollection",
    "StoreProtocol",
    "StoreUnavailableError",
    "UnsupportedOperatorError",
]

"""Payload codec for cached results.

Canonical Extended JSON keeps ObjectId, Int64, Decimal128, Binary and
datetime values typed across a cache round-trip. Datetimes keep millisecond
precision, matching what the store itself persists.
"""

import typing as t
from bson import json_util
from bson.json_util import CANONICAL_JSON_OPTIONS

__all__ = ["dumps", "dumps_count", "loads", "loads_count"]


def dumps(value: t.Any) -> str:
    return json_util.dumps(value, json_options=CANONICAL_JSON_OPTIONS)


def loads(value: str | bytes) -> t.Any:
    if isinstance(value, bytes):
        value = value.decode()
    return json_util.loads(value, json_options=CANONICAL_JSON_OPTIONS)


def dumps_count(count: int) -> str:
    return str(int(count))


def loads_count(value: str | bytes) -> int:
    if isinstance(value, bytes):
        value = value.decode()
    return int(value)

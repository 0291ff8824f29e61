"""Cache key derivation.

A lookup argument is either a document id (``str`` or ``ObjectId``) or a
filter mapping. Filters are deep-sorted by key and rendered as canonical
Extended JSON, so ``1``, ``1.0`` and ``"1"`` never share a key and two
filters built in different key orders always do. The md5 digest of the
namespace, the operation tag and that canonical form is the key.
"""

import hashlib
from collections.abc import Mapping

import typing as t
from bson import ObjectId, json_util
from bson.json_util import CANONICAL_JSON_OPTIONS

from .errors import MalformedFilterError, raise_malformed_filter

Id = str | ObjectId
Filter = Mapping[str, t.Any]

__all__ = [
    "CacheKeyDeriver",
    "Filter",
    "Id",
    "canonical_filter",
    "canonical_id",
    "canonical_value",
    "canonicalize",
    "is_id",
]


def is_id(value: t.Any) -> bool:
    return isinstance(value, str | ObjectId)


def canonicalize(value: t.Any) -> t.Any:
    """Return ``value`` with every nested mapping sorted by key.

    Sequences keep their order; only the mappings inside them are sorted.
    """
    if isinstance(value, Mapping):
        for key in value:
            if not isinstance(key, str):
                raise_malformed_filter(value, f"non-string field name {key!r}")
        return {key: canonicalize(value[key]) for key in sorted(value)}
    if isinstance(value, list | tuple):
        return [canonicalize(item) for item in value]
    return value


def canonical_value(value: t.Any) -> str:
    """Serialize any filter fragment to its canonical, type-preserving form."""
    try:
        return json_util.dumps(canonicalize(value), json_options=CANONICAL_JSON_OPTIONS)
    except MalformedFilterError:
        raise
    except (TypeError, ValueError) as e:
        raise MalformedFilterError(value, f"Cannot serialize filter: {e}") from e


def canonical_filter(filter: t.Any) -> str:
    if not isinstance(filter, Mapping):
        raise_malformed_filter(filter, "a filter must be a mapping")
    return canonical_value(filter)


def canonical_id(id: t.Any) -> str:
    """Hex for object ids, the literal text for string ids."""
    if isinstance(id, ObjectId):
        return str(id)
    if isinstance(id, str):
        return id
    raise MalformedFilterError(
        id,
        f"Document ids must be str or ObjectId, got {type(id).__name__}",
    )


def _digest(text: str) -> str:
    return hashlib.md5(text.encode(), usedforsecurity=False).hexdigest()


class CacheKeyDeriver:
    """Derives stable cache, dedup and facet keys for one collection."""

    def __init__(self, namespace: str) -> None:
        self.namespace = namespace

    def canonical(self, id_or_filter: t.Any) -> str:
        if is_id(id_or_filter):
            return canonical_id(id_or_filter)
        return canonical_filter(id_or_filter)

    def derive(self, id_or_filter: t.Any, operation: str = "") -> str:
        """Return the external cache key for a lookup argument and operation."""
        return _digest(f"{self.namespace}{operation}{self.canonical(id_or_filter)}")

    @staticmethod
    def dedup_key(id_or_filter: t.Any) -> t.Hashable:
        """In-memory dedup key.

        Ids are tagged by kind so a string id never collapses onto an
        ObjectId with the same hex text.
        """
        if isinstance(id_or_filter, ObjectId):
            return ("oid", str(id_or_filter))
        if isinstance(id_or_filter, str):
            return ("str", id_or_filter)
        return canonical_filter(id_or_filter)

    @staticmethod
    def facet_name(filter: Filter) -> str:
        """Name of the ``$facet`` sub-pipeline counting ``filter``."""
        return _digest(canonical_filter(filter))

"""Query key normalization and matching."""

from collections.abc import Hashable, Mapping, Sequence, Set
from dataclasses import dataclass
from typing import Any

QueryKey = Sequence[Any]


@dataclass(frozen=True, slots=True)
class _MapPart:
    """Normalized mapping, kept distinct from a set of pairs."""

    items: frozenset[tuple[Hashable, Hashable]]


def _normalize(part: Any) -> Hashable:
    if isinstance(part, Mapping):
        return _MapPart(frozenset((k, _normalize(v)) for k, v in part.items()))
    if isinstance(part, (str, bytes)):
        return part
    if isinstance(part, Sequence):
        return tuple(_normalize(p) for p in part)
    if isinstance(part, Set):
        return frozenset(_normalize(p) for p in part)
    return part


def hash_key(key: QueryKey) -> tuple[Hashable, ...]:
    """Normalize a key into a hashable tuple with structural equality.

    Example:
        hash_key(["todos", {"page": 1}]) == hash_key(("todos", {"page": 1}))
    """
    if isinstance(key, (str, bytes)) or not isinstance(key, Sequence):
        raise TypeError(f"Query key must be a sequence, got {type(key).__name__}")
    return tuple(_normalize(part) for part in key)


def key_equals(a: QueryKey, b: QueryKey) -> bool:
    """Deep structural equality of two keys."""
    return hash_key(a) == hash_key(b)


def starts_with(key: QueryKey, prefix: QueryKey) -> bool:
    """Check if prefix is a prefix of key (the empty prefix matches all)."""
    normalized = hash_key(key)
    normalized_prefix = hash_key(prefix)
    if len(normalized_prefix) > len(normalized):
        return False
    return normalized[: len(normalized_prefix)] == normalized_prefix


def matches_key(key: QueryKey, filter_key: QueryKey, *, exact: bool) -> bool:
    """Exact or prefix match of a key against a filter key."""
    if exact:
        return key_equals(key, filter_key)
    return starts_with(key, filter_key)


def serialize_key(key: QueryKey) -> str:
    """Serialize a key for logging."""
    return ":".join(str(part) for part in key)

"""Core types for querysync."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, Literal, TypeVar

from querysync.abort import AbortSignal
from querysync.keys import QueryKey

if TYPE_CHECKING:
    from querysync.client import QueryClient

T = TypeVar("T")
TPage = TypeVar("TPage")
TPageParam = TypeVar("TPageParam")

QueryStatus = Literal["pending", "error", "success"]
FetchStatus = Literal["fetching", "paused", "idle"]
MutationStatus = Literal["idle", "pending", "success", "error"]
FetchDirection = Literal["forward", "backward"]
NetworkMode = Literal["online", "always", "offline_first"]
RefetchPolicy = Literal["never", "stale", "always"]
QueryTypeFilter = Literal["all", "active", "inactive"]


@dataclass(frozen=True, slots=True)
class QueryState(Generic[T]):
    """Snapshot of one query. Replaced, never mutated."""

    status: QueryStatus = "pending"
    fetch_status: FetchStatus = "idle"
    data: T | None = None
    data_updated_at: int | None = None  # Unix timestamp ms
    data_update_count: int = 0
    error: Exception | None = None
    error_updated_at: int | None = None
    error_update_count: int = 0
    failure_count: int = 0
    failure_reason: Exception | None = None
    is_invalidated: bool = False


@dataclass(frozen=True, slots=True)
class MutationState(Generic[T]):
    """Snapshot of one mutation."""

    status: MutationStatus = "idle"
    data: T | None = None
    error: Exception | None = None
    variables: Any = None
    on_mutate_result: Any = None
    submitted_at: int | None = None  # Unix timestamp ms
    failure_count: int = 0
    failure_reason: Exception | None = None
    is_paused: bool = False


@dataclass(frozen=True, slots=True)
class InfiniteData(Generic[TPage, TPageParam]):
    """Pages of an infinite query and the params that produced them."""

    pages: tuple[TPage, ...] = ()
    page_params: tuple[TPageParam, ...] = ()

    def __post_init__(self) -> None:
        if len(self.pages) != len(self.page_params):
            raise ValueError("pages and page_params must have the same length")


@dataclass(frozen=True, slots=True)
class QueryFunctionContext:
    """Argument passed to every query function."""

    query_key: QueryKey
    client: QueryClient
    signal: AbortSignal
    meta: Mapping[str, Any] = field(default_factory=dict)
    fetch_meta: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class InfiniteQueryFunctionContext(Generic[TPageParam]):
    """Argument passed to infinite query page functions."""

    query_key: QueryKey
    client: QueryClient
    signal: AbortSignal
    page_param: TPageParam
    direction: FetchDirection
    meta: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class MutationFunctionContext:
    """Argument passed to mutation functions and hooks."""

    client: QueryClient
    meta: Mapping[str, Any] = field(default_factory=dict)
    mutation_key: QueryKey | None = None

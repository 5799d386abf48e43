"""Option dataclasses, client defaults and option merging.

Options are layered with "first non-None wins" precedence:

    observer options > query-level options > client defaults

``merge_options`` is the only place this rule is implemented.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field, fields, replace
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from querysync.duration import Duration, GcDuration, StaleDuration, to_stale_duration
from querysync.keys import QueryKey
from querysync.retryer import RetryResolver, retry_exponential_backoff, retry_never
from querysync.types import (
    MutationFunctionContext,
    NetworkMode,
    QueryFunctionContext,
    RefetchPolicy,
)

if TYPE_CHECKING:
    from querysync.query import Query

T = TypeVar("T")
OptionsT = TypeVar("OptionsT")

StaleTime = Duration | StaleDuration | Callable[["Query[Any]"], Duration | StaleDuration]
QueryFn = Callable[[QueryFunctionContext], Awaitable[T]]
MutationFn = Callable[[Any, MutationFunctionContext], Awaitable[T]]
# Hooks may be sync or async
OnMutate = Callable[[Any, MutationFunctionContext], Any]
OnSuccess = Callable[[Any, Any, Any, MutationFunctionContext], Any]
OnError = Callable[[Exception, Any, Any, MutationFunctionContext], Any]
OnSettled = Callable[[Any, Exception | None, Any, Any, MutationFunctionContext], Any]


@dataclass(slots=True)
class QueryOptions(Generic[T]):
    """Options for a query and for each observer attached to it.

    Unset fields (None) are filled from the query's options and the client
    defaults.
    """

    query_key: QueryKey
    query_fn: QueryFn[T] | None = None
    enabled: bool | None = None
    stale_duration: StaleTime | None = None
    gc_duration: Duration | GcDuration | None = None
    retry: RetryResolver | None = None
    # A value, or a callable receiving the previously displayed data
    placeholder: Any = None
    refetch_on_mount: RefetchPolicy | None = None
    refetch_on_resume: RefetchPolicy | None = None
    refetch_on_reconnect: RefetchPolicy | None = None
    refetch_interval: Duration | None = None
    network_mode: NetworkMode | None = None
    initial_data: T | Callable[[], T] | None = None
    initial_data_updated_at: int | None = None
    meta: Mapping[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class DefaultQueryOptions:
    """Client-wide query defaults."""

    enabled: bool = True
    stale_duration: StaleTime = 0
    gc_duration: Duration | GcDuration = "5m"
    retry: RetryResolver = field(default_factory=retry_exponential_backoff)
    refetch_on_mount: RefetchPolicy = "stale"
    refetch_on_resume: RefetchPolicy = "stale"
    refetch_on_reconnect: RefetchPolicy = "stale"
    refetch_interval: Duration | None = None
    network_mode: NetworkMode = "online"


@dataclass(slots=True)
class MutationOptions(Generic[T]):
    """Options for a mutation.

    on_mutate's return value is threaded unchanged into the other hooks,
    typically a snapshot used to roll back an optimistic update.
    """

    mutation_fn: MutationFn[T]
    mutation_key: QueryKey | None = None
    on_mutate: OnMutate | None = None
    on_success: OnSuccess | None = None
    on_error: OnError | None = None
    on_settled: OnSettled | None = None
    retry: RetryResolver | None = None
    gc_duration: Duration | GcDuration | None = None
    meta: Mapping[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class DefaultMutationOptions:
    """Client-wide mutation defaults."""

    retry: RetryResolver = field(default=retry_never)
    gc_duration: Duration | GcDuration = "5m"


def merge_options(options: OptionsT, *fallbacks: object) -> OptionsT:
    """Fill the unset (None) fields of options from fallbacks.

    Fallbacks are consulted in order and the first non-None value wins.
    Fallback objects may be of any type; fields they lack are skipped.
    Returns options itself when nothing needs filling.

    Example:
        merged = merge_options(observer_opts, query.options, client_defaults)
    """
    updates: dict[str, Any] = {}
    for f in fields(options):  # type: ignore[arg-type]
        if getattr(options, f.name) is not None:
            continue
        for fallback in fallbacks:
            if fallback is None:
                continue
            value = getattr(fallback, f.name, None)
            if value is not None:
                updates[f.name] = value
                break
    if not updates:
        return options
    return replace(options, **updates)  # type: ignore[type-var]


def resolve_stale_time(stale_time: StaleTime | None, query: Query[Any]) -> StaleDuration:
    """Resolve a stale_duration option (value, sentinel or callable) for a query."""
    if callable(stale_time):
        stale_time = stale_time(query)
    return to_stale_duration(stale_time if stale_time is not None else 0)

"""QueryClient - the facade over the query and mutation caches."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any, Literal, TypeVar

from querysync.infinite_query import InfiniteQueryOptions, as_query_options
from querysync.keys import QueryKey, serialize_key
from querysync.log import get_logger
from querysync.mutation import Mutation
from querysync.mutation_cache import MutationCache
from querysync.options import (
    DefaultMutationOptions,
    DefaultQueryOptions,
    MutationOptions,
    QueryOptions,
    merge_options,
    resolve_stale_time,
)
from querysync.query import Query
from querysync.query_cache import QueryCache
from querysync.retryer import retry_never
from querysync.types import InfiniteData, QueryState, QueryTypeFilter

T = TypeVar("T")
TPage = TypeVar("TPage")
TPageParam = TypeVar("TPageParam")

logger = get_logger(__name__)

QueryPredicate = Callable[[Query[Any]], bool]
MutationPredicate = Callable[[Mutation[Any]], bool]


class QueryClient:
    """Entry point: owns the caches, the defaults and the online flag.

    Usage:
        client = QueryClient(default_query_options=DefaultQueryOptions(stale_duration="30s"))
        todos = await client.fetch_query(QueryOptions(["todos"], query_fn=fetch_todos))
        await client.invalidate_queries(["todos"])
    """

    def __init__(
        self,
        *,
        query_cache: QueryCache | None = None,
        mutation_cache: MutationCache | None = None,
        default_query_options: DefaultQueryOptions | None = None,
        default_mutation_options: DefaultMutationOptions | None = None,
    ) -> None:
        self._query_cache = query_cache if query_cache is not None else QueryCache()
        self._mutation_cache = (
            mutation_cache if mutation_cache is not None else MutationCache()
        )
        self._query_defaults = default_query_options or DefaultQueryOptions()
        self._mutation_defaults = default_mutation_options or DefaultMutationOptions()
        self._online = True

    @property
    def query_cache(self) -> QueryCache:
        return self._query_cache

    @property
    def mutation_cache(self) -> MutationCache:
        return self._mutation_cache

    @property
    def query_defaults(self) -> DefaultQueryOptions:
        return self._query_defaults

    @property
    def mutation_defaults(self) -> DefaultMutationOptions:
        return self._mutation_defaults

    def default_query_options(self, options: QueryOptions[T]) -> QueryOptions[T]:
        """Fill unset query options from the client defaults."""
        return merge_options(options, self._query_defaults)

    def default_mutation_options(self, options: MutationOptions[T]) -> MutationOptions[T]:
        """Fill unset mutation options from the client defaults."""
        return merge_options(options, self._mutation_defaults)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def fetch_query(self, options: QueryOptions[T]) -> T:
        """Return fresh cached data, or fetch it.

        Fetches when the cached data is stale under options.stale_duration.
        Retries are off for this call unless options.retry is given; the
        query's own options are left untouched. Raises the fetch error.
        """
        query = self._query_cache.build(self, options)
        resolved = self.default_query_options(merge_options(options, query.options))
        if query.is_stale_by_time(resolve_stale_time(resolved.stale_duration, query)):
            return await asyncio.shield(
                query.fetch(retry=options.retry or retry_never)
            )
        return query.state.data  # type: ignore[return-value]

    async def prefetch_query(self, options: QueryOptions[Any]) -> None:
        """Like fetch_query, but never raises and returns nothing."""
        try:
            await self.fetch_query(options)
        except Exception as e:
            logger.warning(
                "prefetch_failed", key=serialize_key(options.query_key), error=repr(e)
            )

    async def fetch_infinite_query(
        self, options: InfiniteQueryOptions[TPage, TPageParam]
    ) -> InfiniteData[TPage, TPageParam]:
        """fetch_query for an infinite query: fetches or re-fetches its pages."""
        return await self.fetch_query(as_query_options(options))

    async def prefetch_infinite_query(
        self, options: InfiniteQueryOptions[Any, Any]
    ) -> None:
        await self.prefetch_query(as_query_options(options))

    def get_query_data(self, key: QueryKey) -> Any:
        query = self._query_cache.get(key)
        return query.state.data if query is not None else None

    def get_query_state(self, key: QueryKey) -> QueryState[Any] | None:
        query = self._query_cache.get(key)
        return query.state if query is not None else None

    def set_query_data(
        self,
        key: QueryKey,
        updater: Any,
        *,
        updated_at: int | None = None,
    ) -> Any:
        """Write data for a key without fetching.

        updater is the new data, or a callable receiving the current data (or
        None). A None result leaves the cache untouched. Returns the new data.
        """
        query = self._query_cache.get(key)
        previous = query.state.data if query is not None else None
        data = updater(previous) if callable(updater) else updater
        if data is None:
            return None
        if query is None:
            query = self._query_cache.build(self, QueryOptions(query_key=key))
        return query.set_data(data, updated_at=updated_at)

    # -------------------------------------------------------------------------
    # Bulk operations
    # -------------------------------------------------------------------------

    async def invalidate_queries(
        self,
        key: QueryKey | None = None,
        *,
        exact: bool = False,
        predicate: QueryPredicate | None = None,
        refetch_type: QueryTypeFilter | Literal["none"] = "active",
        cancel_refetch: bool = True,
        throw_on_error: bool = False,
    ) -> None:
        """Mark matching queries invalidated, then refetch those of refetch_type."""
        queries = self._query_cache.find_all(key, exact=exact, predicate=predicate)
        for query in queries:
            query.invalidate()
        logger.debug(
            "queries_invalidated",
            key=serialize_key(key) if key is not None else None,
            count=len(queries),
        )
        if refetch_type == "none":
            return
        await self.refetch_queries(
            key,
            exact=exact,
            predicate=predicate,
            type=refetch_type,
            cancel_refetch=cancel_refetch,
            throw_on_error=throw_on_error,
        )

    async def refetch_queries(
        self,
        key: QueryKey | None = None,
        *,
        exact: bool = False,
        predicate: QueryPredicate | None = None,
        type: QueryTypeFilter = "active",
        stale: bool | None = None,
        cancel_refetch: bool = True,
        throw_on_error: bool = False,
    ) -> None:
        """Refetch matching queries. Disabled, static and paused ones are skipped."""
        queries = [
            query
            for query in self._query_cache.find_all(
                key, exact=exact, predicate=predicate, type=type, stale=stale
            )
            if not query.is_disabled()
            and not query.is_static()
            and query.state.fetch_status != "paused"
        ]
        tasks = [query.fetch(cancel_refetch=cancel_refetch) for query in queries]
        results = await asyncio.gather(
            *(asyncio.shield(task) for task in tasks), return_exceptions=True
        )
        if throw_on_error:
            for result in results:
                if isinstance(result, BaseException):
                    raise result

    async def reset_queries(
        self,
        key: QueryKey | None = None,
        *,
        exact: bool = False,
        predicate: QueryPredicate | None = None,
    ) -> None:
        """Restore initial state of matching queries and refetch the active ones."""
        for query in self._query_cache.find_all(key, exact=exact, predicate=predicate):
            query.reset()
        await self.refetch_queries(key, exact=exact, predicate=predicate)

    def remove_queries(
        self,
        key: QueryKey | None = None,
        *,
        exact: bool = False,
        predicate: QueryPredicate | None = None,
    ) -> None:
        for query in self._query_cache.find_all(key, exact=exact, predicate=predicate):
            self._query_cache.remove(query)

    async def cancel_queries(
        self,
        key: QueryKey | None = None,
        *,
        exact: bool = False,
        predicate: QueryPredicate | None = None,
        revert: bool = True,
        silent: bool = False,
    ) -> None:
        """Cancel in-flight fetches of matching queries and wait for them to settle."""
        cancelled = [
            query.cancel(revert=revert, silent=silent)
            for query in self._query_cache.find_all(
                key, exact=exact, predicate=predicate
            )
        ]
        await asyncio.gather(*cancelled)

    def is_fetching(
        self,
        key: QueryKey | None = None,
        *,
        exact: bool = False,
        predicate: QueryPredicate | None = None,
    ) -> int:
        """Number of matching queries currently fetching."""
        return len(
            self._query_cache.find_all(
                key, exact=exact, predicate=predicate, fetch_status="fetching"
            )
        )

    def is_mutating(
        self,
        mutation_key: QueryKey | None = None,
        *,
        exact: bool = False,
        predicate: MutationPredicate | None = None,
    ) -> int:
        """Number of matching mutations currently pending."""
        return len(
            self._mutation_cache.find_all(
                mutation_key, exact=exact, predicate=predicate, status="pending"
            )
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def is_online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        """Update connectivity. Going online resumes paused fetches."""
        changed = online != self._online
        self._online = online
        logger.debug("online_changed", online=online)
        if online and changed:
            self._query_cache.on_online()

    def resume(self) -> None:
        """Application came back to the foreground: apply refetch_on_resume."""
        self._query_cache.on_resume()

    def clear(self) -> None:
        """Remove every query and mutation."""
        self._query_cache.clear()
        self._mutation_cache.clear()

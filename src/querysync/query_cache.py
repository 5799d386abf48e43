"""QueryCache - the store of Query entities, keyed by normalized key.

Provides:
- QueryCache.build(): get-or-create a query for a key
- QueryCache.find() / find_all(): exact or prefix lookups with filters
- QueryCache.subscribe(): add / remove / update / observer events
"""

from __future__ import annotations

from collections.abc import Callable, Hashable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, TypeVar

from querysync.keys import QueryKey, hash_key, matches_key, serialize_key
from querysync.log import get_logger
from querysync.options import QueryOptions, merge_options
from querysync.query import Query
from querysync.subscribable import Subscribable
from querysync.types import FetchStatus, QueryState, QueryTypeFilter

if TYPE_CHECKING:
    from querysync.client import QueryClient
    from querysync.query_observer import QueryObserver

T = TypeVar("T")

logger = get_logger(__name__)

QueryCacheEventType = Literal[
    "added", "removed", "updated", "observer_added", "observer_removed"
]

_QUERY_TYPES = ("all", "active", "inactive")


@dataclass(frozen=True, slots=True)
class QueryCacheEvent:
    """A change in the cache."""

    type: QueryCacheEventType
    query: Query[Any]
    observer: QueryObserver[Any] | None = None


class QueryCache(Subscribable[QueryCacheEvent]):
    """Owns every Query of one client.

    Usage:
        cache = QueryCache()
        client = QueryClient(query_cache=cache)
        unsubscribe = cache.subscribe(lambda event: print(event.type))
    """

    def __init__(self) -> None:
        super().__init__()
        self._queries: dict[Hashable, Query[Any]] = {}

    def __len__(self) -> int:
        return len(self._queries)

    def build(
        self,
        client: QueryClient,
        options: QueryOptions[T],
        state: QueryState[T] | None = None,
    ) -> Query[T]:
        """Return the query for options.query_key, creating it if needed.

        An existing query gets the given options layered over its own.
        """
        query = self._queries.get(hash_key(options.query_key))
        if query is None:
            query = Query(client, self, client.default_query_options(options), state)
            self.add(query)
        else:
            query.set_options(merge_options(options, query.options))
        return query

    def add(self, query: Query[Any]) -> None:
        if query.query_hash in self._queries:
            return
        self._queries[query.query_hash] = query
        logger.debug("query_added", key=serialize_key(query.key))
        self.notify(QueryCacheEvent("added", query))

    def remove(self, query: Query[Any]) -> None:
        """Remove a query. A different query now held under its key is kept."""
        if self._queries.get(query.query_hash) is not query:
            return
        del self._queries[query.query_hash]
        query.destroy()
        logger.debug("query_removed", key=serialize_key(query.key))
        self.notify(QueryCacheEvent("removed", query))

    def get(self, key: QueryKey) -> Query[Any] | None:
        return self._queries.get(hash_key(key))

    def get_all(self) -> list[Query[Any]]:
        return list(self._queries.values())

    def find(
        self,
        key: QueryKey,
        *,
        exact: bool = True,
        predicate: Callable[[Query[Any]], bool] | None = None,
        type: QueryTypeFilter = "all",
        stale: bool | None = None,
        fetch_status: FetchStatus | None = None,
    ) -> Query[Any] | None:
        """First query matching the filters, or None."""
        matches = self.find_all(
            key,
            exact=exact,
            predicate=predicate,
            type=type,
            stale=stale,
            fetch_status=fetch_status,
        )
        return matches[0] if matches else None

    def find_all(
        self,
        key: QueryKey | None = None,
        *,
        exact: bool = False,
        predicate: Callable[[Query[Any]], bool] | None = None,
        type: QueryTypeFilter = "all",
        stale: bool | None = None,
        fetch_status: FetchStatus | None = None,
    ) -> list[Query[Any]]:
        """All queries matching the filters.

        Args:
            key: Exact key or key prefix; None matches every query.
            exact: Match key exactly instead of as a prefix.
            predicate: Extra filter applied last.
            type: "active" (has an enabled observer), "inactive" or "all".
            stale: Keep only stale (True) or only fresh (False) queries.
            fetch_status: Keep only queries in this fetch status.
        """
        if type not in _QUERY_TYPES:
            raise ValueError(f"Unknown query type filter: {type!r}")

        result = []
        for query in list(self._queries.values()):
            if key is not None and not matches_key(query.key, key, exact=exact):
                continue
            if type != "all" and query.is_active() != (type == "active"):
                continue
            if stale is not None and query.is_stale() != stale:
                continue
            if fetch_status is not None and query.state.fetch_status != fetch_status:
                continue
            if predicate is not None and not predicate(query):
                continue
            result.append(query)
        return result

    def clear(self) -> None:
        for query in list(self._queries.values()):
            self.remove(query)

    def notify(self, event: QueryCacheEvent) -> None:
        self._notify_listeners(event)

    def on_resume(self) -> None:
        """Forward a resume event to every observer."""
        for query in list(self._queries.values()):
            for observer in query.observers:
                observer.on_resume()

    def on_online(self) -> None:
        """Continue paused fetches and forward reconnect to every observer."""
        for query in list(self._queries.values()):
            query.continue_fetch()
            for observer in query.observers:
                observer.on_reconnect()

"""QueryObserver - a subscriber's view of one query."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from querysync.duration import (
    StaleDuration,
    StaticDuration,
    parse_duration,
)
from querysync.errors import ObserverDisposedError
from querysync.keys import key_equals, serialize_key
from querysync.log import get_logger
from querysync.options import QueryOptions, merge_options, resolve_stale_time
from querysync.query import Query
from querysync.subscribable import Subscribable
from querysync.types import FetchStatus, QueryStatus, RefetchPolicy

if TYPE_CHECKING:
    from querysync.client import QueryClient

T = TypeVar("T")

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class QueryResult(Generic[T]):
    """What an observer exposes to its subscribers."""

    status: QueryStatus
    fetch_status: FetchStatus
    data: T | None
    data_updated_at: int | None
    data_update_count: int
    error: Exception | None
    error_updated_at: int | None
    error_update_count: int
    failure_count: int
    failure_reason: Exception | None
    is_invalidated: bool
    is_placeholder_data: bool
    is_stale: bool
    is_enabled: bool
    is_fetched_after_mount: bool

    @property
    def is_pending(self) -> bool:
        return self.status == "pending"

    @property
    def is_success(self) -> bool:
        return self.status == "success"

    @property
    def is_error(self) -> bool:
        return self.status == "error"

    @property
    def is_fetching(self) -> bool:
        return self.fetch_status == "fetching"

    @property
    def is_paused(self) -> bool:
        return self.fetch_status == "paused"

    @property
    def is_loading(self) -> bool:
        """First load in progress: pending and fetching."""
        return self.is_pending and self.is_fetching

    @property
    def is_refetching(self) -> bool:
        """Background fetch of a query that already has a result."""
        return self.is_fetching and not self.is_pending

    @property
    def is_fetched(self) -> bool:
        return self.data_update_count > 0 or self.error_update_count > 0

    @property
    def is_loading_error(self) -> bool:
        return self.is_error and self.data is None

    @property
    def is_refetch_error(self) -> bool:
        return self.is_error and self.data is not None


class QueryObserver(Subscribable[QueryResult[T]], Generic[T]):
    """Attaches to a query, derives a QueryResult and triggers fetches.

    The observer attaches on construction and fetches if the mount policy
    says so. Listeners are called with the new result only when it changes.

    Usage:
        observer = QueryObserver(client, QueryOptions(["todos"], query_fn=fetch_todos))
        unsubscribe = observer.subscribe(lambda result: print(result.status))
        ...
        observer.dispose()
    """

    def __init__(self, client: QueryClient, options: QueryOptions[T]) -> None:
        super().__init__()
        self._client = client
        self._options = options
        self._disposed = False
        self._interval_handle: asyncio.TimerHandle | None = None
        self._previous_data: Any = None
        self._query: Query[T] = client.query_cache.build(client, options)
        self._resolved = self._resolve_options()
        self._mount()
        self._update_interval()

    @property
    def query(self) -> Query[T]:
        return self._query

    @property
    def result(self) -> QueryResult[T]:
        return self._result

    @property
    def options(self) -> QueryOptions[T]:
        return self._options

    @options.setter
    def options(self, options: QueryOptions[T]) -> None:
        self._check_disposed()
        previous_query = self._query
        was_enabled = self.is_enabled
        previous_stale = self.resolve_stale_duration()

        self._options = options
        if not key_equals(options.query_key, previous_query.key):
            logger.debug(
                "observer_key_changed",
                previous=serialize_key(previous_query.key),
                key=serialize_key(options.query_key),
            )
            previous_result = self._result
            previous_query.remove_observer(self)
            self._query = self._client.query_cache.build(self._client, options)
            self._resolved = self._resolve_options()
            self._mount()
            if self._result != previous_result:
                self._notify_listeners(self._result)
        else:
            self._query = self._client.query_cache.build(self._client, options)
            self._resolved = self._resolve_options()
            stale = self.resolve_stale_duration()
            if (
                (was_enabled != self.is_enabled or previous_stale != stale)
                and self.is_enabled
                and not isinstance(stale, StaticDuration)
                and self._query.is_stale_by_time(stale)
            ):
                self._execute_fetch()
            self._notify_if_changed()
        self._update_interval()

    @property
    def is_enabled(self) -> bool:
        return self._resolved.enabled is not False

    def resolve_stale_duration(self) -> StaleDuration:
        return resolve_stale_time(self._resolved.stale_duration, self._query)

    def subscribe(
        self, listener: Callable[[QueryResult[T]], None]
    ) -> Callable[[], None]:
        self._check_disposed()
        return super().subscribe(listener)

    async def refetch(
        self, *, cancel_refetch: bool = True, throw_on_error: bool = False
    ) -> QueryResult[T]:
        """Fetch now, even if disabled, and return the resulting result."""
        self._check_disposed()
        task = self._execute_fetch(cancel_refetch=cancel_refetch)
        try:
            await asyncio.shield(task)
        except Exception:
            if throw_on_error:
                raise
        return self._result

    def on_query_update(self) -> None:
        """Called by the query after every state change."""
        self._notify_if_changed()

    def on_resume(self) -> None:
        if self._should_fetch_on(self._resolved.refetch_on_resume):
            self._execute_fetch()

    def on_reconnect(self) -> None:
        if self._should_fetch_on(self._resolved.refetch_on_reconnect):
            self._execute_fetch()

    def dispose(self) -> None:
        """Detach from the query. The observer cannot be used afterwards."""
        if self._disposed:
            return
        self._disposed = True
        self._clear_interval()
        self._listeners.clear()
        self._query.remove_observer(self)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _mount(self) -> None:
        self._mount_counts = (
            self._query.state.data_update_count,
            self._query.state.error_update_count,
        )
        fetch_on_mount = self._should_fetch_on(self._resolved.refetch_on_mount)
        self._result = self._create_result(optimistic=fetch_on_mount)
        self._query.add_observer(self)
        if fetch_on_mount:
            self._execute_fetch()

    def _resolve_options(self) -> QueryOptions[T]:
        return self._client.default_query_options(
            merge_options(self._options, self._query.options)
        )

    def _execute_fetch(self, *, cancel_refetch: bool = False) -> asyncio.Task[T]:
        return self._query.fetch(self._resolved, cancel_refetch=cancel_refetch)

    def _should_fetch_on(self, policy: RefetchPolicy | None) -> bool:
        if not self.is_enabled:
            return False
        if self._query.state.data is None:
            return True
        stale = self.resolve_stale_duration()
        if isinstance(stale, StaticDuration):
            return False
        match policy:
            case "always":
                return True
            case "stale" | None:
                return self._query.is_stale_by_time(stale)
            case _:
                return False

    def _create_result(self, *, optimistic: bool = False) -> QueryResult[T]:
        state = self._query.state
        options = self._resolved
        status = state.status
        data = state.data
        fetch_status = state.fetch_status
        is_placeholder_data = False

        if optimistic and fetch_status == "idle":
            fetch_status = "fetching"

        if data is None and status == "pending" and options.placeholder is not None:
            placeholder = options.placeholder
            value = (
                placeholder(self._previous_data) if callable(placeholder) else placeholder
            )
            if value is not None:
                data = value
                status = "success"
                is_placeholder_data = True

        return QueryResult(
            status=status,
            fetch_status=fetch_status,
            data=data,
            data_updated_at=state.data_updated_at,
            data_update_count=state.data_update_count,
            error=state.error,
            error_updated_at=state.error_updated_at,
            error_update_count=state.error_update_count,
            failure_count=state.failure_count,
            failure_reason=state.failure_reason,
            is_invalidated=state.is_invalidated,
            is_placeholder_data=is_placeholder_data,
            is_stale=self.is_enabled
            and self._query.is_stale_by_time(self.resolve_stale_duration()),
            is_enabled=self.is_enabled,
            is_fetched_after_mount=(
                state.data_update_count > self._mount_counts[0]
                or state.error_update_count > self._mount_counts[1]
            ),
        )

    def _notify_if_changed(self) -> None:
        result = self._create_result()
        if not result.is_placeholder_data and result.data is not None:
            self._previous_data = result.data
        if result == self._result:
            return
        self._result = result
        self._notify_listeners(result)

    def _update_interval(self) -> None:
        self._clear_interval()
        interval = self._resolved.refetch_interval
        if self._disposed or interval is None or not self.is_enabled:
            return
        if isinstance(self.resolve_stale_duration(), StaticDuration):
            return
        delay_ms = parse_duration(interval)
        if delay_ms <= 0:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("refetch_interval_not_scheduled", reason="no running loop")
            return
        self._interval_handle = loop.call_later(delay_ms / 1000, self._on_interval)

    def _on_interval(self) -> None:
        self._interval_handle = None
        self._execute_fetch()
        self._update_interval()

    def _clear_interval(self) -> None:
        if self._interval_handle is not None:
            self._interval_handle.cancel()
            self._interval_handle = None

    def _check_disposed(self) -> None:
        if self._disposed:
            raise ObserverDisposedError("Observer has been disposed")

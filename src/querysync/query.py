"""Query: one cached value and its fetch / retry / cancel state machine."""

from __future__ import annotations

import asyncio
import time
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Generic, TypeVar, assert_never

from querysync.abort import AbortController
from querysync.duration import (
    FiniteDuration,
    InfiniteDuration,
    StaleDuration,
    StaticDuration,
    to_gc_duration,
)
from querysync.errors import MissingQueryFnError, QueryCancelledError
from querysync.keys import QueryKey, hash_key, serialize_key
from querysync.log import get_logger
from querysync.options import QueryOptions
from querysync.removable import Removable
from querysync.retryer import (
    Retryer,
    RetryResolver,
    retry_exponential_backoff,
    retry_never,
)
from querysync.types import QueryFunctionContext, QueryState

if TYPE_CHECKING:
    from querysync.client import QueryClient
    from querysync.query_cache import QueryCache
    from querysync.query_observer import QueryObserver

T = TypeVar("T")

logger = get_logger(__name__)

_DEFAULT_RETRY = retry_exponential_backoff()


def _initial_state(options: QueryOptions[T]) -> QueryState[T]:
    initial = options.initial_data
    data = initial() if callable(initial) else initial
    if data is None:
        return QueryState()
    updated_at = options.initial_data_updated_at
    return QueryState(
        status="success",
        data=data,
        data_updated_at=updated_at if updated_at is not None else int(time.time() * 1000),
    )


def _resolve(future: asyncio.Future[None]) -> None:
    if not future.done():
        future.set_result(None)


def _consume_outcome(task: asyncio.Future[Any]) -> None:
    """Mark a fire-and-forget fetch's exception as retrieved."""
    if not task.cancelled():
        task.exception()


class Query(Removable, Generic[T]):
    """A single cached value identified by its key.

    State only changes through this class's own methods, and every change is
    pushed synchronously to all attached observers.
    """

    def __init__(
        self,
        client: QueryClient,
        cache: QueryCache,
        options: QueryOptions[T],
        state: QueryState[T] | None = None,
    ) -> None:
        self._client = client
        self._cache = cache
        self.options = options
        self.key: QueryKey = options.query_key
        self.query_hash = hash_key(options.query_key)
        self._initial_state: QueryState[T] = (
            state if state is not None else _initial_state(options)
        )
        self._state: QueryState[T] = self._initial_state
        self._observers: list[QueryObserver[Any]] = []
        self._task: asyncio.Task[T] | None = None
        self._settled: asyncio.Future[None] | None = None
        self._retryer: Retryer[T] | None = None
        self._revert_state: QueryState[T] | None = None
        self._waiters: list[asyncio.Future[T]] = []
        self._destroyed = False
        self.set_options(options)
        self.schedule_gc()

    def __repr__(self) -> str:
        return f"Query({serialize_key(self.key)}, status={self._state.status})"

    @property
    def state(self) -> QueryState[T]:
        return self._state

    @property
    def observers(self) -> tuple[QueryObserver[Any], ...]:
        return tuple(self._observers)

    @property
    def has_observers(self) -> bool:
        return bool(self._observers)

    # -------------------------------------------------------------------------
    # Classification
    # -------------------------------------------------------------------------

    def is_active(self) -> bool:
        """True if at least one observer is enabled."""
        return any(observer.is_enabled for observer in self._observers)

    def is_disabled(self) -> bool:
        if self._observers:
            return not self.is_active()
        # Unobserved: disabled until it has ever been fetched
        return (
            self._state.status == "pending"
            and self._state.data_updated_at is None
            and self._state.error_updated_at is None
        )

    def is_static(self) -> bool:
        return any(
            isinstance(observer.resolve_stale_duration(), StaticDuration)
            for observer in self._observers
        )

    def is_stale(self) -> bool:
        enabled = [observer for observer in self._observers if observer.is_enabled]
        if enabled:
            return any(
                self.is_stale_by_time(observer.resolve_stale_duration())
                for observer in enabled
            )
        return self._state.data is None or self._state.is_invalidated

    def is_stale_by_time(self, stale_duration: StaleDuration) -> bool:
        """Whether the data is stale under the given staleness window."""
        state = self._state
        if state.data is None:
            return True
        match stale_duration:
            case StaticDuration():
                return False
            case FiniteDuration() | InfiniteDuration():
                pass
            case _:
                assert_never(stale_duration)
        if state.is_invalidated:
            return True
        match stale_duration:
            case InfiniteDuration():
                return False
            case FiniteDuration(ms=ms):
                if state.data_updated_at is None:
                    return True
                return int(time.time() * 1000) - state.data_updated_at >= ms
        return True

    # -------------------------------------------------------------------------
    # Options
    # -------------------------------------------------------------------------

    def set_options(self, options: QueryOptions[T]) -> None:
        self.options = options
        if options.gc_duration is not None:
            self.update_gc_duration(to_gc_duration(options.gc_duration))

        if self._state.data is None and options.initial_data is not None:
            seeded = _initial_state(options)
            if seeded.data is not None:
                self._initial_state = seeded
                self._set_state(
                    replace(
                        self._state,
                        status="success",
                        data=seeded.data,
                        data_updated_at=seeded.data_updated_at,
                    )
                )

    # -------------------------------------------------------------------------
    # Fetching
    # -------------------------------------------------------------------------

    def fetch(
        self,
        options: QueryOptions[T] | None = None,
        *,
        cancel_refetch: bool = False,
        fetch_meta: dict[str, Any] | None = None,
        retry: RetryResolver | None = None,
    ) -> asyncio.Task[T]:
        """Start a fetch, or join the one in flight.

        Returns the fetch task. Callers that may be cancelled should await it
        through asyncio.shield, since the task is shared. retry overrides the
        query's resolver for this fetch only.
        """
        task = self._task
        if (
            task is not None
            and not task.done()
            and self._state.fetch_status != "idle"
        ):
            if not (cancel_refetch and self._state.data is not None):
                return task
            self.cancel(revert=True, silent=True)

        if options is not None:
            self.set_options(options)

        self._revert_state = self._state
        controller = AbortController()
        context = QueryFunctionContext(
            query_key=self.key,
            client=self._client,
            signal=controller.signal,
            meta=self.options.meta or {},
            fetch_meta=fetch_meta or {},
        )
        query_fn = self.options.query_fn

        async def run_query_fn() -> T:
            if query_fn is None:
                raise MissingQueryFnError(serialize_key(self.key))
            return await query_fn(context)

        retryer: Retryer[T] = Retryer(
            run_query_fn,
            retry=(retry or self.options.retry or _DEFAULT_RETRY)
            if query_fn
            else retry_never,
            controller=controller,
            on_fail=self._on_fail,
            on_pause=lambda: self._set_fetch_status("paused"),
            on_continue=lambda: self._set_fetch_status("fetching"),
            can_fetch=lambda: self._can_fetch(retryer),
        )
        settled: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._retryer = retryer
        self._settled = settled
        self._task = asyncio.ensure_future(self._run(retryer, settled))
        self._task.add_done_callback(_consume_outcome)
        self._task.add_done_callback(lambda _: _resolve(settled))

        logger.debug("fetch_started", key=serialize_key(self.key))
        self._set_state(
            replace(
                self._state,
                fetch_status="fetching" if self._can_fetch(retryer) else "paused",
                failure_count=0,
                failure_reason=None,
            )
        )
        return self._task

    async def _start(self, retryer: Retryer[T], settled: asyncio.Future[None]) -> T:
        try:
            return await retryer.start()
        finally:
            _resolve(settled)

    async def _run(self, retryer: Retryer[T], settled: asyncio.Future[None]) -> T:
        try:
            data = await self._start(retryer, settled)
        except QueryCancelledError as error:
            return await self._resolve_cancelled(retryer, error)
        except Exception as error:
            if self._retryer is retryer:
                now = int(time.time() * 1000)
                self._set_state(
                    replace(
                        self._state,
                        status="error",
                        fetch_status="idle",
                        error=error,
                        error_updated_at=now,
                        error_update_count=self._state.error_update_count + 1,
                        failure_count=self._state.failure_count + 1,
                        failure_reason=error,
                    )
                )
                logger.debug(
                    "fetch_failed", key=serialize_key(self.key), error=repr(error)
                )
                self._settle(error=error)
            raise

        if self._retryer is retryer:
            self._set_state(
                QueryState(
                    status="success",
                    fetch_status="idle",
                    data=data,
                    data_updated_at=int(time.time() * 1000),
                    data_update_count=self._state.data_update_count + 1,
                    error=None,
                    error_updated_at=self._state.error_updated_at,
                    error_update_count=self._state.error_update_count,
                    failure_count=0,
                    failure_reason=None,
                    is_invalidated=False,
                )
            )
            self._settle(data=data)
        return data

    async def _resolve_cancelled(
        self, retryer: Retryer[T], error: QueryCancelledError
    ) -> T:
        logger.debug(
            "fetch_cancelled",
            key=serialize_key(self.key),
            revert=error.revert,
            silent=error.silent,
        )
        if self._retryer is not retryer and self._task is not None:
            # Superseded by a newer fetch: hand its outcome to our callers.
            return await asyncio.shield(self._task)

        if self._state.fetch_status != "idle":
            self._apply_cancelled_state(revert=error.revert)
        self._revert_state = None
        if not self._observers:
            self.schedule_gc()

        if self._state.data is not None:
            return self._state.data
        if error.silent and not self._destroyed:
            waiter: asyncio.Future[T] = asyncio.get_running_loop().create_future()
            self._waiters.append(waiter)
            return await waiter
        raise error

    def _settle(self, *, data: Any = None, error: Exception | None = None) -> None:
        self._revert_state = None
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if waiter.done():
                continue
            if error is not None:
                waiter.set_exception(error)
            else:
                waiter.set_result(data)
        if not self._observers:
            self.schedule_gc()

    def cancel(self, *, revert: bool = True, silent: bool = False) -> asyncio.Future[None]:
        """Abort the in-flight fetch, if any.

        State is reverted (or just marked idle) immediately. The returned
        future resolves once the cancelled attempt has stopped. Safe to call
        repeatedly; only the first call's flags apply.
        """
        done: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        settled, retryer = self._settled, self._retryer
        if settled is None or settled.done() or retryer is None:
            done.set_result(None)
            return done

        if not retryer.controller.is_aborted:
            retryer.cancel(revert=revert, silent=silent)
            self._apply_cancelled_state(revert=revert)

        settled.add_done_callback(lambda _: _resolve(done))
        return done

    def _apply_cancelled_state(self, *, revert: bool) -> None:
        snapshot = self._revert_state
        if revert and snapshot is not None:
            self._set_state(
                replace(
                    snapshot,
                    fetch_status="idle",
                    data_update_count=max(
                        snapshot.data_update_count, self._state.data_update_count
                    ),
                    error_update_count=max(
                        snapshot.error_update_count, self._state.error_update_count
                    ),
                )
            )
        else:
            self._set_fetch_status("idle")

    def continue_fetch(self) -> None:
        """Resume a fetch paused while offline."""
        if self._retryer is not None:
            self._retryer.continue_()

    def _can_fetch(self, retryer: Retryer[T]) -> bool:
        mode = self.options.network_mode or "online"
        match mode:
            case "always":
                return True
            case "online":
                return self._client.is_online
            case "offline_first":
                return self._client.is_online or retryer.failure_count == 0
            case _:
                assert_never(mode)

    def _on_fail(self, failure_count: int, error: Exception) -> None:
        self._set_state(
            replace(self._state, failure_count=failure_count, failure_reason=error)
        )

    def _set_fetch_status(self, fetch_status: Any) -> None:
        if self._state.fetch_status != fetch_status:
            self._set_state(replace(self._state, fetch_status=fetch_status))

    # -------------------------------------------------------------------------
    # Direct state changes
    # -------------------------------------------------------------------------

    def set_data(self, data: T, *, updated_at: int | None = None) -> T:
        """Commit data without fetching."""
        self._set_state(
            replace(
                self._state,
                status="success",
                data=data,
                data_updated_at=(
                    updated_at if updated_at is not None else int(time.time() * 1000)
                ),
                data_update_count=self._state.data_update_count + 1,
                error=None,
                is_invalidated=False,
            )
        )
        return data

    def set_state(self, state: QueryState[T]) -> None:
        self._set_state(state)

    def invalidate(self) -> None:
        """Mark stale regardless of the staleness window. Does not fetch."""
        if not self._state.is_invalidated:
            self._set_state(replace(self._state, is_invalidated=True))

    def reset(self) -> None:
        """Restore the state the query was created with."""
        self._set_state(self._initial_state)

    def _set_state(self, state: QueryState[T]) -> None:
        from querysync.query_cache import QueryCacheEvent

        self._state = state
        for observer in list(self._observers):
            observer.on_query_update()
        self._cache.notify(QueryCacheEvent("updated", self))

    # -------------------------------------------------------------------------
    # Observers and eviction
    # -------------------------------------------------------------------------

    def add_observer(self, observer: QueryObserver[Any]) -> None:
        from querysync.query_cache import QueryCacheEvent

        if observer in self._observers:
            return
        self._observers.append(observer)
        self.cancel_gc()
        self._cache.notify(QueryCacheEvent("observer_added", self, observer))

    def remove_observer(self, observer: QueryObserver[Any]) -> None:
        from querysync.query_cache import QueryCacheEvent

        if observer not in self._observers:
            return
        self._observers.remove(observer)

        if not self._observers:
            retryer = self._retryer
            fetching = self._settled is not None and not self._settled.done()
            # Only abort functions that actually listen to the signal.
            if fetching and retryer is not None and retryer.controller.was_consumed:
                self.cancel(revert=True)
            self.schedule_gc()

        self._cache.notify(QueryCacheEvent("observer_removed", self, observer))

    def try_remove(self) -> None:
        if not self._observers and self._state.fetch_status == "idle":
            logger.debug("query_evicted", key=serialize_key(self.key))
            self._cache.remove(self)

    def destroy(self) -> None:
        super().destroy()
        self._destroyed = True
        settled = self._settled
        if self._retryer is not None and settled is not None and not settled.done():
            self._retryer.cancel(silent=True)
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_exception(QueryCancelledError(revert=False, silent=True))

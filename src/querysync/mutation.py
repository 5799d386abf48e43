"""Mutation: one write operation and its lifecycle hooks."""

from __future__ import annotations

import inspect
import time
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from querysync.duration import to_gc_duration
from querysync.log import get_logger
from querysync.options import MutationOptions
from querysync.removable import Removable
from querysync.retryer import Retryer, retry_never
from querysync.types import MutationFunctionContext, MutationState

if TYPE_CHECKING:
    from querysync.client import QueryClient
    from querysync.mutation_cache import MutationCache
    from querysync.mutation_observer import MutationObserver

T = TypeVar("T")

logger = get_logger(__name__)


async def _call_hook(hook: Any, *args: Any) -> Any:
    """Call a sync or async hook and return its result."""
    result = hook(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class Mutation(Removable, Generic[T]):
    """A single execution of a write operation.

    Mutations are never deduplicated: each one gets its own id from the
    cache that created it.
    """

    def __init__(
        self,
        client: QueryClient,
        cache: MutationCache,
        options: MutationOptions[T],
        mutation_id: int,
        state: MutationState[T] | None = None,
    ) -> None:
        self._client = client
        self._cache = cache
        self.options = options
        self.mutation_id = mutation_id
        self._state: MutationState[T] = state if state is not None else MutationState()
        self._observers: list[MutationObserver[T]] = []
        self._retryer: Retryer[T] | None = None
        if options.gc_duration is not None:
            self.update_gc_duration(to_gc_duration(options.gc_duration))
        self.schedule_gc()

    def __repr__(self) -> str:
        return f"Mutation(id={self.mutation_id}, status={self._state.status})"

    @property
    def state(self) -> MutationState[T]:
        return self._state

    @property
    def observers(self) -> tuple[MutationObserver[T], ...]:
        return tuple(self._observers)

    async def execute(self, variables: Any) -> T:
        """Run the mutation with its hooks.

        Order on success: on_mutate, mutation_fn, on_success, on_settled,
        then the success state is committed. On failure: on_error,
        on_settled, then the error state is committed and the error
        re-raised. A hook that raises on the success path fails the mutation.
        """
        options = self.options
        context = MutationFunctionContext(
            client=self._client,
            meta=options.meta or {},
            mutation_key=options.mutation_key,
        )
        self._retryer = Retryer(
            lambda: options.mutation_fn(variables, context),
            retry=options.retry or retry_never,
            on_fail=self._on_fail,
        )

        self._set_state(
            MutationState(
                status="pending",
                variables=variables,
                submitted_at=int(time.time() * 1000),
            )
        )
        logger.debug("mutation_started", mutation_id=self.mutation_id)

        try:
            if options.on_mutate is not None:
                on_mutate_result = await _call_hook(options.on_mutate, variables, context)
                if on_mutate_result is not self._state.on_mutate_result:
                    self._set_state(
                        replace(self._state, on_mutate_result=on_mutate_result)
                    )

            data = await self._retryer.start()

            on_mutate_result = self._state.on_mutate_result
            if options.on_success is not None:
                await _call_hook(
                    options.on_success, data, variables, on_mutate_result, context
                )
            if options.on_settled is not None:
                await _call_hook(
                    options.on_settled, data, None, variables, on_mutate_result, context
                )
        except Exception as error:
            try:
                await self._run_error_hooks(error, variables, context)
            finally:
                self._set_state(
                    replace(
                        self._state,
                        status="error",
                        data=None,
                        error=error,
                        failure_count=self._state.failure_count + 1,
                        failure_reason=error,
                        is_paused=False,
                    )
                )
                logger.debug(
                    "mutation_failed", mutation_id=self.mutation_id, error=repr(error)
                )
            raise

        self._set_state(
            replace(
                self._state,
                status="success",
                data=data,
                error=None,
                failure_count=0,
                failure_reason=None,
                is_paused=False,
            )
        )
        return data

    async def _run_error_hooks(
        self, error: Exception, variables: Any, context: MutationFunctionContext
    ) -> None:
        # A failing hook here must not mask the original error.
        on_mutate_result = self._state.on_mutate_result
        if self.options.on_error is not None:
            try:
                await _call_hook(
                    self.options.on_error, error, variables, on_mutate_result, context
                )
            except Exception:
                logger.exception("mutation_hook_failed", hook="on_error")
        if self.options.on_settled is not None:
            try:
                await _call_hook(
                    self.options.on_settled,
                    None,
                    error,
                    variables,
                    on_mutate_result,
                    context,
                )
            except Exception:
                logger.exception("mutation_hook_failed", hook="on_settled")

    def _on_fail(self, failure_count: int, error: Exception) -> None:
        self._set_state(
            replace(self._state, failure_count=failure_count, failure_reason=error)
        )

    def _set_state(self, state: MutationState[T]) -> None:
        from querysync.mutation_cache import MutationCacheEvent

        if state == self._state:
            return
        self._state = state
        for observer in list(self._observers):
            observer.on_mutation_update(self)
        self._cache.notify(MutationCacheEvent("updated", self))

    def add_observer(self, observer: MutationObserver[T]) -> None:
        from querysync.mutation_cache import MutationCacheEvent

        if observer in self._observers:
            return
        self._observers.append(observer)
        self.cancel_gc()
        self._cache.notify(MutationCacheEvent("observer_added", self, observer))

    def remove_observer(self, observer: MutationObserver[T]) -> None:
        from querysync.mutation_cache import MutationCacheEvent

        if observer not in self._observers:
            return
        self._observers.remove(observer)
        self.schedule_gc()
        self._cache.notify(MutationCacheEvent("observer_removed", self, observer))

    def try_remove(self) -> None:
        if self._observers:
            return
        if self._state.status == "pending":
            self.schedule_gc()
            return
        logger.debug("mutation_evicted", mutation_id=self.mutation_id)
        self._cache.remove(self)

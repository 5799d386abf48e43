"""MutationObserver - a subscriber's handle for running mutations."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from querysync.errors import ObserverDisposedError
from querysync.log import get_logger
from querysync.mutation import Mutation
from querysync.options import MutationOptions
from querysync.subscribable import Subscribable
from querysync.types import MutationState, MutationStatus

if TYPE_CHECKING:
    from querysync.client import QueryClient

T = TypeVar("T")

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class MutationResult(Generic[T]):
    """What a mutation observer exposes to its subscribers."""

    status: MutationStatus = "idle"
    data: T | None = None
    error: Exception | None = None
    variables: Any = None
    submitted_at: int | None = None
    failure_count: int = 0
    failure_reason: Exception | None = None
    is_paused: bool = False

    @classmethod
    def from_state(cls, state: MutationState[T]) -> MutationResult[T]:
        return cls(
            status=state.status,
            data=state.data,
            error=state.error,
            variables=state.variables,
            submitted_at=state.submitted_at,
            failure_count=state.failure_count,
            failure_reason=state.failure_reason,
            is_paused=state.is_paused,
        )

    @property
    def is_idle(self) -> bool:
        return self.status == "idle"

    @property
    def is_pending(self) -> bool:
        return self.status == "pending"

    @property
    def is_success(self) -> bool:
        return self.status == "success"

    @property
    def is_error(self) -> bool:
        return self.status == "error"


def _log_failure(task: asyncio.Future[Any]) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.warning("mutation_failed", error=repr(error))


class MutationObserver(Subscribable[MutationResult[T]], Generic[T]):
    """Runs mutations and reports the latest one's state.

    Usage:
        observer = MutationObserver(client, MutationOptions(add_todo))
        observer.subscribe(lambda result: print(result.status))
        todo = await observer.mutate_async({"title": "Write docs"})
    """

    def __init__(self, client: QueryClient, options: MutationOptions[T]) -> None:
        super().__init__()
        self._client = client
        self._options = client.default_mutation_options(options)
        self._mutation: Mutation[T] | None = None
        self._result: MutationResult[T] = MutationResult()
        self._disposed = False

    @property
    def options(self) -> MutationOptions[T]:
        return self._options

    @options.setter
    def options(self, options: MutationOptions[T]) -> None:
        self._check_disposed()
        self._options = self._client.default_mutation_options(options)

    @property
    def result(self) -> MutationResult[T]:
        return self._result

    @property
    def mutation(self) -> Mutation[T] | None:
        return self._mutation

    def subscribe(
        self, listener: Callable[[MutationResult[T]], None]
    ) -> Callable[[], None]:
        self._check_disposed()
        return super().subscribe(listener)

    def mutate(self, variables: Any) -> asyncio.Task[T]:
        """Fire and forget. Failures are logged and kept in the result."""
        task = asyncio.ensure_future(self.mutate_async(variables))
        task.add_done_callback(_log_failure)
        return task

    async def mutate_async(self, variables: Any) -> T:
        """Run a new mutation and return its data, raising its error."""
        self._check_disposed()
        if self._mutation is not None:
            self._mutation.remove_observer(self)
        mutation = self._client.mutation_cache.build(self._client, self._options)
        self._mutation = mutation
        mutation.add_observer(self)
        return await mutation.execute(variables)

    def reset(self) -> None:
        """Detach from the current mutation and go back to idle."""
        if self._mutation is not None:
            self._mutation.remove_observer(self)
            self._mutation = None
        self._set_result(MutationResult())

    def on_mutation_update(self, mutation: Mutation[T]) -> None:
        if mutation is self._mutation:
            self._set_result(MutationResult.from_state(mutation.state))

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._listeners.clear()
        if self._mutation is not None:
            self._mutation.remove_observer(self)

    def _set_result(self, result: MutationResult[T]) -> None:
        if result == self._result:
            return
        self._result = result
        self._notify_listeners(result)

    def _check_disposed(self) -> None:
        if self._disposed:
            raise ObserverDisposedError("Observer has been disposed")

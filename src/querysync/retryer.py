"""Retry engine and retry resolvers."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

from querysync.abort import AbortController
from querysync.duration import Duration, parse_duration
from querysync.errors import QueryCancelledError
from querysync.log import get_logger

T = TypeVar("T")

logger = get_logger(__name__)

# (failure_count, error) -> delay before the next attempt, or None to stop
RetryResolver = Callable[[int, Exception], Duration | None]


def retry_never(failure_count: int, error: Exception) -> None:
    """Never retry. Default for mutations."""
    return None


def exponential_backoff_delay(
    failure_count: int,
    *,
    base_delay: int = 1000,
    max_delay: int = 30_000,
) -> int:
    """Delay in ms after the given (1-indexed) failure: base * 2^(n-1), capped."""
    return min(base_delay * 2 ** max(failure_count - 1, 0), max_delay)


def retry_exponential_backoff(
    max_retries: int = 3,
    base_delay: Duration = "1s",
    max_delay: Duration = "30s",
) -> RetryResolver:
    """Build a resolver retrying up to max_retries times with exponential backoff.

    Example:
        retry = retry_exponential_backoff(max_retries=5)
        retry(1, err)  # 1000
        retry(6, err)  # None
    """
    if max_retries < 0:
        raise ValueError("max_retries must be >= 0")
    base = parse_duration(base_delay)
    cap = parse_duration(max_delay)

    def resolve(failure_count: int, error: Exception) -> int | None:
        if failure_count > max_retries:
            return None
        return exponential_backoff_delay(
            failure_count, base_delay=base, max_delay=cap
        )

    return resolve


def _discard_result(task: asyncio.Future[object]) -> None:
    """Retrieve a withheld attempt's outcome so asyncio does not warn about it."""
    if not task.cancelled() and task.exception() is not None:
        logger.debug("discarded_attempt_failed", error=repr(task.exception()))


class Retryer(Generic[T]):
    """Run an async operation, retrying failures as the resolver decides.

    The retryer knows nothing about queries or caches. Cancellation through
    its AbortController interrupts a running attempt (whose result is then
    withheld), a pending delay, a pause, or an attempt not yet started.
    """

    def __init__(
        self,
        fn: Callable[[], Awaitable[T]],
        *,
        retry: RetryResolver,
        controller: AbortController | None = None,
        on_fail: Callable[[int, Exception], None] | None = None,
        on_pause: Callable[[], None] | None = None,
        on_continue: Callable[[], None] | None = None,
        can_fetch: Callable[[], bool] | None = None,
    ) -> None:
        self._fn = fn
        self._retry = retry
        self._controller = controller if controller is not None else AbortController()
        self._on_fail = on_fail
        self._on_pause = on_pause
        self._on_continue = on_continue
        self._can_fetch = can_fetch
        self._failure_count = 0
        self._continue_event: asyncio.Event | None = None

    @property
    def controller(self) -> AbortController:
        return self._controller

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def is_paused(self) -> bool:
        return self._continue_event is not None

    def cancel(self, *, revert: bool = True, silent: bool = False) -> None:
        self._controller.abort(revert=revert, silent=silent)

    def continue_(self) -> None:
        """Resume a paused retryer."""
        if self._continue_event is not None:
            self._continue_event.set()

    async def start(self) -> T:
        while True:
            self._raise_if_aborted()
            if self._can_fetch is not None and not self._can_fetch():
                await self._pause()

            try:
                return await self._attempt()
            except QueryCancelledError:
                raise
            except Exception as error:
                if self._controller.is_aborted:
                    raise self._controller.error() from error

                self._failure_count += 1
                delay = self._retry(self._failure_count, error)
                if delay is None:
                    raise

                delay_ms = parse_duration(delay)
                logger.debug(
                    "retry_scheduled",
                    failure_count=self._failure_count,
                    delay_ms=delay_ms,
                    error=repr(error),
                )
                if self._on_fail is not None:
                    self._on_fail(self._failure_count, error)
                await self._sleep(delay_ms)

    async def _attempt(self) -> T:
        attempt = asyncio.ensure_future(self._fn())
        try:
            await asyncio.wait(
                {attempt, self._controller.future},
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            attempt.cancel()
            raise

        if self._controller.is_aborted:
            # The function may ignore the signal; its result is withheld.
            attempt.add_done_callback(_discard_result)
            raise self._controller.error()
        return attempt.result()

    async def _sleep(self, delay_ms: int) -> None:
        await asyncio.wait({self._controller.future}, timeout=delay_ms / 1000)
        self._raise_if_aborted()

    async def _pause(self) -> None:
        self._continue_event = asyncio.Event()
        if self._on_pause is not None:
            self._on_pause()
        waiter = asyncio.ensure_future(self._continue_event.wait())
        try:
            await asyncio.wait(
                {waiter, self._controller.future},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            waiter.cancel()
            self._continue_event = None

        self._raise_if_aborted()
        if self._on_continue is not None:
            self._on_continue()

    def _raise_if_aborted(self) -> None:
        if self._controller.is_aborted:
            raise self._controller.error()

"""Eviction timer shared by queries and mutations."""

import asyncio
from abc import ABC, abstractmethod
from typing import assert_never

from querysync.duration import (
    FiniteDuration,
    GcDuration,
    InfiniteDuration,
    max_gc_duration,
)
from querysync.log import get_logger

DEFAULT_GC_DURATION = FiniteDuration(5 * 60_000)

logger = get_logger(__name__)


class Removable(ABC):
    """Arms a one-shot timer that calls try_remove() after an idle period.

    The first requested grace period is taken as-is; later requests can only
    lengthen it. Entities that never request one use DEFAULT_GC_DURATION.
    """

    _gc_duration: GcDuration | None = None
    _gc_handle: asyncio.TimerHandle | None = None

    @property
    def gc_duration(self) -> GcDuration:
        if self._gc_duration is None:
            return DEFAULT_GC_DURATION
        return self._gc_duration

    def update_gc_duration(self, duration: GcDuration) -> None:
        if self._gc_duration is None:
            self._gc_duration = duration
        else:
            self._gc_duration = max_gc_duration(self._gc_duration, duration)

    def schedule_gc(self) -> None:
        self.cancel_gc()
        duration = self.gc_duration
        match duration:
            case InfiniteDuration():
                return
            case FiniteDuration(ms=ms):
                try:
                    loop = asyncio.get_running_loop()
                except RuntimeError:
                    # Outside a loop; the next observer detach re-arms the timer.
                    logger.debug("gc_not_scheduled", reason="no running loop")
                    return
                self._gc_handle = loop.call_later(ms / 1000, self._on_gc_timer)
            case _:
                assert_never(duration)

    def cancel_gc(self) -> None:
        if self._gc_handle is not None:
            self._gc_handle.cancel()
            self._gc_handle = None

    @property
    def is_gc_scheduled(self) -> bool:
        return self._gc_handle is not None

    def destroy(self) -> None:
        self.cancel_gc()

    def _on_gc_timer(self) -> None:
        self._gc_handle = None
        self.try_remove()

    @abstractmethod
    def try_remove(self) -> None:
        """Remove the entity from its store if it is safe to do so."""

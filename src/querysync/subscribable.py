"""Listener registry shared by stores and observers."""

from collections.abc import Callable
from typing import Generic, TypeVar

E = TypeVar("E")


class Subscribable(Generic[E]):
    """Holds listeners and notifies them over a snapshot.

    A listener may unsubscribe itself (or others) while being notified.
    """

    def __init__(self) -> None:
        self._listeners: list[Callable[[E], None]] = []

    @property
    def has_listeners(self) -> bool:
        return bool(self._listeners)

    def subscribe(self, listener: Callable[[E], None]) -> Callable[[], None]:
        """Register a listener. Returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify_listeners(self, event: E) -> None:
        for listener in list(self._listeners):
            if listener in self._listeners:
                listener(event)

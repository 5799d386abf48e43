"""MutationCache - the store of Mutation entities."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, TypeVar

from querysync.keys import QueryKey, matches_key
from querysync.mutation import Mutation
from querysync.options import MutationOptions
from querysync.subscribable import Subscribable
from querysync.types import MutationState, MutationStatus

if TYPE_CHECKING:
    from querysync.client import QueryClient
    from querysync.mutation_observer import MutationObserver

T = TypeVar("T")

MutationCacheEventType = Literal[
    "added", "removed", "updated", "observer_added", "observer_removed"
]


@dataclass(frozen=True, slots=True)
class MutationCacheEvent:
    """A change in the mutation cache."""

    type: MutationCacheEventType
    mutation: Mutation[Any]
    observer: MutationObserver[Any] | None = None


class MutationCache(Subscribable[MutationCacheEvent]):
    """Owns every Mutation of one client, in creation order."""

    def __init__(self) -> None:
        super().__init__()
        self._mutations: dict[int, Mutation[Any]] = {}
        self._next_id = 0

    def __len__(self) -> int:
        return len(self._mutations)

    def build(
        self,
        client: QueryClient,
        options: MutationOptions[T],
        state: MutationState[T] | None = None,
    ) -> Mutation[T]:
        """Create and add a new mutation. Mutations are never shared."""
        self._next_id += 1
        mutation = Mutation(
            client,
            self,
            client.default_mutation_options(options),
            self._next_id,
            state,
        )
        self.add(mutation)
        return mutation

    def add(self, mutation: Mutation[Any]) -> None:
        if mutation.mutation_id in self._mutations:
            return
        self._mutations[mutation.mutation_id] = mutation
        self.notify(MutationCacheEvent("added", mutation))

    def remove(self, mutation: Mutation[Any]) -> None:
        if self._mutations.get(mutation.mutation_id) is not mutation:
            return
        del self._mutations[mutation.mutation_id]
        mutation.destroy()
        self.notify(MutationCacheEvent("removed", mutation))

    def get_all(self) -> list[Mutation[Any]]:
        return list(self._mutations.values())

    def find(
        self,
        mutation_key: QueryKey | None = None,
        *,
        exact: bool = True,
        predicate: Callable[[Mutation[Any]], bool] | None = None,
        status: MutationStatus | None = None,
    ) -> Mutation[Any] | None:
        matches = self.find_all(
            mutation_key, exact=exact, predicate=predicate, status=status
        )
        return matches[0] if matches else None

    def find_all(
        self,
        mutation_key: QueryKey | None = None,
        *,
        exact: bool = False,
        predicate: Callable[[Mutation[Any]], bool] | None = None,
        status: MutationStatus | None = None,
    ) -> list[Mutation[Any]]:
        """Mutations matching the filters.

        A mutation without a key never matches a key filter.
        """
        result = []
        for mutation in list(self._mutations.values()):
            if mutation_key is not None:
                key = mutation.options.mutation_key
                if key is None or not matches_key(key, mutation_key, exact=exact):
                    continue
            if status is not None and mutation.state.status != status:
                continue
            if predicate is not None and not predicate(mutation):
                continue
            result.append(mutation)
        return result

    def clear(self) -> None:
        for mutation in list(self._mutations.values()):
            self.remove(mutation)

    def notify(self, event: MutationCacheEvent) -> None:
        self._notify_listeners(event)

"""Tests for MutationObserver."""

import asyncio

import pytest

from querysync import (
    MutationObserver,
    MutationOptions,
    MutationResult,
    ObserverDisposedError,
    QueryClient,
)
from querysync.types import MutationFunctionContext


async def _double(variables: int, ctx: MutationFunctionContext) -> int:
    return variables * 2


async def _fail(variables: int, ctx: MutationFunctionContext) -> int:
    raise RuntimeError("nope")


class TestMutationObserver:
    """Tests for MutationObserver."""

    async def test_mutate_async(self, client: QueryClient) -> None:
        """Test that mutate_async returns data and updates the result."""
        observer = MutationObserver(client, MutationOptions(_double))
        assert observer.result.is_idle

        assert await observer.mutate_async(21) == 42
        assert observer.result.is_success
        assert observer.result.data == 42
        assert observer.result.variables == 21

    async def test_mutate_async_raises(self, client: QueryClient) -> None:
        """Test that mutate_async raises the mutation error."""
        observer = MutationObserver(client, MutationOptions(_fail))
        with pytest.raises(RuntimeError, match="nope"):
            await observer.mutate_async(1)
        assert observer.result.is_error
        assert isinstance(observer.result.error, RuntimeError)

    async def test_mutate_is_fire_and_forget(self, client: QueryClient) -> None:
        """Test that mutate() never raises and keeps the error in the result."""
        observer = MutationObserver(client, MutationOptions(_fail))
        task = observer.mutate(1)
        await asyncio.wait({task})
        assert observer.result.is_error
        assert observer.result.failure_count == 1

    async def test_listener_sees_transitions(self, client: QueryClient) -> None:
        """Test that subscribers see pending then success."""
        observer = MutationObserver(client, MutationOptions(_double))
        results: list[MutationResult] = []
        observer.subscribe(results.append)

        await observer.mutate_async(1)
        assert [r.status for r in results] == ["pending", "success"]

    async def test_each_mutate_creates_a_mutation(self, client: QueryClient) -> None:
        """Test that every call runs a new mutation and tracks the latest."""
        observer = MutationObserver(client, MutationOptions(_double))
        await observer.mutate_async(1)
        first = observer.mutation
        await observer.mutate_async(2)

        assert observer.mutation is not first
        assert len(client.mutation_cache.get_all()) == 2
        assert observer.result.data == 4

    async def test_reset(self, client: QueryClient) -> None:
        """Test that reset returns to idle."""
        observer = MutationObserver(client, MutationOptions(_double))
        await observer.mutate_async(1)
        observer.reset()
        assert observer.result == MutationResult()
        assert observer.mutation is None

    async def test_dispose(self, client: QueryClient) -> None:
        """Test that a disposed observer refuses new work."""
        observer = MutationObserver(client, MutationOptions(_double))
        observer.dispose()
        with pytest.raises(ObserverDisposedError):
            await observer.mutate_async(1)
        with pytest.raises(ObserverDisposedError):
            observer.subscribe(lambda result: None)

    async def test_uses_client_defaults(self) -> None:
        """Test that the observer fills options from client defaults."""
        from querysync import DefaultMutationOptions

        client = QueryClient(
            default_mutation_options=DefaultMutationOptions(gc_duration="1h")
        )
        observer = MutationObserver(client, MutationOptions(_double))
        assert observer.options.gc_duration == "1h"

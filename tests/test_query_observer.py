"""Tests for QueryObserver."""

import asyncio

import pytest

from querysync import (
    STATIC,
    ObserverDisposedError,
    QueryClient,
    QueryObserver,
    QueryOptions,
    QueryResult,
    retry_never,
)
from querysync.types import QueryFunctionContext


def _counting_fetch(value: str = "data"):
    calls = {"count": 0}

    async def fetch(ctx: QueryFunctionContext) -> str:
        calls["count"] += 1
        return value

    return fetch, calls


class TestMount:
    """Tests for observer creation."""

    async def test_fetches_on_mount(self, client: QueryClient) -> None:
        """Test that a new observer fetches and reports the data."""
        fetch, calls = _counting_fetch()
        observer = QueryObserver(client, QueryOptions(["a"], query_fn=fetch))

        assert observer.result.is_loading
        await asyncio.sleep(0.01)
        assert observer.result.is_success
        assert observer.result.data == "data"
        assert observer.result.is_fetched_after_mount
        assert calls["count"] == 1
        observer.dispose()

    async def test_optimistic_result_when_fetching_on_mount(
        self, client: QueryClient
    ) -> None:
        """Test that the initial result already reports fetching."""
        fetch, _ = _counting_fetch()
        observer = QueryObserver(client, QueryOptions(["a"], query_fn=fetch))
        assert observer.result.fetch_status == "fetching"
        assert observer.result.status == "pending"
        observer.dispose()

    async def test_disabled_does_not_fetch(self, client: QueryClient) -> None:
        """Test that a disabled observer never fetches on its own."""
        fetch, calls = _counting_fetch()
        observer = QueryObserver(
            client, QueryOptions(["a"], query_fn=fetch, enabled=False)
        )
        await asyncio.sleep(0.01)
        assert calls["count"] == 0
        assert observer.result.fetch_status == "idle"
        assert not observer.result.is_stale
        observer.dispose()

    async def test_fresh_data_is_not_refetched(self, client: QueryClient) -> None:
        """Test that a second observer reuses fresh data."""
        fetch, calls = _counting_fetch()
        options = QueryOptions(["a"], query_fn=fetch, stale_duration="1m")
        first = QueryObserver(client, options)
        await asyncio.sleep(0.01)
        second = QueryObserver(client, options)
        await asyncio.sleep(0.01)

        assert calls["count"] == 1
        assert second.result.data == "data"
        assert not second.result.is_fetched_after_mount
        first.dispose()
        second.dispose()

    async def test_stale_data_is_refetched(self, client: QueryClient) -> None:
        """Test that a second observer refetches stale data."""
        fetch, calls = _counting_fetch()
        first = QueryObserver(client, QueryOptions(["a"], query_fn=fetch))
        await asyncio.sleep(0.01)
        second = QueryObserver(client, QueryOptions(["a"], query_fn=fetch))
        await asyncio.sleep(0.01)
        assert calls["count"] == 2
        first.dispose()
        second.dispose()

    async def test_refetch_on_mount_policies(self, client: QueryClient) -> None:
        """Test never and always mount policies."""
        fetch, calls = _counting_fetch()
        client.set_query_data(["a"], "seed")

        never = QueryObserver(
            client, QueryOptions(["a"], query_fn=fetch, refetch_on_mount="never")
        )
        await asyncio.sleep(0.01)
        assert calls["count"] == 0

        always = QueryObserver(
            client,
            QueryOptions(
                ["a"], query_fn=fetch, stale_duration="1h", refetch_on_mount="always"
            ),
        )
        await asyncio.sleep(0.01)
        assert calls["count"] == 1
        never.dispose()
        always.dispose()

    async def test_static_data_never_refetched(self, client: QueryClient) -> None:
        """Test that static data is not refetched even with refetch_on_mount=always."""
        fetch, calls = _counting_fetch()
        client.set_query_data(["a"], "seed")
        observer = QueryObserver(
            client,
            QueryOptions(
                ["a"], query_fn=fetch, stale_duration=STATIC, refetch_on_mount="always"
            ),
        )
        await asyncio.sleep(0.01)
        assert calls["count"] == 0
        assert not observer.result.is_stale
        observer.dispose()

    async def test_stale_duration_callable(self, client: QueryClient) -> None:
        """Test that stale_duration may be computed from the query."""
        fetch, calls = _counting_fetch()
        client.set_query_data(["a"], "seed")
        observer = QueryObserver(
            client,
            QueryOptions(["a"], query_fn=fetch, stale_duration=lambda query: "1h"),
        )
        await asyncio.sleep(0.01)
        assert calls["count"] == 0
        observer.dispose()


class TestNotifications:
    """Tests for listener notifications."""

    async def test_listener_receives_transitions(self, client: QueryClient) -> None:
        """Test that subscribers see fetching then success."""
        fetch, _ = _counting_fetch()
        observer = QueryObserver(
            client, QueryOptions(["a"], query_fn=fetch, enabled=False)
        )
        results: list[QueryResult] = []
        observer.subscribe(results.append)

        await observer.refetch()
        statuses = [(r.status, r.fetch_status) for r in results]
        assert statuses == [("pending", "fetching"), ("success", "idle")]
        observer.dispose()

    async def test_observers_share_query_state(self, client: QueryClient) -> None:
        """Test that all observers of a key see the same data."""
        fetch, _ = _counting_fetch()
        a = QueryObserver(client, QueryOptions(["a"], query_fn=fetch))
        b = QueryObserver(client, QueryOptions(["a"], query_fn=fetch))
        await asyncio.sleep(0.01)
        assert a.query is b.query
        assert a.result.data == b.result.data == "data"
        a.dispose()
        b.dispose()

    async def test_unsubscribe(self, client: QueryClient) -> None:
        """Test that an unsubscribed listener is not called."""
        fetch, _ = _counting_fetch()
        observer = QueryObserver(
            client, QueryOptions(["a"], query_fn=fetch, enabled=False)
        )
        results: list[QueryResult] = []
        unsubscribe = observer.subscribe(results.append)
        unsubscribe()
        await observer.refetch()
        assert results == []
        observer.dispose()


class TestOptionsChange:
    """Tests for changing observer options."""

    async def test_key_change_switches_query(self, client: QueryClient) -> None:
        """Test that a new key detaches and attaches to the new query."""

        async def fetch(ctx: QueryFunctionContext) -> str:
            return f"todo-{ctx.query_key[1]}"

        observer = QueryObserver(client, QueryOptions(["todo", 1], query_fn=fetch))
        await asyncio.sleep(0.01)
        old_query = observer.query

        observer.options = QueryOptions(["todo", 2], query_fn=fetch)
        await asyncio.sleep(0.01)

        assert observer.query is not old_query
        assert observer.result.data == "todo-2"
        assert not old_query.has_observers
        observer.dispose()

    async def test_enabling_triggers_fetch(self, client: QueryClient) -> None:
        """Test that flipping enabled to True fetches."""
        fetch, calls = _counting_fetch()
        observer = QueryObserver(
            client, QueryOptions(["a"], query_fn=fetch, enabled=False)
        )
        observer.options = QueryOptions(["a"], query_fn=fetch, enabled=True)
        await asyncio.sleep(0.01)
        assert calls["count"] == 1
        assert observer.result.data == "data"
        observer.dispose()

    async def test_placeholder_data(self, client: QueryClient) -> None:
        """Test that placeholder data is reported as success while pending."""
        observer = QueryObserver(
            client,
            QueryOptions(["a"], enabled=False, placeholder=["placeholder"]),
        )
        assert observer.result.status == "success"
        assert observer.result.data == ["placeholder"]
        assert observer.result.is_placeholder_data
        observer.dispose()

    async def test_placeholder_receives_previous_data(self, client: QueryClient) -> None:
        """Test that a placeholder callable gets the previous key's data."""

        async def fetch(ctx: QueryFunctionContext) -> int:
            await asyncio.sleep(0.01)
            return ctx.query_key[1]

        options = QueryOptions(["page", 1], query_fn=fetch, placeholder=lambda prev: prev)
        observer = QueryObserver(client, options)
        await asyncio.sleep(0.05)
        assert observer.result.data == 1

        observer.options = QueryOptions(
            ["page", 2], query_fn=fetch, placeholder=lambda prev: prev
        )
        assert observer.result.data == 1
        assert observer.result.is_placeholder_data

        await asyncio.sleep(0.05)
        assert observer.result.data == 2
        assert not observer.result.is_placeholder_data
        observer.dispose()


class TestRefetch:
    """Tests for refetch, resume and reconnect."""

    async def test_refetch_throw_on_error(self, client: QueryClient) -> None:
        """Test that refetch raises only when asked to."""

        async def fetch(ctx: QueryFunctionContext) -> str:
            raise RuntimeError("boom")

        observer = QueryObserver(
            client,
            QueryOptions(["a"], query_fn=fetch, enabled=False, retry=retry_never),
        )
        result = await observer.refetch()
        assert result.is_error
        assert result.is_loading_error

        with pytest.raises(RuntimeError, match="boom"):
            await observer.refetch(throw_on_error=True)
        observer.dispose()

    async def test_resume_refetches_stale(self, client: QueryClient) -> None:
        """Test that client.resume() refetches stale observed queries."""
        fetch, calls = _counting_fetch()
        observer = QueryObserver(client, QueryOptions(["a"], query_fn=fetch))
        await asyncio.sleep(0.01)
        client.resume()
        await asyncio.sleep(0.01)
        assert calls["count"] == 2
        observer.dispose()

    async def test_resume_respects_never(self, client: QueryClient) -> None:
        """Test that refetch_on_resume=never is honoured."""
        fetch, calls = _counting_fetch()
        observer = QueryObserver(
            client, QueryOptions(["a"], query_fn=fetch, refetch_on_resume="never")
        )
        await asyncio.sleep(0.01)
        client.resume()
        await asyncio.sleep(0.01)
        assert calls["count"] == 1
        observer.dispose()

    async def test_refetch_interval(self, client: QueryClient) -> None:
        """Test that refetch_interval refetches periodically until disposed."""
        fetch, calls = _counting_fetch()
        observer = QueryObserver(
            client, QueryOptions(["a"], query_fn=fetch, refetch_interval=20)
        )
        await asyncio.sleep(0.11)
        observer.dispose()
        count = calls["count"]
        assert count >= 3

        await asyncio.sleep(0.05)
        assert calls["count"] == count


class TestDispose:
    """Tests for dispose."""

    async def test_use_after_dispose_raises(self, client: QueryClient) -> None:
        """Test that a disposed observer rejects subscriptions and refetches."""
        fetch, _ = _counting_fetch()
        observer = QueryObserver(client, QueryOptions(["a"], query_fn=fetch))
        observer.dispose()
        observer.dispose()

        with pytest.raises(ObserverDisposedError):
            observer.subscribe(lambda result: None)
        with pytest.raises(ObserverDisposedError):
            await observer.refetch()

    async def test_last_observer_leaving_cancels_consumed_fetch(
        self, client: QueryClient
    ) -> None:
        """Test that detaching the last observer aborts a cancellable fetch."""
        aborted = asyncio.Event()

        async def fetch(ctx: QueryFunctionContext) -> str:
            await ctx.signal.wait()
            aborted.set()
            return "never"

        observer = QueryObserver(client, QueryOptions(["a"], query_fn=fetch))
        await asyncio.sleep(0.01)
        query = observer.query
        observer.dispose()

        await asyncio.wait_for(aborted.wait(), timeout=1)
        assert query.state.fetch_status == "idle"
        assert query.state.status == "pending"

    async def test_last_observer_leaving_keeps_unconsumed_fetch(
        self, client: QueryClient
    ) -> None:
        """Test that a fetch not listening to the signal runs to completion."""

        async def fetch(ctx: QueryFunctionContext) -> str:
            await asyncio.sleep(0.02)
            return "done"

        observer = QueryObserver(client, QueryOptions(["a"], query_fn=fetch))
        query = observer.query
        observer.dispose()
        await asyncio.sleep(0.05)
        assert query.state.data == "done"

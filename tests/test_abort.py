"""Tests for the cancellation token."""

import asyncio

import pytest

from querysync import QueryCancelledError
from querysync.abort import AbortController


class TestAbortController:
    """Tests for AbortController and AbortSignal."""

    async def test_abort_sets_flag(self) -> None:
        """Test that aborting is visible through the signal."""
        controller = AbortController()
        assert not controller.is_aborted
        controller.abort()
        assert controller.is_aborted
        assert controller.signal.aborted

    async def test_reading_signal_marks_consumed(self) -> None:
        """Test that only reading the signal marks it consumed."""
        controller = AbortController()
        assert not controller.was_consumed
        _ = controller.future
        assert not controller.was_consumed
        _ = controller.signal.aborted
        assert controller.was_consumed

    async def test_first_flags_win(self) -> None:
        """Test that repeated aborts keep the first flags."""
        controller = AbortController()
        controller.abort(revert=False, silent=True)
        controller.abort(revert=True, silent=False)
        error = controller.error()
        assert error.revert is False
        assert error.silent is True

    async def test_raise_if_aborted(self) -> None:
        """Test that raise_if_aborted raises QueryCancelledError."""
        controller = AbortController()
        controller.signal.raise_if_aborted()
        controller.abort()
        with pytest.raises(QueryCancelledError):
            controller.signal.raise_if_aborted()

    async def test_wait_returns_on_abort(self) -> None:
        """Test that wait() unblocks when aborted."""
        controller = AbortController()
        waiter = asyncio.ensure_future(controller.signal.wait())
        await asyncio.sleep(0)
        assert not waiter.done()
        controller.abort()
        await asyncio.wait_for(waiter, timeout=1)

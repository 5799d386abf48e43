"""Cooperative cancellation token passed to query functions."""

from __future__ import annotations

import asyncio

from querysync.errors import QueryCancelledError


class AbortSignal:
    """Read-only view of an AbortController handed to query functions.

    Reading any of the public members marks the signal as consumed, which
    tells the query that its function supports cancellation.

    Usage:
        async def fetch_todos(ctx: QueryFunctionContext) -> list[Todo]:
            async with asyncio.timeout(10):
                resp = await http.get("/todos")
            ctx.signal.raise_if_aborted()
            return resp.json()
    """

    __slots__ = ("_controller",)

    def __init__(self, controller: AbortController) -> None:
        self._controller = controller

    @property
    def aborted(self) -> bool:
        self._controller._consumed = True
        return self._controller._aborted

    async def wait(self) -> None:
        """Block until the signal is aborted."""
        self._controller._consumed = True
        await asyncio.shield(self._controller._future)

    def raise_if_aborted(self) -> None:
        if self.aborted:
            raise self._controller.error()


class AbortController:
    """Owns one fetch attempt's cancellation state."""

    def __init__(self) -> None:
        self._future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._aborted = False
        self._consumed = False
        self._revert = True
        self._silent = False
        self.signal = AbortSignal(self)

    @property
    def is_aborted(self) -> bool:
        return self._aborted

    @property
    def was_consumed(self) -> bool:
        return self._consumed

    @property
    def future(self) -> asyncio.Future[None]:
        """Resolves on abort. Engine-side; does not mark the signal consumed."""
        return self._future

    def abort(self, *, revert: bool = True, silent: bool = False) -> None:
        """Abort once; later calls keep the first flags."""
        if self._aborted:
            return
        self._aborted = True
        self._revert = revert
        self._silent = silent
        if not self._future.done():
            self._future.set_result(None)

    def error(self) -> QueryCancelledError:
        return QueryCancelledError(revert=self._revert, silent=self._silent)

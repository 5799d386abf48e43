"""Infinite (paginated) queries.

An infinite query is a regular Query whose data is an InfiniteData and whose
query function is a wrapper that fetches one page at a time:

- with a direction (fetch_next_page / fetch_previous_page) and existing
  pages, it fetches one page and appends or prepends it;
- otherwise it re-fetches every held page from the first param.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, fields
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from querysync.duration import Duration, GcDuration
from querysync.errors import ObserverDisposedError
from querysync.keys import QueryKey
from querysync.log import get_logger
from querysync.options import QueryFn, QueryOptions, StaleTime
from querysync.query_observer import QueryObserver, QueryResult
from querysync.retryer import RetryResolver
from querysync.subscribable import Subscribable
from querysync.types import (
    FetchDirection,
    InfiniteData,
    InfiniteQueryFunctionContext,
    NetworkMode,
    QueryFunctionContext,
    RefetchPolicy,
)

if TYPE_CHECKING:
    from querysync.client import QueryClient

TPage = TypeVar("TPage")
TPageParam = TypeVar("TPageParam")
T = TypeVar("T")

logger = get_logger(__name__)

PageFn = Callable[[InfiniteQueryFunctionContext[TPageParam]], Awaitable[TPage]]
PageParamBuilder = Callable[[InfiniteData[TPage, TPageParam]], TPageParam | None]


@dataclass(slots=True)
class InfiniteQueryOptions(Generic[TPage, TPageParam]):
    """Options for an infinite query.

    Args:
        query_key: Key of the whole paginated list.
        query_fn: Fetches one page for context.page_param.
        initial_page_param: Param of the first page.
        get_next_page_param: Next param from the current data, None at the end.
        get_previous_page_param: Previous param, None at the start.
        max_pages: Keep at most this many pages, dropping from the other end.
    """

    query_key: QueryKey
    query_fn: PageFn[TPageParam, TPage]
    initial_page_param: TPageParam
    get_next_page_param: PageParamBuilder[TPage, TPageParam]
    get_previous_page_param: PageParamBuilder[TPage, TPageParam] | None = None
    max_pages: int | None = None
    enabled: bool | None = None
    stale_duration: StaleTime | None = None
    gc_duration: Duration | GcDuration | None = None
    retry: RetryResolver | None = None
    placeholder: Any = None
    refetch_on_mount: RefetchPolicy | None = None
    refetch_on_resume: RefetchPolicy | None = None
    refetch_on_reconnect: RefetchPolicy | None = None
    refetch_interval: Duration | None = None
    network_mode: NetworkMode | None = None
    initial_data: Any = None
    initial_data_updated_at: int | None = None
    meta: Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        if self.max_pages is not None and self.max_pages < 1:
            raise ValueError(f"max_pages must be >= 1, got {self.max_pages}")


def append_bounded(
    items: tuple[T, ...], item: T, max_length: int | None
) -> tuple[T, ...]:
    """Append item, dropping from the head beyond max_length."""
    result = (*items, item)
    if max_length is not None and len(result) > max_length:
        return result[len(result) - max_length :]
    return result


def prepend_bounded(
    items: tuple[T, ...], item: T, max_length: int | None
) -> tuple[T, ...]:
    """Prepend item, dropping from the tail beyond max_length."""
    result = (item, *items)
    if max_length is not None and len(result) > max_length:
        return result[:max_length]
    return result


def next_page_param(
    options: InfiniteQueryOptions[TPage, TPageParam],
    data: InfiniteData[TPage, TPageParam],
    direction: FetchDirection,
) -> TPageParam | None:
    if direction == "forward":
        return options.get_next_page_param(data)
    if options.get_previous_page_param is None:
        return None
    return options.get_previous_page_param(data)


def build_infinite_query_fn(
    options: InfiniteQueryOptions[TPage, TPageParam],
) -> QueryFn[InfiniteData[TPage, TPageParam]]:
    """Wrap a page function into a query function over InfiniteData."""

    async def fetch_pages(
        context: QueryFunctionContext,
    ) -> InfiniteData[TPage, TPageParam]:
        current = context.client.get_query_data(context.query_key)
        data = current if isinstance(current, InfiniteData) else InfiniteData()

        def page_context(param: TPageParam, direction: FetchDirection) -> Any:
            return InfiniteQueryFunctionContext(
                query_key=context.query_key,
                client=context.client,
                signal=context.signal,
                page_param=param,
                direction=direction,
                meta=context.meta,
            )

        direction: FetchDirection | None = context.fetch_meta.get("direction")
        if direction is not None and data.pages:
            param = next_page_param(options, data, direction)
            if param is None:
                return data
            page = await options.query_fn(page_context(param, direction))
            if direction == "forward":
                return InfiniteData(
                    append_bounded(data.pages, page, options.max_pages),
                    append_bounded(data.page_params, param, options.max_pages),
                )
            return InfiniteData(
                prepend_bounded(data.pages, page, options.max_pages),
                prepend_bounded(data.page_params, param, options.max_pages),
            )

        # Full refetch: walk forward from the first held param
        result: InfiniteData[TPage, TPageParam] = InfiniteData()
        for i in range(max(len(data.pages), 1)):
            if i == 0:
                param = (
                    data.page_params[0] if data.page_params else options.initial_page_param
                )
            else:
                param = options.get_next_page_param(result)
                if param is None:
                    break
            page = await options.query_fn(page_context(param, "forward"))
            result = InfiniteData(
                append_bounded(result.pages, page, options.max_pages),
                append_bounded(result.page_params, param, options.max_pages),
            )
        return result

    return fetch_pages


def as_query_options(
    options: InfiniteQueryOptions[TPage, TPageParam],
) -> QueryOptions[InfiniteData[TPage, TPageParam]]:
    """Plain query options running the page-accumulating wrapper."""
    return QueryOptions(
        query_key=options.query_key,
        query_fn=build_infinite_query_fn(options),
        enabled=options.enabled,
        stale_duration=options.stale_duration,
        gc_duration=options.gc_duration,
        retry=options.retry,
        placeholder=options.placeholder,
        refetch_on_mount=options.refetch_on_mount,
        refetch_on_resume=options.refetch_on_resume,
        refetch_on_reconnect=options.refetch_on_reconnect,
        refetch_interval=options.refetch_interval,
        network_mode=options.network_mode,
        initial_data=options.initial_data,
        initial_data_updated_at=options.initial_data_updated_at,
        meta=options.meta,
    )


@dataclass(frozen=True, slots=True)
class InfiniteQueryResult(QueryResult[InfiniteData[TPage, TPageParam]]):
    """QueryResult plus pagination flags."""

    has_next_page: bool
    has_previous_page: bool
    is_fetching_next_page: bool
    is_fetching_previous_page: bool
    is_fetch_next_page_error: bool
    is_fetch_previous_page_error: bool


class InfiniteQueryObserver(
    Subscribable[InfiniteQueryResult[TPage, TPageParam]], Generic[TPage, TPageParam]
):
    """Observes an infinite query and fetches pages in either direction.

    Usage:
        observer = InfiniteQueryObserver(
            client,
            InfiniteQueryOptions(
                ["feed"],
                query_fn=fetch_feed_page,
                initial_page_param=0,
                get_next_page_param=lambda data: data.page_params[-1] + 1,
                max_pages=5,
            ),
        )
        await observer.fetch_next_page()
    """

    def __init__(
        self, client: QueryClient, options: InfiniteQueryOptions[TPage, TPageParam]
    ) -> None:
        super().__init__()
        self._options = options
        self._direction: FetchDirection | None = None
        self._failed_direction: FetchDirection | None = None
        self._disposed = False
        self._inner: QueryObserver[InfiniteData[TPage, TPageParam]] = QueryObserver(
            client, as_query_options(options)
        )
        self._result = self._create_result()
        self._inner.subscribe(self._on_inner_result)

    @property
    def options(self) -> InfiniteQueryOptions[TPage, TPageParam]:
        return self._options

    @options.setter
    def options(self, options: InfiniteQueryOptions[TPage, TPageParam]) -> None:
        self._options = options
        self._inner.options = as_query_options(options)
        self._refresh()

    @property
    def result(self) -> InfiniteQueryResult[TPage, TPageParam]:
        return self._result

    @property
    def query(self) -> Any:
        return self._inner.query

    def subscribe(
        self, listener: Callable[[InfiniteQueryResult[TPage, TPageParam]], None]
    ) -> Callable[[], None]:
        if self._disposed:
            raise ObserverDisposedError("Observer has been disposed")
        return super().subscribe(listener)

    async def fetch_next_page(
        self, *, cancel_refetch: bool = True, throw_on_error: bool = False
    ) -> InfiniteQueryResult[TPage, TPageParam]:
        return await self._fetch_page("forward", cancel_refetch, throw_on_error)

    async def fetch_previous_page(
        self, *, cancel_refetch: bool = True, throw_on_error: bool = False
    ) -> InfiniteQueryResult[TPage, TPageParam]:
        return await self._fetch_page("backward", cancel_refetch, throw_on_error)

    async def refetch(
        self, *, cancel_refetch: bool = True, throw_on_error: bool = False
    ) -> InfiniteQueryResult[TPage, TPageParam]:
        """Re-fetch every held page from the first one."""
        self._direction = None
        await self._inner.refetch(
            cancel_refetch=cancel_refetch, throw_on_error=throw_on_error
        )
        self._refresh()
        return self._result

    async def _fetch_page(
        self, direction: FetchDirection, cancel_refetch: bool, throw_on_error: bool
    ) -> InfiniteQueryResult[TPage, TPageParam]:
        self._direction = direction
        logger.debug("fetch_page", direction=direction)
        try:
            task = self._inner.query.fetch(
                cancel_refetch=cancel_refetch, fetch_meta={"direction": direction}
            )
            await asyncio.shield(task)
            self._failed_direction = None
        except Exception:
            self._failed_direction = direction
            if throw_on_error:
                raise
        finally:
            self._direction = None
            self._refresh()
        return self._result

    def on_resume(self) -> None:
        self._inner.on_resume()

    def on_reconnect(self) -> None:
        self._inner.on_reconnect()

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._listeners.clear()
        self._inner.dispose()

    def _on_inner_result(self, _: QueryResult[Any]) -> None:
        self._refresh()

    def _refresh(self) -> None:
        result = self._create_result()
        if result == self._result:
            return
        self._result = result
        self._notify_listeners(result)

    def _create_result(self) -> InfiniteQueryResult[TPage, TPageParam]:
        base = self._inner.result
        data = base.data
        has_pages = isinstance(data, InfiniteData) and bool(data.pages)
        return InfiniteQueryResult(
            **{f.name: getattr(base, f.name) for f in fields(base)},
            has_next_page=has_pages
            and next_page_param(self._options, data, "forward") is not None,
            has_previous_page=has_pages
            and next_page_param(self._options, data, "backward") is not None,
            is_fetching_next_page=base.is_fetching and self._direction == "forward",
            is_fetching_previous_page=base.is_fetching
            and self._direction == "backward",
            is_fetch_next_page_error=base.is_error
            and self._failed_direction == "forward",
            is_fetch_previous_page_error=base.is_error
            and self._failed_direction == "backward",
        )

"""Error taxonomy for querysync."""


class QuerySyncError(Exception):
    """Base class for errors raised by the engine itself."""


class QueryCancelledError(QuerySyncError):
    """A fetch or retry sequence was cancelled.

    Not an application error: it is never committed to query state.
    """

    def __init__(self, *, revert: bool = True, silent: bool = False) -> None:
        self.revert = revert
        self.silent = silent
        flags = [name for name, on in (("revert", revert), ("silent", silent)) if on]
        suffix = f" ({', '.join(flags)})" if flags else ""
        super().__init__(f"Query was cancelled{suffix}")


class MissingQueryFnError(QuerySyncError):
    """A query without a query function was fetched."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Missing query_fn for query {key!r}")


class ObserverDisposedError(QuerySyncError):
    """An observer was used after dispose()."""

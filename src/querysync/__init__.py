"""querysync - Async data synchronization for Python."""

# Client
from querysync.client import QueryClient

# Durations
from querysync.duration import (
    INFINITE,
    STATIC,
    Duration,
    FiniteDuration,
    InfiniteDuration,
    StaticDuration,
    parse_duration,
)

# Errors
from querysync.errors import (
    MissingQueryFnError,
    ObserverDisposedError,
    QueryCancelledError,
    QuerySyncError,
)

# Infinite queries
from querysync.infinite_query import (
    InfiniteQueryObserver,
    InfiniteQueryOptions,
    InfiniteQueryResult,
)
from querysync.keys import hash_key, starts_with
from querysync.log import configure_logging, get_logger

# Mutations
from querysync.mutation import Mutation
from querysync.mutation_cache import MutationCache, MutationCacheEvent
from querysync.mutation_observer import MutationObserver, MutationResult

# Options
from querysync.options import (
    DefaultMutationOptions,
    DefaultQueryOptions,
    MutationOptions,
    QueryOptions,
    merge_options,
)

# Queries
from querysync.query import Query
from querysync.query_cache import QueryCache, QueryCacheEvent
from querysync.query_observer import QueryObserver, QueryResult

# Retry
from querysync.retryer import (
    Retryer,
    exponential_backoff_delay,
    retry_exponential_backoff,
    retry_never,
)

# Core types
from querysync.types import (
    InfiniteData,
    InfiniteQueryFunctionContext,
    MutationFunctionContext,
    MutationState,
    QueryFunctionContext,
    QueryState,
)

__version__ = "0.1.0"

__all__ = [
    "INFINITE",
    "STATIC",
    "DefaultMutationOptions",
    "DefaultQueryOptions",
    "Duration",
    "FiniteDuration",
    "InfiniteData",
    "InfiniteDuration",
    "InfiniteQueryFunctionContext",
    "InfiniteQueryObserver",
    "InfiniteQueryOptions",
    "InfiniteQueryResult",
    "MissingQueryFnError",
    "Mutation",
    "MutationCache",
    "MutationCacheEvent",
    "MutationFunctionContext",
    "MutationObserver",
    "MutationOptions",
    "MutationResult",
    "MutationState",
    "ObserverDisposedError",
    "Query",
    "QueryCache",
    "QueryCacheEvent",
    "QueryCancelledError",
    "QueryClient",
    "QueryFunctionContext",
    "QueryObserver",
    "QueryOptions",
    "QueryResult",
    "QueryState",
    "QuerySyncError",
    "Retryer",
    "StaticDuration",
    "configure_logging",
    "exponential_backoff_delay",
    "get_logger",
    "hash_key",
    "merge_options",
    "parse_duration",
    "retry_exponential_backoff",
    "retry_never",
    "starts_with",
]

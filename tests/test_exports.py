"""Tests for package exports."""


def test_core_exports_available() -> None:
    """Test that the client, observers and caches are importable."""
    from querysync import (
        InfiniteQueryObserver,
        MutationCache,
        MutationObserver,
        QueryCache,
        QueryClient,
        QueryObserver,
    )

    # Just verify they're importable
    assert QueryClient is not None
    assert QueryCache is not None
    assert QueryObserver is not None
    assert InfiniteQueryObserver is not None
    assert MutationCache is not None
    assert MutationObserver is not None


def test_option_and_error_exports_available() -> None:
    """Test that options, errors and helpers are importable."""
    from querysync import (
        INFINITE,
        STATIC,
        DefaultQueryOptions,
        MutationOptions,
        QueryCancelledError,
        QueryOptions,
        QuerySyncError,
        configure_logging,
        parse_duration,
        retry_exponential_backoff,
    )

    assert issubclass(QueryCancelledError, QuerySyncError)
    assert INFINITE is not STATIC
    assert DefaultQueryOptions is not None
    assert QueryOptions is not None
    assert MutationOptions is not None
    assert configure_logging is not None
    assert parse_duration is not None
    assert retry_exponential_backoff is not None


def test_version() -> None:
    """Test that the package exposes a version."""
    import querysync

    assert querysync.__version__ == "0.1.0"

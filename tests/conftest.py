"""Shared pytest fixtures."""

import pytest

from querysync import QueryClient


@pytest.fixture
def client() -> QueryClient:
    """Create a fresh QueryClient for each test."""
    return QueryClient()

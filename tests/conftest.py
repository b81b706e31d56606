"""
Pytest configuration and shared fixtures.
"""

import pytest
from unittest.mock import Mock

from stash_client.core.connection import StashConnection
from stash_client.core.session import SharedHttpContext


@pytest.fixture
def mock_context():
    """Create a mock SharedHttpContext."""
    ctx = Mock(spec=SharedHttpContext)
    ctx.get_json = Mock(return_value={"values": [], "isLastPage": True})
    ctx.get_page = Mock(return_value={"values": [], "isLastPage": True})
    return ctx


@pytest.fixture
def connection(mock_context):
    """A connection wired to the mock context."""
    return StashConnection(
        "alice",
        "secret",
        "http://git.example.com/",
        context=mock_context,
    )


@pytest.fixture
def fresh_shared_context(monkeypatch):
    """Reset the process-wide context for the duration of a test."""
    monkeypatch.setattr(SharedHttpContext, "_instance", None)


@pytest.fixture
def sample_users_page():
    """Single-page Stash users listing."""
    return {
        "size": 1,
        "limit": 1,
        "start": 0,
        "isLastPage": False,
        "nextPageStart": 1,
        "values": [
            {"name": "alice", "slug": "alice", "id": 101, "active": True},
        ],
    }

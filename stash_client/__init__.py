"""
Stash Client Python SDK (stash_client)
======================================

Connection layer for the Atlassian Stash / Bitbucket Server REST API.

Usage
-----
>>> from stash_client import StashConnection
>>>
>>> conn = StashConnection.from_connection_string(
...     "Data Source=https://stash.example.com;User ID=alice;password=secret;"
... )
>>> conn.connect()
>>> repos = conn.create_query(page_size=100).read_all("projects/KEY/repos")

Subpackages
-----------
- stash_client.core: Credentials, auth token, shared HTTP context, connection
- stash_client.rest: Paged REST queries

"""

__version__ = "0.1.0"

from stash_client.core.credentials import (
    StashArgumentError,
    StashConnectionStringError,
    StashCredentials,
)

from stash_client.core.session import (
    SharedHttpContext,
    StashHttpConfig,
    StashUpstreamError,
)

from stash_client.core.connection import StashCancelledError, StashConnection

from stash_client.rest import StashQuery

__all__ = [
    # Version
    "__version__",
    # Core
    "StashArgumentError",
    "StashConnectionStringError",
    "StashCredentials",
    "SharedHttpContext",
    "StashHttpConfig",
    "StashUpstreamError",
    "StashCancelledError",
    "StashConnection",
    # REST
    "StashQuery",
]

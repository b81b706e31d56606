"""
stash_client.core - Core connectivity and authentication
=========================================================

- StashCredentials / parse_connection_string: credential resolution
- basic_auth_token / StashTokenAuth: Basic authorization header
- SharedHttpContext / StashHttpConfig: process-wide HTTP session and cookies
- StashConnection: connection handle with connectivity check

"""

from stash_client.core.credentials import (
    StashArgumentError,
    StashConnectionStringError,
    StashCredentials,
    credentials_from_connection_string,
    normalize_server,
    parse_connection_string,
    resolve_credentials,
)

from stash_client.core.auth import StashTokenAuth, basic_auth_token

from stash_client.core.session import (
    SharedHttpContext,
    StashHttpConfig,
    StashUpstreamError,
)

from stash_client.core.connection import StashCancelledError, StashConnection

__all__ = [
    "StashArgumentError",
    "StashConnectionStringError",
    "StashCredentials",
    "credentials_from_connection_string",
    "normalize_server",
    "parse_connection_string",
    "resolve_credentials",
    "StashTokenAuth",
    "basic_auth_token",
    "SharedHttpContext",
    "StashHttpConfig",
    "StashUpstreamError",
    "StashCancelledError",
    "StashConnection",
]

"""
stash_client.core.connection - Stash connection handle
=======================================================

Identity-bearing connection to a Stash / Bitbucket Server instance.
"""

from __future__ import annotations

import hmac
import logging
import os
import threading
from typing import TYPE_CHECKING, Any, Callable, Optional

from stash_client.core.auth import StashTokenAuth, basic_auth_token
from stash_client.core.credentials import (
    StashCredentials,
    credentials_from_connection_string,
    resolve_credentials,
)
from stash_client.core.session import SharedHttpContext, inflight

if TYPE_CHECKING:
    from stash_client.rest.query import StashQuery

logger = logging.getLogger("stash_client.connection")


class StashCancelledError(RuntimeError):
    """Raised when connect() is cancelled before or during its request."""


def _run_cancellable(fn: Callable[[], Any], cancel, poll_interval: float) -> Any:
    """
    Run ``fn`` on a daemon thread and wait for it or for ``cancel``.

    On cancellation the sockets the worker is using are shut down so its
    request fails and the thread exits; that result or error is discarded.
    """
    outcome: dict = {}
    started = threading.Event()
    finished = threading.Event()

    def worker() -> None:
        try:
            with inflight.watch():
                started.set()
                outcome["result"] = fn()
        except BaseException as exc:  # re-raised on the calling thread
            outcome["error"] = exc
        finally:
            finished.set()

    t = threading.Thread(target=worker, name="stash-connect", daemon=True)
    t.start()

    while not finished.wait(poll_interval):
        if cancel.is_set():
            started.wait()
            inflight.abort(t.ident)
            raise StashCancelledError("Connect cancelled while the request was in flight")

    if "error" in outcome:
        raise outcome["error"]
    return outcome.get("result")


class StashConnection:
    """
    Connection to a Stash server.

    Holds the credentials, the normalized server address and the derived
    Basic authorization token. Connections compare equal when login and
    password match exactly and the server matches case-insensitively; the
    connected state is not part of the identity.

    Parameters
    ----------
    login : str
        User name
    password : str
        Password or personal access token
    server : str
        Base URL, e.g. "https://stash.example.com"
    context : SharedHttpContext, optional
        HTTP transport. Defaults to the process-wide shared context.

    Examples
    --------
    >>> conn = StashConnection("alice", "secret", "https://stash.example.com/")
    >>> conn.connect()
    >>> str(conn)
    'alice@https://stash.example.com'

    >>> conn = StashConnection.from_connection_string(
    ...     "Data Source=https://stash.example.com;User ID=alice;password=secret;"
    ... )
    """

    # how often a cancellable connect() checks its signal
    poll_interval = 0.05

    def __init__(
        self,
        login: Optional[str],
        password: Optional[str],
        server: Optional[str],
        *,
        context: Optional[SharedHttpContext] = None,
    ) -> None:
        self._init(resolve_credentials(login, password, server), context)

    def _init(self, creds: StashCredentials, context: Optional[SharedHttpContext]) -> None:
        self._login = creds.login
        self._password = creds.password
        self._server = creds.server
        self._auth_token = basic_auth_token(creds.login, creds.password)
        self._auth = StashTokenAuth(self._auth_token)
        self._context = context
        self._connected = False

    @classmethod
    def from_connection_string(
        cls,
        connection_string: Optional[str],
        *,
        context: Optional[SharedHttpContext] = None,
    ) -> "StashConnection":
        """
        Create a connection from ``Data Source=...;User ID=...;password=...;``.

        Raises
        ------
        StashArgumentError
            If connection_string is None
        StashConnectionStringError
            If the string is malformed or lacks a required key
        """
        conn = cls.__new__(cls)
        conn._init(credentials_from_connection_string(connection_string), context)
        return conn

    @classmethod
    def from_env(cls, *, context: Optional[SharedHttpContext] = None) -> "StashConnection":
        """
        Create a connection from the environment.

        Uses STASH_CONNECTION_STRING when set, otherwise STASH_SERVER,
        STASH_USER and STASH_PASS.
        """
        connection_string = os.environ.get("STASH_CONNECTION_STRING")
        if connection_string:
            return cls.from_connection_string(connection_string, context=context)
        return cls(
            os.environ.get("STASH_USER"),
            os.environ.get("STASH_PASS"),
            os.environ.get("STASH_SERVER"),
            context=context,
        )

    # ---------------- identity ----------------

    @property
    def login(self) -> str:
        return self._login

    @property
    def password(self) -> str:
        return self._password

    @property
    def server(self) -> str:
        """Base URL without trailing slash."""
        return self._server

    @property
    def auth_token(self) -> str:
        """Authorization header value, ``Basic <base64(login:password)>``."""
        return self._auth_token

    @property
    def auth(self) -> StashTokenAuth:
        """requests auth hook carrying the token."""
        return self._auth

    @property
    def context(self) -> SharedHttpContext:
        """The HTTP context used for requests."""
        if self._context is None:
            self._context = SharedHttpContext.instance()
        return self._context

    @property
    def connected(self) -> bool:
        return self._connected

    # ---------------- lifecycle ----------------

    def create_query(self, page_size: Optional[int] = None) -> "StashQuery":
        """Create a query bound to this connection."""
        from stash_client.rest.query import StashQuery
        return StashQuery(self, page_size=page_size)

    def _check_access(self) -> None:
        # any 200 is not enough, the body must be a Stash page
        self.create_query(page_size=1).get_page("users")

    def connect(self, cancel=None) -> None:
        """
        Verify credentials and reachability.

        Issues one ``users`` request with a page size of 1. Does nothing
        if already connected.

        Parameters
        ----------
        cancel : threading.Event, optional
            Cancellation signal, anything with ``is_set()``

        Raises
        ------
        StashCancelledError
            If ``cancel`` is set before or while the request runs
        StashUpstreamError
            If the server answers with an error status or with something
            other than a Stash page
        requests.RequestException
            On transport failures
        """
        if self._connected:
            return

        if cancel is not None and cancel.is_set():
            raise StashCancelledError("Connect cancelled before the request was sent")

        logger.debug("Checking access for %s", self)
        if cancel is None:
            self._check_access()
        else:
            _run_cancellable(self._check_access, cancel, self.poll_interval)

        self._connected = True
        logger.info("Connected to %s", self)

    # ---------------- equality ----------------

    def __eq__(self, other: object) -> bool:
        if self is other:
            return True
        if not isinstance(other, StashConnection):
            return NotImplemented
        return (
            self._login == other._login
            and hmac.compare_digest(self._password.encode("utf-8"), other._password.encode("utf-8"))
            and self._server.lower() == other._server.lower()
        )

    def __hash__(self) -> int:
        return hash((self._login, self._server.lower()))

    def __str__(self) -> str:
        return f"{self._login}@{self._server}"

    def __repr__(self) -> str:
        state = "connected" if self._connected else "disconnected"
        return f"<StashConnection {self} ({state})>"

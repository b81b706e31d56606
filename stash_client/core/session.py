"""
stash_client.core.session - Shared HTTP transport
==================================================

Process-wide HTTP session for Stash / Bitbucket Server REST calls with:
- One cookie jar and one connection pool shared by every connection
- TLS protocol versions restricted to an allow-list
- No request timeout (callers cancel instead)
- Error extraction from Stash error payloads
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union
import logging
import os
import socket
import ssl
import threading
import time

import requests
from requests import Response, Session
from requests.adapters import HTTPAdapter
from requests.auth import AuthBase
from requests.certs import where as ca_bundle_path
from requests.cookies import RequestsCookieJar
from urllib3.connection import HTTPConnection, HTTPSConnection
from urllib3.connectionpool import HTTPConnectionPool, HTTPSConnectionPool
from urllib3.util.retry import Retry
from urllib3.util.ssl_ import create_urllib3_context

logger = logging.getLogger("stash_client.http")


class StashUpstreamError(RuntimeError):
    """
    Exception raised when the Stash server returns an error status.

    Attributes
    ----------
    status : int
        HTTP status code
    body : str
        Error text extracted from the response
    url : str
        The URL that was called
    headers : dict
        Response headers
    """

    def __init__(
        self,
        status: int,
        body: str,
        url: str,
        headers: Optional[Dict[str, str]] = None
    ):
        snippet = (body or "")[:1200]
        super().__init__(f"Stash upstream error {status} for {url}: {snippet}")
        self.status = status
        self.body = body or ""
        self.url = url
        self.headers = headers or {}


def _env_verify(value: str) -> Union[bool, str]:
    low = value.strip().lower()
    if low in ("", "true", "1", "yes"):
        return True
    if low in ("false", "0", "no"):
        return False
    return value.strip()


@dataclass
class StashHttpConfig:
    """
    Configuration for the shared HTTP transport.

    Parameters
    ----------
    tls_versions : tuple of str
        Allowed TLS protocol versions, e.g. ("TLSv1.2", "TLSv1.3").
        Versions the local ssl module does not know are ignored.
    verify : bool or str
        SSL verification (True, False, or path to CA bundle)
    trust_env : bool
        Let requests pick up proxies and .netrc credentials from the
        environment
    user_agent : str
        User-Agent header value
    retries : int
        Transport-level retry attempts (default: 0, no retries)
    backoff : float
        Backoff factor for retries
    pool_connections, pool_maxsize : int
        urllib3 pool sizing

    Examples
    --------
    >>> cfg = StashHttpConfig(tls_versions=("TLSv1.2",), verify="/etc/ssl/corp.pem")
    """
    tls_versions: Tuple[str, ...] = ("TLSv1.2", "TLSv1.3")
    verify: Union[bool, str] = True
    trust_env: bool = True
    user_agent: str = "stash-client/0.1"
    retries: int = 0
    backoff: float = 0.5
    pool_connections: int = 20
    pool_maxsize: int = 50
    extra_headers: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "StashHttpConfig":
        """Read STASH_VERIFY_TLS, STASH_TLS_VERSIONS and STASH_USER_AGENT."""
        cfg = cls()
        if "STASH_VERIFY_TLS" in os.environ:
            cfg.verify = _env_verify(os.environ["STASH_VERIFY_TLS"])
        versions = os.environ.get("STASH_TLS_VERSIONS")
        if versions:
            cfg.tls_versions = tuple(v.strip() for v in versions.split(",") if v.strip())
        agent = os.environ.get("STASH_USER_AGENT")
        if agent:
            cfg.user_agent = agent
        return cfg


def _known_tls_versions(names: Sequence[str]) -> list:
    out = []
    for name in names:
        member = getattr(ssl.TLSVersion, name.strip().replace(".", "_"), None)
        if member is None:
            logger.debug("Ignoring unsupported TLS version %r", name)
            continue
        out.append(member)
    return out


def build_ssl_context(tls_versions: Sequence[str]) -> Optional[ssl.SSLContext]:
    """
    Build an SSL context limited to the given protocol versions.

    Returns None when nothing usable can be built, in which case the
    transport keeps its default context.
    """
    versions = _known_tls_versions(tls_versions)
    if not versions:
        return None

    try:
        ctx = create_urllib3_context()
        ctx.load_verify_locations(ca_bundle_path())
    except (OSError, ValueError) as exc:
        logger.debug("TLS context setup failed, using defaults: %s", exc)
        return None

    try:
        ctx.minimum_version = min(versions)
    except (ValueError, AttributeError) as exc:
        logger.debug("Cannot set minimum TLS version %s: %s", min(versions), exc)
    try:
        ctx.maximum_version = max(versions)
    except (ValueError, AttributeError) as exc:
        logger.debug("Cannot set maximum TLS version %s: %s", max(versions), exc)
    return ctx


class InflightRequests:
    """
    Tracks the HTTP connections used by watched threads so their requests
    can be aborted from another thread.

    A thread opts in with ``watch()``; ``abort(ident)`` then shuts down the
    sockets that thread is using and makes any later connection use on it
    fail with ConnectionAbortedError.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._watched: Dict[int, List[HTTPConnection]] = {}
        self._aborted: set = set()

    @contextmanager
    def watch(self) -> Iterator[int]:
        ident = threading.get_ident()
        with self._lock:
            self._watched[ident] = []
        try:
            yield ident
        finally:
            with self._lock:
                self._watched.pop(ident, None)
                self._aborted.discard(ident)

    def register(self, conn: HTTPConnection) -> None:
        ident = threading.get_ident()
        with self._lock:
            if ident in self._aborted:
                raise ConnectionAbortedError("Request aborted by cancellation")
            conns = self._watched.get(ident)
            if conns is not None and conn not in conns:
                conns.append(conn)

    def abort(self, ident: Optional[int]) -> None:
        with self._lock:
            if ident not in self._watched:
                return
            self._aborted.add(ident)
            conns = list(self._watched[ident])
        for conn in conns:
            sock = getattr(conn, "sock", None)
            if sock is None:
                continue
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError as exc:
                logger.debug("Socket already closed while aborting: %s", exc)


inflight = InflightRequests()


class _TrackedConnectionMixin:
    def connect(self):
        super().connect()
        inflight.register(self)

    def request(self, *args, **kwargs):
        inflight.register(self)
        return super().request(*args, **kwargs)


class TrackedHTTPConnection(_TrackedConnectionMixin, HTTPConnection):
    pass


class TrackedHTTPSConnection(_TrackedConnectionMixin, HTTPSConnection):
    pass


class TrackedHTTPConnectionPool(HTTPConnectionPool):
    ConnectionCls = TrackedHTTPConnection


class TrackedHTTPSConnectionPool(HTTPSConnectionPool):
    ConnectionCls = TrackedHTTPSConnection


TRACKED_POOL_CLASSES = {
    "http": TrackedHTTPConnectionPool,
    "https": TrackedHTTPSConnectionPool,
}


class TlsRangeAdapter(HTTPAdapter):
    """
    HTTPAdapter that hands a fixed SSL context to its pool managers and
    builds connections ``inflight`` can abort.
    """

    def __init__(self, ssl_context: Optional[ssl.SSLContext] = None, **kwargs: Any) -> None:
        # set before super().__init__, which builds the pool manager
        self.ssl_context = ssl_context
        super().__init__(**kwargs)

    def init_poolmanager(self, connections, maxsize, block=False, **pool_kwargs):
        if self.ssl_context is not None:
            pool_kwargs["ssl_context"] = self.ssl_context
        super().init_poolmanager(connections, maxsize, block=block, **pool_kwargs)
        self.poolmanager.pool_classes_by_scheme = TRACKED_POOL_CLASSES

    def proxy_manager_for(self, proxy, **proxy_kwargs):
        if self.ssl_context is not None:
            proxy_kwargs.setdefault("ssl_context", self.ssl_context)
        manager = super().proxy_manager_for(proxy, **proxy_kwargs)
        manager.pool_classes_by_scheme = TRACKED_POOL_CLASSES
        return manager


class SharedHttpContext:
    """
    One HTTP session and cookie jar for the whole process.

    Use ``SharedHttpContext.instance()`` for the process-wide context, or
    ``SharedHttpContext.configure(cfg)`` once at startup to choose its
    settings. Constructing the class directly gives an independent context.
    The shared instance is never closed.

    Parameters
    ----------
    cfg : StashHttpConfig, optional
        Transport configuration

    Examples
    --------
    >>> SharedHttpContext.configure(StashHttpConfig(verify=False))
    >>> ctx = SharedHttpContext.instance()
    """

    _instance: Optional["SharedHttpContext"] = None
    _instance_lock = threading.Lock()

    def __init__(self, cfg: Optional[StashHttpConfig] = None) -> None:
        self.cfg = cfg or StashHttpConfig()
        self.cookies = RequestsCookieJar()
        self.session = self._build_session()

    @classmethod
    def instance(cls) -> "SharedHttpContext":
        """Get the process-wide context, creating it on first use."""
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = cls(StashHttpConfig.from_env())
        return cls._instance

    @classmethod
    def configure(cls, cfg: Optional[StashHttpConfig] = None) -> "SharedHttpContext":
        """
        Initialize the process-wide context explicitly.

        Only the first initialization takes effect; later calls return the
        existing context unchanged.
        """
        with cls._instance_lock:
            if cls._instance is not None:
                logger.warning("Shared HTTP context already initialized, ignoring new configuration")
                return cls._instance
            cls._instance = cls(cfg or StashHttpConfig())
            return cls._instance

    # ---------------- session ----------------

    def _build_session(self) -> Session:
        sess = requests.Session()
        sess.cookies = self.cookies
        sess.trust_env = self.cfg.trust_env
        sess.verify = self.cfg.verify

        sess.headers.update({
            "Accept": "application/json",
            "User-Agent": self.cfg.user_agent,
        })
        if self.cfg.extra_headers:
            sess.headers.update(self.cfg.extra_headers)

        retry = Retry(
            total=self.cfg.retries,
            backoff_factor=self.cfg.backoff,
            status_forcelist=(429, 502, 503, 504),
            allowed_methods=frozenset({"GET", "HEAD", "OPTIONS"}),
            raise_on_status=False,
        )
        adapter = TlsRangeAdapter(
            ssl_context=build_ssl_context(self.cfg.tls_versions),
            max_retries=retry,
            pool_connections=self.cfg.pool_connections,
            pool_maxsize=self.cfg.pool_maxsize,
        )
        sess.mount("https://", adapter)
        sess.mount("http://", adapter)
        return sess

    # ---------------- helpers ----------------

    def _json_or_text(self, r: Response) -> Dict[str, Any]:
        ctype = (r.headers.get("Content-Type") or "").lower()
        if "json" in ctype:
            try:
                return r.json()
            except ValueError:
                pass
        return {"raw": r.text, "content_type": r.headers.get("Content-Type", "")}

    def _extract_stash_error(self, r: Response) -> str:
        try:
            data = r.json()
        except ValueError:
            return r.text
        if not isinstance(data, dict):
            return r.text
        errors = data.get("errors")
        if not isinstance(errors, list) or not errors:
            return r.text

        parts = []
        for err in errors:
            if not isinstance(err, dict):
                continue
            message = err.get("message")
            name = err.get("exceptionName")
            if message and name:
                parts.append(f"{message} ({name})")
            elif message:
                parts.append(str(message))
        return " | ".join(parts) or r.text

    def _raise_for_error(self, r: Response, url: str) -> None:
        if r.status_code >= 400:
            body = self._extract_stash_error(r)
            raise StashUpstreamError(r.status_code, body, url, dict(r.headers))

    # ---------------- public ops ----------------

    def request(
        self,
        method: str,
        url: str,
        *,
        auth: Optional[AuthBase] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        data: Optional[Union[str, bytes]] = None,
    ) -> Response:
        """
        Issue a request through the shared session.

        No timeout is applied. Transport errors from requests propagate
        unchanged; HTTP error statuses raise StashUpstreamError.
        """
        t0 = time.perf_counter()
        r = self.session.request(
            method=method,
            url=url,
            params=params,
            headers=headers,
            data=data,
            auth=auth,
            timeout=None,
        )
        self._raise_for_error(r, url)
        dt = (time.perf_counter() - t0) * 1000.0
        logger.debug("%s %s %sms", method.upper(), url, round(dt, 1))
        return r

    def get_json(
        self,
        url: str,
        *,
        auth: Optional[AuthBase] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        Execute a GET request and parse the JSON body.

        Returns
        -------
        dict
            Parsed JSON, or ``{"raw": ..., "content_type": ...}`` for
            non-JSON responses
        """
        r = self.request("GET", url, auth=auth, params=params, headers=headers)
        return self._json_or_text(r)

    def get_page(
        self,
        url: str,
        *,
        auth: Optional[AuthBase] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        Execute a GET request that must return a Stash page.

        Raises
        ------
        StashUpstreamError
            If the body is not a JSON object with a ``values`` list, e.g. an
            SSO login form or a proxy page served with status 200
        """
        r = self.request("GET", url, auth=auth, params=params, headers=headers)
        data = self._json_or_text(r)
        if not isinstance(data, dict) or not isinstance(data.get("values"), list):
            ctype = r.headers.get("Content-Type", "") or "unknown content type"
            snippet = (r.text or "")[:200]
            raise StashUpstreamError(
                r.status_code,
                f"Expected a paged JSON response, got {ctype}: {snippet}",
                url,
                dict(r.headers),
            )
        return data

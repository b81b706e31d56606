"""
stash_client.rest.query - Stash REST query
===========================================

Connection-scoped query client for the Stash REST API (``rest/api/1.0``).
Stash pages results as::

    {"size": 25, "limit": 25, "start": 0, "isLastPage": false,
     "nextPageStart": 25, "values": [...]}
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Generator, List, Optional

if TYPE_CHECKING:
    from stash_client.core.connection import StashConnection


class StashQuery:
    """
    Query client bound to one connection.

    Parameters
    ----------
    connection : StashConnection
        Connection supplying server, token and HTTP context
    page_size : int, optional
        ``limit`` sent with each page request; server default when None
    api_path : str
        REST API prefix under the server URL

    Examples
    --------
    >>> q = conn.create_query(page_size=100)
    >>> for page in q.iterate("projects"):
    ...     print([p["key"] for p in page])
    """

    def __init__(
        self,
        connection: "StashConnection",
        *,
        page_size: Optional[int] = None,
        api_path: str = "rest/api/1.0",
    ) -> None:
        self.connection = connection
        self.default_page_size = page_size
        self.api_path = api_path.strip("/")

    def url(self, address: str) -> str:
        """Full URL for an API address such as ``"projects/KEY/repos"``."""
        return f"{self.connection.server}/{self.api_path}/{address.lstrip('/')}"

    def _params(self, params: Optional[Dict[str, Any]] = None, start: Optional[int] = None) -> Dict[str, Any]:
        p: Dict[str, Any] = {}
        if self.default_page_size is not None:
            p["limit"] = str(int(self.default_page_size))
        if start:
            p["start"] = str(int(start))
        if params:
            p.update(params)
        return p

    # ---------------- reads ----------------

    def get(self, address: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Fetch a single page (or a single resource).

        Returns
        -------
        dict
            Parsed JSON response
        """
        return self.connection.context.get_json(
            self.url(address),
            auth=self.connection.auth,
            params=self._params(params),
        )

    def get_page(self, address: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Fetch a single page of a paged resource.

        Raises StashUpstreamError when the response is not a Stash page.
        """
        return self.connection.context.get_page(
            self.url(address),
            auth=self.connection.auth,
            params=self._params(params),
        )

    def iterate(
        self,
        address: str,
        params: Optional[Dict[str, Any]] = None,
        *,
        max_pages: Optional[int] = None,
    ) -> Generator[List[Dict[str, Any]], None, None]:
        """
        Iterate through pages of a paged resource.

        Yields each page's ``values`` list, following ``nextPageStart``
        until ``isLastPage``.
        """
        url = self.url(address)
        ctx = self.connection.context
        start: Optional[int] = None
        seen = set()
        yielded = 0

        while True:
            page = ctx.get_page(url, auth=self.connection.auth, params=self._params(params, start))

            values = page["values"]
            if values:
                yield values
                yielded += 1
                if max_pages is not None and yielded >= int(max_pages):
                    return

            if page.get("isLastPage", True):
                return
            start = page.get("nextPageStart")
            if start is None or start in seen:
                return
            seen.add(start)

    def read_all(
        self,
        address: str,
        params: Optional[Dict[str, Any]] = None,
        *,
        max_pages: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Read every page into a single list."""
        out: List[Dict[str, Any]] = []
        for page in self.iterate(address, params, max_pages=max_pages):
            out.extend(page)
        return out

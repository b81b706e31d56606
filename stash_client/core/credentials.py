"""
stash_client.core.credentials - Credential resolution
======================================================

Resolves (login, password, server) from explicit values or from an
ADO-style connection string::

    Data Source=https://stash.example.com;User ID=alice;password=secret;
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional


class StashArgumentError(ValueError):
    """
    Raised when a required argument is missing or unusable.

    Attributes
    ----------
    name : str
        Name of the offending parameter
    """

    def __init__(self, name: str, message: Optional[str] = None):
        super().__init__(message or f"Missing required argument: {name}")
        self.name = name


class StashConnectionStringError(ValueError):
    """
    Raised when a connection string cannot be used.

    Attributes
    ----------
    key : str or None
        The required key that is missing or invalid, None when the
        string as a whole could not be parsed
    """

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key


# canonical key -> display name
REQUIRED_KEYS = (
    ("user id", "User ID"),
    ("password", "password"),
    ("data source", "Data Source"),
)


@dataclass(frozen=True)
class StashCredentials:
    """Normalized credential triple."""
    login: str
    password: str
    server: str


def _is_encodable(value: str) -> bool:
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def normalize_server(server: Optional[str]) -> str:
    """
    Trim whitespace and trailing slashes from a server address.

    Examples
    --------
    >>> normalize_server("  https://stash.example.com//  ")
    'https://stash.example.com'
    """
    if server is None:
        raise StashArgumentError("server")
    value = server.strip().rstrip("/")
    if not value:
        raise StashArgumentError("server", "Missing required argument: server (empty after normalization)")
    return value


def resolve_credentials(
    login: Optional[str],
    password: Optional[str],
    server: Optional[str],
) -> StashCredentials:
    """
    Build credentials from explicit values.

    Raises
    ------
    StashArgumentError
        If login, password or server is None, empty or not encodable as
        UTF-8 (e.g. contains a lone surrogate)
    """
    if not login:
        raise StashArgumentError("login")
    if not password:
        raise StashArgumentError("password")
    for name, value in (("login", login), ("password", password), ("server", server)):
        if value is not None and not _is_encodable(value):
            raise StashArgumentError(name, f"Invalid argument: {name} is not valid UTF-8 text")
    return StashCredentials(login=login, password=password, server=normalize_server(server))


def _normalize_key(key: str) -> str:
    return " ".join(key.split()).lower()


def parse_connection_string(text: str) -> Dict[str, str]:
    """
    Parse a semicolon-delimited ``key=value`` string.

    Keys are case-insensitive and returned normalized (lower case, inner
    whitespace collapsed). Values may be quoted with ``'`` or ``"`` to
    carry ``;``; a doubled quote inside a quoted value is a literal quote.

    Parameters
    ----------
    text : str
        Connection string

    Returns
    -------
    dict
        Normalized key -> value

    Raises
    ------
    StashConnectionStringError
        On a segment without ``=``, an empty key or an unterminated quote
    """
    result: Dict[str, str] = {}
    pos = 0
    length = len(text)

    while pos < length:
        eq = text.find("=", pos)
        semi = text.find(";", pos)

        if semi != -1 and (eq == -1 or semi < eq):
            segment = text[pos:semi].strip()
            if segment:
                raise StashConnectionStringError(f"Malformed connection string segment: {segment!r}")
            pos = semi + 1
            continue

        if eq == -1:
            segment = text[pos:].strip()
            if segment:
                raise StashConnectionStringError(f"Malformed connection string segment: {segment!r}")
            break

        key = _normalize_key(text[pos:eq])
        if not key:
            raise StashConnectionStringError("Malformed connection string: empty key")
        pos = eq + 1

        while pos < length and text[pos] in " \t":
            pos += 1

        if pos < length and text[pos] in ("'", '"'):
            quote = text[pos]
            pos += 1
            chars = []
            while True:
                if pos >= length:
                    raise StashConnectionStringError(f"Unterminated quoted value for {key!r}", key)
                ch = text[pos]
                if ch == quote:
                    if pos + 1 < length and text[pos + 1] == quote:
                        chars.append(quote)
                        pos += 2
                        continue
                    pos += 1
                    break
                chars.append(ch)
                pos += 1
            value = "".join(chars)

            semi = text.find(";", pos)
            tail = text[pos:] if semi == -1 else text[pos:semi]
            if tail.strip():
                raise StashConnectionStringError(f"Unexpected text after quoted value for {key!r}", key)
        else:
            semi = text.find(";", pos)
            value = (text[pos:] if semi == -1 else text[pos:semi]).strip()

        pos = length if semi == -1 else semi + 1
        result[key] = value

    return result


def credentials_from_connection_string(connection_string: Optional[str]) -> StashCredentials:
    """
    Build credentials from a connection string.

    Requires ``User ID``, ``password`` and ``Data Source``.

    Raises
    ------
    StashArgumentError
        If connection_string is None
    StashConnectionStringError
        If the string is malformed or a required key is missing or empty
    """
    if connection_string is None:
        raise StashArgumentError("connection_string")

    values = parse_connection_string(connection_string)

    found = {}
    for key, display in REQUIRED_KEYS:
        value = values.get(key)
        if not value:
            raise StashConnectionStringError(f"Connection string is missing {display!r}", display)
        if not _is_encodable(value):
            raise StashConnectionStringError(f"Connection string value for {display!r} is not valid UTF-8 text", display)
        found[key] = value

    server = found["data source"].strip().rstrip("/")
    if not server:
        raise StashConnectionStringError("Connection string has an empty 'Data Source'", "Data Source")

    return StashCredentials(login=found["user id"], password=found["password"], server=server)

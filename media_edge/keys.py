from __future__ import annotations

from urllib.parse import quote

from .errors import EmptyKeyError


def extract_key(path: str) -> str:
    """Return the object key for a request path (leading ``/`` removed).

    Raises:
        EmptyKeyError: for the bare root, which never maps to an object.
    """
    key = path[1:] if path.startswith("/") else path
    if not key:
        msg = "empty object key"
        raise EmptyKeyError(msg)
    return key


def quote_key(key: str) -> str:
    return quote(key, safe="/~")

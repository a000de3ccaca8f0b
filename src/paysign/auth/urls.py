"""Best-effort URL helpers used to derive the signed host and request target."""

from __future__ import annotations

import re
from urllib.parse import SplitResult, urlsplit

_SCHEME_PREFIX = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*://")
_SCHEME_AND_HOST = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*://[^/?#]*")

DEFAULT_PORTS = {"http": 80, "https": 443, "ws": 80, "wss": 443}


def _split_absolute(url: str) -> SplitResult | None:
    """Split an absolute URL, or return None if it is not one."""
    if not _SCHEME_PREFIX.match(url):
        return None
    try:
        parts = urlsplit(url)
        _ = parts.port  # raises on a malformed port
    except ValueError:
        return None
    if not parts.hostname:
        return None
    return parts


def extract_host(url: str) -> str:
    """
    Return the authority (host plus non-default port) of ``url``.

    Without a scheme the input is read as ``host[:port][/path...]``. Input
    with no recognizable host is returned unchanged.
    """
    parts = _split_absolute(url)
    if parts is None:
        if _SCHEME_PREFIX.match(url):
            return url
        host = url.split("/", 1)[0]
        return host or url

    hostname = parts.hostname or ""
    if ":" in hostname:
        hostname = f"[{hostname}]"
    port = parts.port
    if port is None or DEFAULT_PORTS.get(parts.scheme.lower()) == port:
        return hostname
    return f"{hostname}:{port}"


def extract_path(url: str) -> str:
    """
    Return the path and query of ``url`` with the fragment dropped.

    Bare paths are returned unchanged and an empty path becomes ``/``.
    """
    if url.startswith("/"):
        return url

    parts = _split_absolute(url)
    if parts is None:
        prefix = _SCHEME_AND_HOST.match(url)
        if prefix is None:
            return url
        remainder = url[prefix.end():].split("#", 1)[0]
        if not remainder:
            return "/"
        return remainder if remainder.startswith("/") else f"/{remainder}"

    path = parts.path or "/"
    if parts.query:
        return f"{path}?{parts.query}"
    return path

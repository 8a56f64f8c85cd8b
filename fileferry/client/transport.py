"""HTTP transport used by the sync client."""

from __future__ import annotations

from typing import Any, ContextManager, Mapping, Optional, Protocol
from urllib.parse import quote
from urllib.request import Request, urlopen

USER_AGENT = "fileferry-client/1.0"


class Transport(Protocol):
    """Opens a GET request and returns a response usable as a context manager.

    The response must offer ``read(size)``, ``status`` and ``headers.get()``.
    Non-success statuses raise ``urllib.error.HTTPError``; connection failures
    raise ``OSError`` subclasses.
    """

    def open(
        self,
        url: str,
        timeout: float,
        headers: Optional[Mapping[str, str]] = None,
    ) -> ContextManager[Any]:
        ...


class UrllibTransport:
    """Default transport backed by :func:`urllib.request.urlopen`."""

    def open(
        self,
        url: str,
        timeout: float,
        headers: Optional[Mapping[str, str]] = None,
    ) -> ContextManager[Any]:
        request_headers = {"User-Agent": USER_AGENT}
        request_headers.update(headers or {})
        req = Request(url, headers=request_headers, method="GET")
        return urlopen(req, timeout=timeout)


def file_url(base_url: str, name: str) -> str:
    """URL for ``/file/{name}`` with each path segment percent-encoded."""
    return base_url.rstrip("/") + "/" + quote(name, safe="/")


__all__ = ["Transport", "USER_AGENT", "UrllibTransport", "file_url"]

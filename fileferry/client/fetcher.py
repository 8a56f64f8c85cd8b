"""Retrieval of the remote manifest."""

from __future__ import annotations

import gzip
import http.client
import logging
from typing import Optional
from urllib.error import HTTPError, URLError

from ..errors import ManifestFetchError
from ..manifest import Manifest
from .transport import Transport, UrllibTransport

logger = logging.getLogger("fileferry.client.fetcher")


class ManifestFetcher:
    """Downloads and decodes the manifest published at ``url``."""

    def __init__(
        self,
        url: str,
        transport: Optional[Transport] = None,
        timeout: float = 10.0,
    ) -> None:
        self.url = url
        self.transport = transport or UrllibTransport()
        self.timeout = timeout

    def fetch(self) -> Manifest:
        """Fetch the manifest.

        Raises:
            ManifestFetchError: on any network, HTTP or decoding failure.
        """
        if not self.url:
            raise ManifestFetchError("No manifest URL configured")

        logger.info("Fetching manifest from %s", self.url)
        try:
            with self.transport.open(
                self.url,
                self.timeout,
                headers={"Accept": "application/json", "Accept-Encoding": "gzip"},
            ) as resp:
                body = resp.read()
                encoding = (resp.headers.get("Content-Encoding") or "").lower()
        except HTTPError as e:
            raise ManifestFetchError(f"HTTP error: {e.code} {e.reason}") from e
        except URLError as e:
            raise ManifestFetchError(f"Connection error: {e.reason}") from e
        except (OSError, http.client.HTTPException) as e:
            raise ManifestFetchError(f"Connection error: {e}") from e

        try:
            if encoding == "gzip":
                body = gzip.decompress(body)
            manifest = Manifest.from_json(body)
        except (OSError, EOFError, ValueError, UnicodeDecodeError) as e:
            raise ManifestFetchError(f"Invalid manifest from {self.url}: {e}") from e

        logger.info("Remote manifest lists %d files", len(manifest))
        return manifest


__all__ = ["ManifestFetcher"]

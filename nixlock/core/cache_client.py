"""HTTP client for Nix binary caches.

Architecture
------------
1. ``lookup_narinfo`` fetches ``<cache>/<hash>.narinfo`` for a store path.
   A 404 means the path was never published and is returned as ``None``.
2. ``fetch_archive`` streams ``<cache>/<URL>`` (the compressed NAR named in
   the narinfo) back to the caller, who owns closing it.

No retries happen here; callers decide their own retry policy.
"""

from __future__ import annotations

import io
import logging
from typing import BinaryIO

import httpx

from nixlock.core.cancellation import CancellationToken, check_cancelled
from nixlock.core.narinfo import parse_narinfo
from nixlock.core.store_path import store_hash
from nixlock.models.narinfo import NarInfo

logger = logging.getLogger(__name__)

DEFAULT_CACHE_URL = "https://cache.nixos.org"
DEFAULT_METADATA_SUFFIX = "narinfo"
DEFAULT_TIMEOUT_SECONDS = 30.0


class CacheError(RuntimeError):
    """Base class for binary cache failures."""


class CacheStatusError(CacheError):
    """The cache answered with an unexpected HTTP status."""

    def __init__(self, url: str, status_code: int) -> None:
        super().__init__(f"unexpected status {status_code} for {url}")
        self.url = url
        self.status_code = status_code


class CacheTransportError(CacheError):
    """The request never produced a response (DNS, connect, read, TLS...)."""


class _ResponseStream(io.RawIOBase):
    """Raw file-like view over a streamed ``httpx.Response`` body."""

    def __init__(self, response: httpx.Response) -> None:
        self._response = response
        self._chunks = response.iter_bytes()
        self._pending = b""

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        while not self._pending:
            try:
                self._pending = next(self._chunks)
            except StopIteration:
                return 0
            except httpx.TransportError as exc:
                raise CacheTransportError(
                    f"archive download interrupted: {exc}"
                ) from exc
        count = min(len(buffer), len(self._pending))
        buffer[:count] = self._pending[:count]
        self._pending = self._pending[count:]
        return count

    def close(self) -> None:
        if not self.closed:
            self._response.close()
        super().close()


class BinaryCache:
    """Read-only client for one binary cache.

    Parameters
    ----------
    url:
        Cache root, e.g. ``https://cache.nixos.org``. A trailing ``/`` is
        ignored.
    client:
        Optional pre-built ``httpx.Client``. When omitted the cache owns a
        client and closes it in :meth:`close`.
    timeout:
        Per-request timeout in seconds for an owned client.
    metadata_suffix:
        File extension of metadata documents (``narinfo`` on real caches).
    """

    def __init__(
        self,
        url: str = DEFAULT_CACHE_URL,
        *,
        client: httpx.Client | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        metadata_suffix: str = DEFAULT_METADATA_SUFFIX,
    ) -> None:
        self.url = (url or DEFAULT_CACHE_URL).rstrip("/")
        self.metadata_suffix = metadata_suffix.lstrip(".")
        self._owns_client = client is None
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(timeout),
            follow_redirects=True,
            headers={"User-Agent": "nixlock"},
        )

    def __enter__(self) -> BinaryCache:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying HTTP client if this cache created it."""
        if self._owns_client:
            self._client.close()

    # ------------------------------------------------------------------
    # URLs
    # ------------------------------------------------------------------

    def narinfo_url(self, reference: str) -> str:
        return f"{self.url}/{store_hash(reference)}.{self.metadata_suffix}"

    def nar_url(self, relative_path: str) -> str:
        """Absolute URL of an archive named by a narinfo ``URL`` field.

        Already-absolute URLs are returned unchanged.
        """
        if relative_path.startswith(("http://", "https://")):
            return relative_path
        return f"{self.url}/{relative_path.lstrip('/')}"

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def lookup_narinfo(
        self, reference: str, cancel: CancellationToken | None = None
    ) -> NarInfo | None:
        """Fetch and parse the narinfo for *reference*.

        Returns ``None`` when the cache does not have the path. Raises
        :class:`CacheError` for any other failure and
        :class:`~nixlock.core.narinfo.NarInfoFormatError` for an
        unparseable document.
        """
        check_cancelled(cancel, f"lookup of {reference}")
        url = self.narinfo_url(reference)
        logger.debug("GET %s", url)
        try:
            response = self._client.get(url)
        except httpx.TransportError as exc:
            raise CacheTransportError(f"failed to fetch narinfo {url}: {exc}") from exc

        if response.status_code == httpx.codes.NOT_FOUND:
            return None
        if not response.is_success:
            raise CacheStatusError(url, response.status_code)
        return parse_narinfo(response.text)

    def is_cached(self, reference: str) -> bool:
        """Whether the cache publishes *reference*."""
        return self.lookup_narinfo(reference) is not None

    def fetch_archive(
        self, relative_path: str, cancel: CancellationToken | None = None
    ) -> BinaryIO:
        """Open a streaming download of an archive.

        The returned object is a buffered binary file; the caller must close
        it (it works as a context manager).
        """
        check_cancelled(cancel, f"download of {relative_path}")
        url = self.nar_url(relative_path)
        logger.debug("GET %s (streaming)", url)
        request = self._client.build_request("GET", url)
        try:
            response = self._client.send(request, stream=True)
        except httpx.TransportError as exc:
            raise CacheTransportError(f"failed to download {url}: {exc}") from exc

        if not response.is_success:
            response.close()
            raise CacheStatusError(url, response.status_code)
        return io.BufferedReader(_ResponseStream(response))

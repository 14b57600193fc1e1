"""Tests for the binary cache HTTP client (served through httpx.MockTransport)."""

from __future__ import annotations

import httpx
import pytest

from conftest import CACHE_URL, GLIBC, HELLO, make_narinfo
from nixlock.core.cache_client import (
    BinaryCache,
    CacheStatusError,
    CacheTransportError,
)
from nixlock.core.cancellation import CancellationToken, OperationCancelledError
from nixlock.core.narinfo import NarInfoFormatError


class TestUrls:
    def test_narinfo_url_uses_hash_token(self, cache):
        assert cache.narinfo_url(f"/nix/store/{HELLO}") == (
            f"{CACHE_URL}/0c9ykh1y7k0c5jh1sqlpqlmj0j6h0fdi.narinfo"
        )

    def test_trailing_slash_on_cache_url(self):
        cache = BinaryCache("https://cache.test/", client=httpx.Client())
        assert cache.nar_url("nar/a.nar.xz") == "https://cache.test/nar/a.nar.xz"

    def test_custom_metadata_suffix(self):
        cache = BinaryCache(CACHE_URL, client=httpx.Client(), metadata_suffix=".metadata")
        assert cache.narinfo_url("aaa-hello") == f"{CACHE_URL}/aaa.metadata"

    def test_absolute_archive_url_unchanged(self, cache):
        assert cache.nar_url("https://mirror.test/nar/a.nar") == "https://mirror.test/nar/a.nar"


class TestLookupNarinfo:
    def test_found(self, cache, cache_server):
        cache_server.add_narinfo(HELLO, make_narinfo(f"/nix/store/{HELLO}", [GLIBC]))
        info = cache.lookup_narinfo(HELLO)
        assert info is not None
        assert info.store_path == f"/nix/store/{HELLO}"
        assert info.references == [GLIBC]

    def test_not_found_is_none(self, cache):
        assert cache.lookup_narinfo(HELLO) is None

    def test_is_cached(self, cache, cache_server):
        cache_server.add_narinfo(HELLO, make_narinfo(f"/nix/store/{HELLO}"))
        assert cache.is_cached(HELLO)
        assert not cache.is_cached(GLIBC)

    def test_server_error_raises(self, cache, cache_server):
        cache_server.routes["/0c9ykh1y7k0c5jh1sqlpqlmj0j6h0fdi.narinfo"] = httpx.Response(500)
        with pytest.raises(CacheStatusError) as exc_info:
            cache.lookup_narinfo(HELLO)
        assert exc_info.value.status_code == 500

    def test_transport_error_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.Client(transport=httpx.MockTransport(handler))
        cache = BinaryCache(CACHE_URL, client=client)
        with pytest.raises(CacheTransportError):
            cache.lookup_narinfo(HELLO)

    def test_malformed_body_raises(self, cache, cache_server):
        cache_server.add_narinfo(HELLO, "Compression: xz\n")
        with pytest.raises(NarInfoFormatError):
            cache.lookup_narinfo(HELLO)

    def test_cancelled_before_request(self, cache, cache_server):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(OperationCancelledError):
            cache.lookup_narinfo(HELLO, token)
        assert cache_server.requests == []


class TestFetchArchive:
    def test_streams_body(self, cache, cache_server):
        payload = bytes(range(256)) * 100
        cache_server.routes["/nar/a.nar"] = payload
        with cache.fetch_archive("nar/a.nar") as stream:
            assert stream.read(10) == payload[:10]
            assert stream.read() == payload[10:]

    def test_missing_archive_is_an_error(self, cache):
        with pytest.raises(CacheStatusError) as exc_info:
            cache.fetch_archive("nar/missing.nar")
        assert exc_info.value.status_code == 404


class TestLifecycle:
    def test_shared_client_not_closed(self, cache_server):
        client = cache_server.client()
        with BinaryCache(CACHE_URL, client=client):
            pass
        assert not client.is_closed
        client.close()

    def test_owned_client_closed(self):
        cache = BinaryCache(CACHE_URL)
        cache.close()
        assert cache._client.is_closed

"""Shared test fixtures for nixlock."""

from __future__ import annotations

import struct
from collections.abc import Iterable, Iterator
from pathlib import Path

import httpx
import pytest

from nixlock.core.cache_client import BinaryCache
from nixlock.core.lock_store import LockStore

CACHE_URL = "https://cache.test"

# Store path basenames used across tests (32 nix base-32 chars + name).
HELLO = "0c9ykh1y7k0c5jh1sqlpqlmj0j6h0fdi-hello-2.12"
GLIBC = "1i5ah27gxx3a3fyjyydfwwzqq8ni33i8-glibc-2.37"
LIBIDN = "2xvm7j5dx0g3msxmk5lgy2d95j1nm8a5-libidn2-2.3.4"
LOCALE = "3y3vqqrk1aq95hxvbqjs4x0qa9s7fgvv-locale"


# ---------------------------------------------------------------------------
# NAR byte builder
# ---------------------------------------------------------------------------


def _token(value: str | bytes) -> bytes:
    data = value.encode("utf-8") if isinstance(value, str) else value
    return struct.pack("<Q", len(data)) + data + b"\0" * ((8 - len(data) % 8) % 8)


class NarBuilder:
    """Builds NAR byte strings from nested node descriptions.

    Nodes are token lists; ``archive`` prepends the magic and encodes them.
    """

    @staticmethod
    def regular(contents: bytes = b"", executable: bool = False) -> list:
        tokens: list = ["(", "type", "regular"]
        if executable:
            tokens += ["executable", ""]
        tokens += ["contents", contents, ")"]
        return tokens

    @staticmethod
    def symlink(target: str) -> list:
        return ["(", "type", "symlink", "target", target, ")"]

    @staticmethod
    def directory(entries: dict[str, list]) -> list:
        tokens: list = ["(", "type", "directory"]
        for name in sorted(entries):
            tokens += ["entry", "(", "name", name, "node", *entries[name], ")"]
        tokens.append(")")
        return tokens

    @staticmethod
    def encode(tokens: Iterable[str | bytes]) -> bytes:
        return b"".join(_token(token) for token in tokens)

    def archive(self, node: list) -> bytes:
        return self.encode(["nix-archive-1", *node])


@pytest.fixture
def nar() -> NarBuilder:
    """Provide a NAR byte builder."""
    return NarBuilder()


# ---------------------------------------------------------------------------
# narinfo documents
# ---------------------------------------------------------------------------


def make_narinfo(
    store_path: str,
    references: Iterable[str] = (),
    *,
    url: str | None = None,
    compression: str = "xz",
    file_hash: str = "sha256:" + "0" * 52,
    file_size: int = 1024,
) -> str:
    """Render a minimal, well-formed narinfo document."""
    base = store_path.rsplit("/", 1)[-1]
    hash_token = base.split("-", 1)[0]
    return "\n".join([
        f"StorePath: {store_path}",
        f"URL: {url or f'nar/{hash_token}.nar.{compression}'}",
        f"Compression: {compression}",
        f"FileHash: {file_hash}",
        f"FileSize: {file_size}",
        "NarHash: sha256:" + "1" * 52,
        "NarSize: 4096",
        f"References: {' '.join(references)}",
        "",
    ])


# ---------------------------------------------------------------------------
# Binary cache backed by an in-memory route table
# ---------------------------------------------------------------------------


class FakeCacheServer:
    """Serves ``path -> body`` routes through ``httpx.MockTransport``.

    Unknown paths answer 404. ``requests`` records every requested path in
    arrival order.
    """

    def __init__(self) -> None:
        self.routes: dict[str, httpx.Response | str | bytes] = {}
        self.requests: list[str] = []

    def add_narinfo(self, store_path: str, text: str) -> None:
        hash_token = store_path.rsplit("/", 1)[-1].split("-", 1)[0]
        self.routes[f"/{hash_token}.narinfo"] = text

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requests.append(path)
        route = self.routes.get(path)
        if route is None:
            return httpx.Response(404, text="404 Not Found")
        if isinstance(route, httpx.Response):
            return route
        if isinstance(route, str):
            return httpx.Response(200, text=route)
        return httpx.Response(200, content=route)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def cache_server() -> FakeCacheServer:
    """Provide an empty fake cache server."""
    return FakeCacheServer()


@pytest.fixture
def cache(cache_server: FakeCacheServer) -> Iterator[BinaryCache]:
    """Provide a BinaryCache talking to the fake server."""
    client = cache_server.client()
    yield BinaryCache(CACHE_URL, client=client)
    client.close()


@pytest.fixture
def lock_store(tmp_path: Path) -> LockStore:
    """Provide an empty LockStore that saves into a temp directory."""
    return LockStore(tmp_path / "nix.lock", cache_url=CACHE_URL)

"""Tests for build resolution and materialization."""

from __future__ import annotations

import lzma

import pytest

from conftest import CACHE_URL, GLIBC, HELLO, LIBIDN, make_narinfo
from nixlock.core.narinfo import parse_narinfo
from nixlock.core.resolver import (
    NotInCacheError,
    Resolver,
    dependency_label,
    store_paths_in_env,
)


@pytest.fixture
def resolver(cache, lock_store):
    return Resolver(cache, lock_store)


@pytest.fixture
def published(cache_server):
    cache_server.add_narinfo(HELLO, make_narinfo(f"/nix/store/{HELLO}", [HELLO, GLIBC]))
    cache_server.add_narinfo(GLIBC, make_narinfo(f"/nix/store/{GLIBC}", [GLIBC, LIBIDN]))
    cache_server.add_narinfo(LIBIDN, make_narinfo(f"/nix/store/{LIBIDN}"))
    return cache_server


class TestEnvHelpers:
    def test_store_paths_in_env(self):
        env = {
            "PATH": f"/nix/store/{HELLO}/bin:/usr/bin:/nix/store/{GLIBC}/bin",
            "HOME": "/home/user",
            "LD_LIBRARY_PATH": f"/nix/store/{GLIBC}/lib",
        }
        assert store_paths_in_env(env) == [f"/nix/store/{GLIBC}", f"/nix/store/{HELLO}"]

    def test_dependency_label(self):
        assert dependency_label(f"/nix/store/{HELLO}") == (
            "@nix_cache//:s_0c9ykh1y7k0c5jh1sqlpqlmj0j6h0fdi"
        )
        assert dependency_label(HELLO, "deps").startswith("@deps//:s_")


class TestResolveBuild:
    def test_closure_recorded(self, resolver, published, lock_store):
        record = resolver.resolve_build(
            "//pkg:hello", f"/nix/store/{HELLO}", drv_hash="sha256:abc", executable="bin/hello"
        )
        assert record.closure == [
            f"/nix/store/{HELLO}",
            f"/nix/store/{GLIBC}",
            f"/nix/store/{LIBIDN}",
        ]
        assert lock_store.get_build_record("//pkg:hello") == record
        assert lock_store.missing_references(record.closure) == []

    def test_placeholder_output_gets_empty_closure(self, resolver, cache_server):
        record = resolver.resolve_build("//pkg:broken", "<eval-failed>")
        assert record.closure == []
        assert cache_server.requests == []

    def test_uncached_output_still_recorded(self, resolver, lock_store):
        record = resolver.resolve_build("//pkg:local", f"/nix/store/{HELLO}")
        assert record.closure == [f"/nix/store/{HELLO}"]
        assert lock_store.missing_references(record.closure) == [f"/nix/store/{HELLO}"]


class TestResolveEnvDependencies:
    def test_uncached_paths_skipped(self, resolver, published):
        env = {"PATH": f"/nix/store/{HELLO}/bin:/nix/store/{'9' * 32}-local/bin"}
        labels = resolver.resolve_env_dependencies(env)
        assert labels == [dependency_label(HELLO)]


class TestMaterialize:
    def test_fetch_and_unpack(self, resolver, cache_server, nar, tmp_path):
        archive = lzma.compress(nar.archive(nar.directory({"bin": nar.directory({
            "hello": nar.regular(b"ELF", executable=True),
        })})))
        cache_server.add_narinfo(
            HELLO, make_narinfo(f"/nix/store/{HELLO}", url="nar/hello.nar.xz")
        )
        cache_server.routes["/nar/hello.nar.xz"] = archive

        dest = resolver.materialize(f"/nix/store/{HELLO}", tmp_path / "hello")
        assert (dest / "bin" / "hello").read_bytes() == b"ELF"

    def test_uses_existing_record(self, resolver, cache_server, lock_store, nar, tmp_path):
        lock_store.upsert_cache_record(
            parse_narinfo(make_narinfo(f"/nix/store/{HELLO}", url="nar/h.nar", compression="none"))
        )
        cache_server.routes["/nar/h.nar"] = nar.archive(nar.regular(b"x"))
        resolver.materialize(f"/nix/store/{HELLO}", tmp_path / "h")
        assert cache_server.requests == ["/nar/h.nar"]

    def test_not_in_cache(self, resolver, tmp_path):
        with pytest.raises(NotInCacheError, match=CACHE_URL):
            resolver.materialize(f"/nix/store/{HELLO}", tmp_path / "hello")

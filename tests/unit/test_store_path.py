"""Tests for store path helpers."""

from __future__ import annotations

from nixlock.core.store_path import (
    STORE_PATH_PATTERN,
    is_store_path,
    resolve_reference,
    store_hash,
    store_name,
)

HELLO = "/nix/store/0c9ykh1y7k0c5jh1sqlpqlmj0j6h0fdi-hello-2.12"


class TestStoreHash:
    def test_absolute_path(self):
        assert store_hash(HELLO) == "0c9ykh1y7k0c5jh1sqlpqlmj0j6h0fdi"

    def test_basename(self):
        assert store_hash("aaa-hello") == "aaa"

    def test_malformed_reference_used_whole(self):
        assert store_hash("nohyphen") == "nohyphen"
        assert store_hash("-leading") == "-leading"


class TestStoreName:
    def test_name_with_hyphens(self):
        assert store_name(HELLO) == "hello-2.12"

    def test_malformed_reference_used_whole(self):
        assert store_name("nohyphen") == "nohyphen"


class TestResolveReference:
    def test_basename_promoted_next_to_absolute_parent(self):
        assert resolve_reference("bbb-dep", "/nix/store/aaa-hello") == "/nix/store/bbb-dep"

    def test_basename_stays_basename(self):
        assert resolve_reference("bbb-dep", "aaa-hello") == "bbb-dep"

    def test_absolute_reference_unchanged(self):
        assert resolve_reference("/nix/store/bbb-dep", "aaa-hello") == "/nix/store/bbb-dep"

    def test_custom_store_dir_preserved(self):
        assert resolve_reference("bbb-dep", "/store/aaa-hello") == "/store/bbb-dep"


class TestStorePathDetection:
    def test_is_store_path(self):
        assert is_store_path(HELLO)
        assert not is_store_path("aaa-hello")
        assert not is_store_path("/usr/bin/hello")

    def test_pattern_finds_embedded_paths(self):
        value = f"{HELLO}/bin:/usr/bin"
        matches = [m.group(1) for m in STORE_PATH_PATTERN.finditer(value)]
        assert matches == ["0c9ykh1y7k0c5jh1sqlpqlmj0j6h0fdi-hello-2.12"]

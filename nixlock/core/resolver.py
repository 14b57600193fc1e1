"""Build resolution and materialization on top of the crawler and lock store.

``Resolver.resolve_build`` is what a build-rule generator calls once it knows
a target's output store path: the output's closure is crawled and the build
record replaced. ``Resolver.materialize`` turns a store path into files on
disk by downloading and unpacking its archive.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from pathlib import Path

from nixlock.core.cache_client import BinaryCache
from nixlock.core.cancellation import CancellationToken, check_cancelled
from nixlock.core.crawler import ClosureCrawler
from nixlock.core.decompress import unpack_compressed_nar
from nixlock.core.lock_store import LockStore
from nixlock.core.nar import ExtractionPolicy
from nixlock.core.store_path import STORE_PATH_PATTERN, STORE_DIR, is_store_path, store_hash
from nixlock.models.lockfile import CacheEntry, FlakeInfo

logger = logging.getLogger(__name__)

DEFAULT_CACHE_REPO = "nix_cache"


class NotInCacheError(LookupError):
    """Raised when a store path that must be fetched is not published."""


def store_paths_in_env(env: Mapping[str, str]) -> list[str]:
    """Every store path mentioned in environment values.

    Variables are scanned in name order; each path is listed once, at its
    first occurrence.

    Scans all variables (``PATH``, ``JAVA_HOME``, ``LD_LIBRARY_PATH``...),
    so a shell environment's runtime dependencies can be found without
    knowing which variables carry them.
    """
    seen: dict[str, None] = {}
    for name in sorted(env):
        for match in STORE_PATH_PATTERN.finditer(env[name]):
            seen.setdefault(f"{STORE_DIR}/{match.group(1)}", None)
    return list(seen)


def dependency_label(store_path: str, cache_repo: str = DEFAULT_CACHE_REPO) -> str:
    """Label under which a cached store path is exposed to the build."""
    return f"@{cache_repo}//:s_{store_hash(store_path)}"


class Resolver:
    """Ties a binary cache, a lock store and a crawler together."""

    def __init__(
        self,
        cache: BinaryCache,
        lock_store: LockStore,
        *,
        crawler: ClosureCrawler | None = None,
    ) -> None:
        self._cache = cache
        self._lock_store = lock_store
        self._crawler = crawler or ClosureCrawler(cache, lock_store)

    @property
    def lock_store(self) -> LockStore:
        return self._lock_store

    def resolve_build(
        self,
        label: str,
        output_store_path: str,
        *,
        drv_hash: str = "",
        deps: Iterable[str] = (),
        executable: str = "",
        env: Mapping[str, str] | None = None,
        cancel: CancellationToken | None = None,
    ) -> FlakeInfo:
        """Crawl the output's closure and replace the build record for *label*.

        Outputs that are not absolute store paths (placeholders from a
        failed evaluation) get an empty closure.
        """
        closure: list[str] = []
        if output_store_path and is_store_path(output_store_path):
            result = self._crawler.crawl_detailed(output_store_path, cancel)
            if output_store_path in result.unresolved:
                logger.warning(
                    "Output %s of %s is not in the cache: %s",
                    output_store_path,
                    label,
                    result.unresolved[output_store_path],
                )
            closure = result.closure

        return self._lock_store.upsert_build_record(
            label,
            output_store_path=output_store_path,
            drv_hash=drv_hash,
            deps=deps,
            executable=executable,
            env=env,
            closure=closure,
        )

    def resolve_env_dependencies(
        self,
        env: Mapping[str, str],
        *,
        cache_repo: str = DEFAULT_CACHE_REPO,
        cancel: CancellationToken | None = None,
    ) -> list[str]:
        """Crawl every cached store path found in *env*; return their labels.

        Paths the cache does not publish are skipped.
        """
        labels: list[str] = []
        for store_path in store_paths_in_env(env):
            result = self._crawler.crawl_detailed(store_path, cancel)
            if store_path in result.unresolved:
                logger.debug("Skipping uncached env path %s", store_path)
                continue
            labels.append(dependency_label(store_path, cache_repo))
        return labels

    def cache_record(
        self, store_path: str, cancel: CancellationToken | None = None
    ) -> CacheEntry:
        """The lock record for *store_path*, looking it up if missing."""
        entry = self._lock_store.get_cache_record(store_path)
        if entry is not None:
            return entry
        info = self._cache.lookup_narinfo(store_path, cancel)
        if info is None:
            raise NotInCacheError(f"{store_path} is not in cache {self._cache.url}")
        return self._lock_store.upsert_cache_record(info)

    def materialize(
        self,
        store_path: str,
        destination: Path | str,
        *,
        policy: ExtractionPolicy | None = None,
        cancel: CancellationToken | None = None,
    ) -> Path:
        """Download and unpack *store_path* into *destination*."""
        entry = self.cache_record(store_path, cancel)
        check_cancelled(cancel, f"materialization of {store_path}")

        destination = Path(destination)
        logger.info("Fetching %s into %s", store_path, destination)
        with self._cache.fetch_archive(entry.nar_url, cancel) as stream:
            unpack_compressed_nar(stream, entry.compression, destination, policy)
        return destination

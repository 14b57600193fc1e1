"""Closure crawler: breadth-first walk of the store path reference graph.

For every store path reached from the root, the crawler fetches its narinfo,
records it in the lock store and follows its ``References``. The reference
graph may contain cycles (store paths commonly reference themselves); the
visited set guarantees every path is looked up at most once per crawl.

A path the cache does not publish, or whose lookup fails, does not stop the
crawl by default. It stays in the closure, is reported in
:attr:`CrawlResult.unresolved` and simply has no lockfile record.
"""

from __future__ import annotations

import logging
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field

from nixlock.core.cache_client import CacheError
from nixlock.core.cancellation import (
    CancellationToken,
    OperationCancelledError,
)
from nixlock.core.lock_store import LockStore
from nixlock.core.narinfo import NarInfoFormatError
from nixlock.core.store_path import resolve_reference
from nixlock.models.narinfo import NarInfo

logger = logging.getLogger(__name__)


class UnresolvedReferenceError(RuntimeError):
    """Raised in strict mode when a closure member cannot be resolved."""

    def __init__(self, reference: str, reason: str) -> None:
        super().__init__(f"cannot resolve {reference}: {reason}")
        self.reference = reference
        self.reason = reason


class CrawlCancelledError(OperationCancelledError):
    """Raised when a crawl is abandoned through its cancellation token."""


class MetadataSource(Protocol):
    """Anything that can look up narinfo records (normally a BinaryCache)."""

    def lookup_narinfo(
        self, reference: str, cancel: CancellationToken | None = None
    ) -> NarInfo | None: ...


class CrawlPolicy(BaseModel):
    """Crawl failure handling.

    ``continue_on_unresolved_reference`` keeps walking past paths whose
    metadata is absent or fails to load; when ``False`` the first such
    path raises :class:`UnresolvedReferenceError`.
    """

    model_config = ConfigDict(frozen=True)

    continue_on_unresolved_reference: bool = True


class CrawlResult(BaseModel):
    """Outcome of one crawl."""

    model_config = ConfigDict(frozen=True)

    root: str
    closure: list[str] = Field(default_factory=list)  # discovery order
    resolved: list[str] = Field(default_factory=list)
    unresolved: dict[str, str] = Field(default_factory=dict)  # reference -> reason

    @property
    def complete(self) -> bool:
        return not self.unresolved


class ClosureCrawler:
    """Breadth-first closure resolver backed by a binary cache.

    Parameters
    ----------
    cache:
        Source of narinfo records.
    lock_store:
        Receives one cache record per resolved path.
    max_workers:
        Number of concurrent lookups per BFS frontier. The closure order is
        the same for any value.
    policy:
        Failure handling, see :class:`CrawlPolicy`.
    """

    def __init__(
        self,
        cache: MetadataSource,
        lock_store: LockStore,
        *,
        max_workers: int = 1,
        policy: CrawlPolicy | None = None,
    ) -> None:
        self._cache = cache
        self._lock_store = lock_store
        self._max_workers = max(1, max_workers)
        self._policy = policy or CrawlPolicy()

    def crawl(self, root: str, cancel: CancellationToken | None = None) -> list[str]:
        """Return the closure of *root* in breadth-first discovery order."""
        return self.crawl_detailed(root, cancel).closure

    def crawl_detailed(
        self, root: str, cancel: CancellationToken | None = None
    ) -> CrawlResult:
        """Crawl *root* and report which closure members were resolved."""
        queue: deque[str] = deque([root])
        visited: set[str] = set()
        closure: list[str] = []
        resolved: list[str] = []
        unresolved: dict[str, str] = {}

        with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
            while queue:
                self._check_cancelled(cancel, root)

                # Drain the queue into one frontier, skipping repeats.
                frontier: list[str] = []
                while queue:
                    reference = queue.popleft()
                    if reference in visited:
                        continue
                    visited.add(reference)
                    closure.append(reference)
                    frontier.append(reference)

                if self._max_workers == 1:
                    lookups = (self._lookup(ref, cancel) for ref in frontier)
                else:
                    lookups = pool.map(lambda ref: self._lookup(ref, cancel), frontier)

                for reference, info, reason in lookups:
                    if info is None:
                        logger.warning("Could not resolve %s: %s", reference, reason)
                        if not self._policy.continue_on_unresolved_reference:
                            raise UnresolvedReferenceError(reference, reason)
                        unresolved[reference] = reason
                        continue

                    self._lock_store.upsert_cache_record(info)
                    resolved.append(reference)
                    for raw in info.references:
                        child = resolve_reference(raw, reference)
                        if child != reference and child not in visited:
                            queue.append(child)

        logger.info(
            "Crawled %s: %d path(s), %d unresolved.",
            root,
            len(closure),
            len(unresolved),
        )
        return CrawlResult(
            root=root, closure=closure, resolved=resolved, unresolved=unresolved
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _check_cancelled(cancel: CancellationToken | None, root: str) -> None:
        if cancel is not None and cancel.is_cancelled():
            raise CrawlCancelledError(f"crawl of {root} cancelled")

    def _lookup(
        self, reference: str, cancel: CancellationToken | None
    ) -> tuple[str, NarInfo | None, str]:
        """Look up one path; errors become a reason string."""
        self._check_cancelled(cancel, reference)
        try:
            info = self._cache.lookup_narinfo(reference, cancel)
        except OperationCancelledError as exc:
            raise CrawlCancelledError(str(exc)) from exc
        except (CacheError, NarInfoFormatError) as exc:
            return reference, None, str(exc)
        if info is None:
            return reference, None, "not found in cache"
        return reference, info, ""

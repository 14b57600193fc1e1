"""Durable lockfile (``nix.lock``) store.

The lock store owns the in-memory index and its single lock. Every mutation
and every save goes through the store so concurrent crawls and concurrent
build resolution never interleave a partial write or persist a torn view.

Design:
- Records are built fully in memory, then installed with one assignment.
- Upserts replace whole records; nothing is merged field by field.
- Saves are deterministic (sorted keys) and atomic (temp file + replace).
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from nixlock.core.cache_client import DEFAULT_CACHE_URL
from nixlock.core.hasher import content_address, normalize_digest
from nixlock.models.lockfile import (
    CacheEntry,
    FlakeInfo,
    LockFile,
    SourceInfo,
)
from nixlock.models.narinfo import NarInfo

logger = logging.getLogger(__name__)

DEFAULT_LOCK_PATH = Path("nix.lock")

# Keys left out of the JSON document when empty.
_OPTIONAL_ENTRY_KEYS = {"references"}
_OPTIONAL_FLAKE_KEYS = {"deps", "executable", "env", "runtime_closure"}
_OPTIONAL_SOURCE_KEYS = {"sha256", "integrity", "downloaded_file_path"}


class LockFileError(RuntimeError):
    """Raised when the lockfile cannot be read or written."""


def _compact(data: dict[str, Any], optional: set[str]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if k not in optional or v}


def _archive_url(url: str, cache_url: str) -> str:
    if url.startswith(("http://", "https://")):
        return url
    return f"{cache_url.rstrip('/')}/{url.lstrip('/')}"


def cache_entry_from_narinfo(info: NarInfo, cache_url: str = DEFAULT_CACHE_URL) -> CacheEntry:
    """Build the lockfile record for a narinfo.

    The compressed-file digest is converted to hex; a digest that does not
    decode is kept in its published encoding.
    """
    return CacheEntry(
        store_path=info.store_path,
        nar_url=_archive_url(info.url, cache_url),
        nar_hash=normalize_digest(info.file_hash) if info.file_hash else "",
        file_size=info.file_size,
        compression=info.compression,
        references=list(info.references),
    )


class LockStore:
    """Thread-safe owner of one lockfile.

    Parameters
    ----------
    path:
        Default location used by :meth:`save`.
    lockfile:
        Initial contents; an empty version-1 index when omitted.
    cache_url:
        Cache root used to turn narinfo ``URL`` fields into absolute
        archive URLs.
    """

    def __init__(
        self,
        path: Path | str | None = None,
        lockfile: LockFile | None = None,
        *,
        cache_url: str = DEFAULT_CACHE_URL,
    ) -> None:
        initial = lockfile or LockFile()
        self._path = Path(path) if path is not None else None
        self._cache_url = cache_url
        self._lock = threading.RLock()
        self._version = initial.version
        self._nixpkgs_commit = initial.nixpkgs_commit
        self._flakes: dict[str, FlakeInfo] = dict(initial.flakes)
        self._sources: dict[str, SourceInfo] = dict(initial.sources)
        self._store_paths: dict[str, CacheEntry] = dict(initial.store_paths)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @classmethod
    def load(
        cls, path: Path | str = DEFAULT_LOCK_PATH, *, cache_url: str = DEFAULT_CACHE_URL
    ) -> LockStore:
        """Load a lockfile; a missing or empty file yields a fresh index."""
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("No lockfile at %s, starting fresh.", path)
            return cls(path, cache_url=cache_url)
        except OSError as exc:
            raise LockFileError(f"cannot read lockfile {path}: {exc}") from exc

        if not text.strip():
            return cls(path, cache_url=cache_url)

        try:
            raw = json.loads(text)
            if not isinstance(raw, dict):
                raise LockFileError(f"lockfile {path} is not a JSON object")
            # Maps may be serialized as null by older writers.
            for key in ("flakes", "sources", "store_paths"):
                raw[key] = raw.get(key) or {}
            lockfile = LockFile.model_validate(raw)
        except (json.JSONDecodeError, ValidationError) as exc:
            raise LockFileError(f"invalid lockfile {path}: {exc}") from exc

        logger.info(
            "Loaded lockfile %s (%d store path(s), %d build(s)).",
            path,
            len(lockfile.store_paths),
            len(lockfile.flakes),
        )
        return cls(path, lockfile, cache_url=cache_url)

    # ------------------------------------------------------------------
    # Mutations (all under the store lock)
    # ------------------------------------------------------------------

    def upsert_cache_record(self, info: NarInfo) -> CacheEntry:
        """Install or replace the record for ``info.store_path``."""
        entry = cache_entry_from_narinfo(info, self._cache_url)
        with self._lock:
            self._store_paths[entry.store_path] = entry
        return entry

    def upsert_build_record(
        self,
        label: str,
        *,
        output_store_path: str,
        drv_hash: str = "",
        deps: Iterable[str] = (),
        executable: str = "",
        env: Mapping[str, str] | None = None,
        closure: Iterable[str] = (),
    ) -> FlakeInfo:
        """Install or replace the build record for *label*."""
        record = FlakeInfo(
            drv_hash=drv_hash,
            deps=list(deps),
            output_store_path=output_store_path,
            executable=executable,
            env=dict(env or {}),
            closure=list(closure),
        )
        with self._lock:
            self._flakes[label] = record
        return record

    def upsert_source(self, label: str, source: SourceInfo) -> None:
        with self._lock:
            self._sources[label] = source

    def set_pinned_revision(self, commit: str) -> bool:
        """Pin the upstream package-set revision. Returns whether it changed."""
        with self._lock:
            if self._nixpkgs_commit == commit:
                return False
            self._nixpkgs_commit = commit
            return True

    # ------------------------------------------------------------------
    # Reads (immutable values or copies)
    # ------------------------------------------------------------------

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def version(self) -> int:
        return self._version

    @property
    def nixpkgs_commit(self) -> str:
        with self._lock:
            return self._nixpkgs_commit

    def get_cache_record(self, store_path: str) -> CacheEntry | None:
        with self._lock:
            return self._store_paths.get(store_path)

    def get_build_record(self, label: str) -> FlakeInfo | None:
        with self._lock:
            return self._flakes.get(label)

    def get_source(self, label: str) -> SourceInfo | None:
        with self._lock:
            return self._sources.get(label)

    def store_paths(self) -> dict[str, CacheEntry]:
        with self._lock:
            return dict(self._store_paths)

    def missing_references(self, closure: Iterable[str]) -> list[str]:
        """Closure members that have no cache record.

        Consumers must resolve these some other way; the crawler leaves them
        out when the cache does not publish them.
        """
        with self._lock:
            return [ref for ref in closure if ref not in self._store_paths]

    def snapshot(self) -> LockFile:
        """Return a consistent, immutable copy of the whole index."""
        with self._lock:
            return LockFile(
                version=self._version,
                nixpkgs_commit=self._nixpkgs_commit,
                flakes=dict(self._flakes),
                sources=dict(self._sources),
                store_paths=dict(self._store_paths),
            )

    def digest(self) -> str:
        """Content address of the index (``"sha256:<hex>"``).

        Two stores with the same records have the same digest regardless of
        insertion order.
        """
        return content_address(self.snapshot().model_dump(mode="json", by_alias=True))

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_json(self) -> str:
        """Serialize deterministically: sorted keys, empty optionals omitted."""
        lockfile = self.snapshot()
        document: dict[str, Any] = {
            "version": lockfile.version,
            "flakes": {
                label: _compact(record.model_dump(by_alias=True), _OPTIONAL_FLAKE_KEYS)
                for label, record in lockfile.flakes.items()
            },
            "sources": {
                label: _compact(record.model_dump(by_alias=True), _OPTIONAL_SOURCE_KEYS)
                for label, record in lockfile.sources.items()
            },
            "store_paths": {
                key: _compact(record.model_dump(), _OPTIONAL_ENTRY_KEYS)
                for key, record in lockfile.store_paths.items()
            },
        }
        if lockfile.nixpkgs_commit:
            document["nixpkgs_commit"] = lockfile.nixpkgs_commit
        return json.dumps(document, indent=2, sort_keys=True) + "\n"

    def save(self, path: Path | str | None = None) -> Path:
        """Atomically write the lockfile to *path* (default: the load path)."""
        target = Path(path) if path is not None else self._path
        if target is None:
            raise LockFileError("no lockfile path given")

        with self._lock:
            payload = self.to_json()
            count = len(self._store_paths)
            temp_name: str | None = None
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                with tempfile.NamedTemporaryFile(
                    "w",
                    encoding="utf-8",
                    dir=str(target.parent),
                    prefix=f".{target.name}.",
                    delete=False,
                ) as handle:
                    temp_name = handle.name
                    handle.write(payload)
                    handle.flush()
                    os.fsync(handle.fileno())
                os.chmod(temp_name, 0o644)
                Path(temp_name).replace(target)
            except OSError as exc:
                if temp_name is not None:
                    Path(temp_name).unlink(missing_ok=True)
                raise LockFileError(f"cannot write lockfile {target}: {exc}") from exc

        logger.info("Saved lockfile %s (%d store path(s)).", target, count)
        return target

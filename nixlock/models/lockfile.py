"""Lockfile (``nix.lock``) models.

The lockfile is the durable index produced by closure crawls and build
resolution. Field aliases are the on-disk JSON names; they are stable and
must not change between releases.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

LOCKFILE_VERSION = 1


class CacheEntry(BaseModel):
    """Cached facts about one store path, keyed by the store path itself."""

    model_config = ConfigDict(frozen=True)

    store_path: str
    nar_url: str  # absolute archive URL
    nar_hash: str  # "sha256:<hex>", or "sha256:<raw>" when not convertible
    file_size: int = 0
    compression: str = ""
    references: list[str] = Field(default_factory=list)


class FlakeInfo(BaseModel):
    """Resolved facts about one build target.

    ``runtime_closure`` is an ordered list of keys into the lockfile's
    ``store_paths`` mapping. Records are replaced as a whole, never merged.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    drv_hash: str = ""
    deps: list[str] = Field(default_factory=list)
    output_store_path: str = ""
    executable: str = ""
    env: dict[str, str] = Field(default_factory=dict)
    closure: list[str] = Field(default_factory=list, alias="runtime_closure")


class SourceInfo(BaseModel):
    """An external source download pinned by URL and digest."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    urls: list[str]
    sha256: str = ""
    integrity: str = ""
    path: str = Field(default="", alias="downloaded_file_path")


class LockFile(BaseModel):
    """Immutable view of the whole lockfile."""

    model_config = ConfigDict(frozen=True)

    version: int = LOCKFILE_VERSION
    nixpkgs_commit: str = ""
    flakes: dict[str, FlakeInfo] = Field(default_factory=dict)
    sources: dict[str, SourceInfo] = Field(default_factory=dict)
    store_paths: dict[str, CacheEntry] = Field(default_factory=dict)

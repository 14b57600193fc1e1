"""nixlock data models — all Pydantic v2, all frozen (immutable)."""

from nixlock.models.archive import (
    ArchiveEntry,
    Directory,
    DirectoryEntry,
    RegularFile,
    Symlink,
)
from nixlock.models.lockfile import (
    LOCKFILE_VERSION,
    CacheEntry,
    FlakeInfo,
    LockFile,
    SourceInfo,
)
from nixlock.models.narinfo import NarInfo

__all__ = [
    # narinfo
    "NarInfo",
    # lockfile
    "LOCKFILE_VERSION",
    "CacheEntry",
    "FlakeInfo",
    "SourceInfo",
    "LockFile",
    # archive
    "ArchiveEntry",
    "RegularFile",
    "Directory",
    "DirectoryEntry",
    "Symlink",
]

"""Store path helpers.

A store path is ``/nix/store/<hash>-<name>``; binary cache metadata refers to
other paths by basename only (``<hash>-<name>``). Both forms are accepted
everywhere a reference is expected.
"""

from __future__ import annotations

import posixpath
import re

STORE_DIR = "/nix/store"

# 32 nix base-32 characters followed by a name, as embedded in env values.
STORE_PATH_PATTERN = re.compile(r"/nix/store/([0-9a-df-np-sv-z]{32}-[^/:\s]+)")


def _basename(reference: str) -> str:
    return reference.rstrip("/").rsplit("/", 1)[-1]


def store_hash(reference: str) -> str:
    """Return the hash token of a store reference.

    ``/nix/store/abc123-hello-2.12`` -> ``abc123``. A reference without a
    separator is returned whole.
    """
    base = _basename(reference)
    index = base.find("-")
    if index > 0:
        return base[:index]
    return base


def store_name(reference: str) -> str:
    """Return the name part of a store reference.

    ``/nix/store/abc123-hello-2.12`` -> ``hello-2.12``.
    """
    base = _basename(reference)
    index = base.find("-")
    if 0 < index < len(base) - 1:
        return base[index + 1:]
    return base


def resolve_reference(reference: str, relative_to: str) -> str:
    """Put a metadata reference in the same form as the path that listed it.

    References in ``.narinfo`` files are basenames. When crawling from an
    absolute store path they are promoted into that path's store directory;
    when crawling from a basename they stay basenames.
    """
    if not reference or reference.startswith("/"):
        return reference
    if relative_to.startswith("/"):
        return posixpath.join(posixpath.dirname(relative_to), reference)
    return reference


def is_store_path(path: str, store_dir: str = STORE_DIR) -> bool:
    """Whether *path* is an absolute path inside *store_dir*."""
    return path.startswith(store_dir.rstrip("/") + "/")

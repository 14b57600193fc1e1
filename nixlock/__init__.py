"""nixlock: Nix binary cache client and lockfile generator.

Resolves the runtime closure of store paths against an HTTP binary cache,
records the result in a deterministic ``nix.lock`` and unpacks NAR
archives onto disk without a Nix installation.
"""

__version__ = "0.1.0"
__description__ = "Nix binary cache client, closure crawler and lockfile store"

from nixlock.core.cache_client import BinaryCache
from nixlock.core.crawler import ClosureCrawler
from nixlock.core.lock_store import LockStore
from nixlock.core.resolver import Resolver
from nixlock.cli.app import app as cli

__all__ = ["BinaryCache", "ClosureCrawler", "LockStore", "Resolver", "cli", "__version__"]

"""Runtime configuration — env-driven.

Centralized settings using pydantic-settings. Values come from ``NIXLOCK_*``
environment variables or a ``.env`` file in the working directory.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from nixlock.core.cache_client import (
    DEFAULT_CACHE_URL,
    DEFAULT_METADATA_SUFFIX,
    DEFAULT_TIMEOUT_SECONDS,
)
from nixlock.core.nar import ExtractionPolicy
from nixlock.core.store_path import STORE_DIR


class NixlockConfig(BaseSettings):
    """Settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export NIXLOCK_CACHE_URL=https://nix-cache.example.com
        export NIXLOCK_LOCK_PATH=third_party/nix.lock
        export NIXLOCK_MAX_WORKERS=8
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="NIXLOCK_",
        env_file_encoding="utf-8",
    )

    log_level: str = "INFO"

    # Binary cache
    cache_url: str = DEFAULT_CACHE_URL
    metadata_suffix: str = DEFAULT_METADATA_SUFFIX
    http_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS

    # Lockfile
    lock_path: Path = Path("nix.lock")

    # Crawling
    max_workers: int = 1
    continue_on_unresolved_reference: bool = True

    # Extraction
    store_dir: str = STORE_DIR
    skip_store_symlinks: bool = True
    skip_dangling_symlinks: bool = True

    def extraction_policy(self) -> ExtractionPolicy:
        """The archive extraction policy these settings describe."""
        return ExtractionPolicy(
            skip_store_symlinks=self.skip_store_symlinks,
            skip_dangling_symlinks=self.skip_dangling_symlinks,
            store_dir=self.store_dir,
        )


# Module-level singleton; import as `from nixlock.config import config`
config = NixlockConfig()

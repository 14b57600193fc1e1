"""Parsed binary cache metadata (``.narinfo``) model."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class NarInfo(BaseModel):
    """Description of one cached store path as published by a binary cache.

    ``store_path`` and ``url`` are mandatory; the parser rejects a document
    that lacks either instead of defaulting them.
    """

    model_config = ConfigDict(frozen=True)

    store_path: str  # "/nix/store/<hash>-<name>"
    url: str  # archive location, relative to the cache root
    compression: str = ""
    file_hash: str = ""  # "sha256:<nix-base32>" of the compressed archive
    file_size: int = 0
    nar_hash: str = ""  # "sha256:<nix-base32>" of the uncompressed archive
    nar_size: int = 0
    references: list[str] = Field(default_factory=list)  # store path basenames
    deriver: str = ""
    signatures: list[str] = Field(default_factory=list)

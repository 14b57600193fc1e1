"""Digest helpers: Nix base-32 codec and canonical content hashing.

Binary caches publish digests as ``<algo>:<nix-base32>``. Nix base-32 uses
its own 32-character alphabet (no ``e``, ``o``, ``u``, ``t``) and treats the
digest as a little-endian number, so the decoded big-endian integer bytes
must be reversed to recover the digest in standard byte order.
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any

logger = logging.getLogger(__name__)

NIX_BASE32_ALPHABET = "0123456789abcdfghijklmnpqrsvwxyz"
DIGEST_SIZE = 32
DEFAULT_ALGORITHM = "sha256"

_ALPHABET_INDEX = {char: index for index, char in enumerate(NIX_BASE32_ALPHABET)}


class HashFormatError(ValueError):
    """Raised when an encoded digest cannot be decoded."""


# ---------------------------------------------------------------------------
# Nix base-32
# ---------------------------------------------------------------------------


def split_digest(text: str) -> tuple[str, str]:
    """Split ``"sha256:abc"`` into ``("sha256", "abc")``.

    A value without an algorithm prefix is assumed to be SHA-256.
    """
    algorithm, sep, encoded = text.partition(":")
    if not sep:
        return DEFAULT_ALGORITHM, text
    return algorithm, encoded


def decode_nix_base32(encoded: str, size: int = DIGEST_SIZE) -> bytes:
    """Decode a Nix base-32 string into *size* raw digest bytes."""
    _, encoded = split_digest(encoded)
    number = 0
    for char in encoded:
        value = _ALPHABET_INDEX.get(char)
        if value is None:
            raise HashFormatError(f"invalid character {char!r} in nix base-32 digest")
        number = number * 32 + value

    big_endian = number.to_bytes((number.bit_length() + 7) // 8, "big")
    if len(big_endian) > size:
        raise HashFormatError(
            f"decoded digest is {len(big_endian)} bytes, expected at most {size}"
        )
    padded = big_endian.rjust(size, b"\0")
    return padded[::-1]


def encode_nix_base32(digest: bytes) -> str:
    """Encode raw digest bytes as Nix base-32 (52 characters for SHA-256)."""
    length = (len(digest) * 8 + 4) // 5
    number = int.from_bytes(digest, "little")
    chars = []
    for _ in range(length):
        number, value = divmod(number, 32)
        chars.append(NIX_BASE32_ALPHABET[value])
    return "".join(reversed(chars))


def nix_hash_to_hex(text: str) -> str:
    """Convert ``sha256:<nix-base32>`` (or a bare encoded value) to hex."""
    return decode_nix_base32(text).hex()


def normalize_digest(text: str) -> str:
    """Return ``"<algo>:<hex>"`` for a cache digest.

    Digests that do not decode are kept in their original encoding so the
    record is still usable by consumers that understand it.
    """
    algorithm, encoded = split_digest(text)
    try:
        return f"{algorithm}:{decode_nix_base32(encoded).hex()}"
    except HashFormatError as exc:
        logger.debug("Keeping undecodable digest %r as-is: %s", text, exc)
        return f"{algorithm}:{encoded}"


# ---------------------------------------------------------------------------
# Canonical content hashing
# ---------------------------------------------------------------------------


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes — deterministic, sorted, compact."""
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def content_address(obj: Any) -> str:
    """Content-address a JSON-serializable object as ``"sha256:<hex>"``."""
    return f"sha256:{sha256_hex(canonical_json_bytes(obj))}"

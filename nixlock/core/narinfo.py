"""Parser and serializer for the binary cache ``.narinfo`` text format.

The format is line-oriented ``Key: Value`` pairs::

    StorePath: /nix/store/aaa...-hello-2.12
    URL: nar/1w1fff....nar.xz
    Compression: xz
    FileHash: sha256:1w1fff...
    FileSize: 50088
    NarHash: sha256:0mdq...
    NarSize: 226552
    References: aaa...-hello-2.12 bbb...-glibc-2.37
    Deriver: ccc...-hello-2.12.drv
    Sig: cache.nixos.org-1:...

Unknown keys are ignored so newer caches stay readable.
"""

from __future__ import annotations

import logging
from typing import Any

from nixlock.models.narinfo import NarInfo

logger = logging.getLogger(__name__)

# Malformed integer fields become 0 instead of rejecting the whole record.
LENIENT_NUMERIC_FIELDS = True

_STRING_FIELDS = {
    "StorePath": "store_path",
    "URL": "url",
    "Compression": "compression",
    "FileHash": "file_hash",
    "NarHash": "nar_hash",
    "Deriver": "deriver",
}
_INT_FIELDS = {
    "FileSize": "file_size",
    "NarSize": "nar_size",
}


class NarInfoFormatError(ValueError):
    """Raised when a ``.narinfo`` document lacks its mandatory fields."""


def _parse_int(key: str, value: str, lenient: bool) -> int:
    try:
        return int(value)
    except ValueError:
        if not lenient:
            raise NarInfoFormatError(f"{key}: expected an integer, got {value!r}")
        logger.debug("Ignoring malformed %s value %r", key, value)
        return 0


def parse_narinfo(text: str, *, lenient_numbers: bool = LENIENT_NUMERIC_FIELDS) -> NarInfo:
    """Parse ``.narinfo`` text into a :class:`NarInfo`.

    Raises :class:`NarInfoFormatError` if ``StorePath`` or ``URL`` is missing
    once every line has been read.
    """
    fields: dict[str, Any] = {}
    references: list[str] = []
    signatures: list[str] = []

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition(":")
        if not sep:
            continue
        key = key.strip()
        value = value.strip()

        if key in _STRING_FIELDS:
            fields[_STRING_FIELDS[key]] = value
        elif key in _INT_FIELDS:
            fields[_INT_FIELDS[key]] = _parse_int(key, value, lenient_numbers)
        elif key == "References":
            references = value.split()
        elif key == "Sig":
            signatures.append(value)

    if not fields.get("store_path") or not fields.get("url"):
        raise NarInfoFormatError("invalid narinfo: missing StorePath or URL")

    return NarInfo(**fields, references=references, signatures=signatures)


def serialize_narinfo(info: NarInfo) -> str:
    """Render a :class:`NarInfo` back into the text format.

    Empty optional fields are omitted; ``References`` is always written.
    """
    lines = [f"StorePath: {info.store_path}", f"URL: {info.url}"]
    if info.compression:
        lines.append(f"Compression: {info.compression}")
    if info.file_hash:
        lines.append(f"FileHash: {info.file_hash}")
    lines.append(f"FileSize: {info.file_size}")
    if info.nar_hash:
        lines.append(f"NarHash: {info.nar_hash}")
    lines.append(f"NarSize: {info.nar_size}")
    lines.append(f"References: {' '.join(info.references)}".rstrip())
    if info.deriver:
        lines.append(f"Deriver: {info.deriver}")
    for signature in info.signatures:
        lines.append(f"Sig: {signature}")
    return "\n".join(lines) + "\n"

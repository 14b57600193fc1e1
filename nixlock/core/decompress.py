"""Decompression of downloaded archives.

Binary caches advertise the archive compression in the narinfo
``Compression`` field. Only ``xz``, ``bzip2`` and ``none`` are handled.
A corrupt or truncated compressed stream surfaces as
:class:`~nixlock.core.nar.NarFormatError`, like any other damaged archive.
"""

from __future__ import annotations

import bz2
import lzma
from pathlib import Path
from typing import BinaryIO

from nixlock.core.nar import ExtractionPolicy, NarFormatError, unpack_nar

SUPPORTED_COMPRESSIONS = ("xz", "bzip2", "none")


class UnsupportedCompressionError(ValueError):
    """Raised for a compression kind this package cannot decode."""


class _DecompressedStream:
    """Read-only view of a decompressor that reports bad input as a format error."""

    def __init__(self, reader: BinaryIO, compression: str) -> None:
        self._reader = reader
        self._compression = compression

    def read(self, size: int = -1) -> bytes:
        try:
            return self._reader.read(size)
        except (lzma.LZMAError, EOFError, OSError) as exc:
            raise NarFormatError(
                f"corrupt {self._compression} archive stream: {exc}"
            ) from exc

    def close(self) -> None:
        self._reader.close()


def open_decompressed(stream: BinaryIO, compression: str) -> BinaryIO:
    """Wrap *stream* in a decompressing reader for *compression*.

    Closing the returned reader does not close *stream*.
    """
    kind = (compression or "none").lower()
    if kind not in SUPPORTED_COMPRESSIONS:
        raise UnsupportedCompressionError(
            f"unsupported compression: {compression} "
            f"(supported: {', '.join(SUPPORTED_COMPRESSIONS)})"
        )
    if kind == "xz":
        return lzma.LZMAFile(stream, mode="rb")
    if kind == "bzip2":
        return bz2.BZ2File(stream, mode="rb")
    return stream


def unpack_compressed_nar(
    stream: BinaryIO,
    compression: str,
    destination: Path | str,
    policy: ExtractionPolicy | None = None,
) -> list[Path]:
    """Decompress *stream* and extract the NAR it contains to *destination*."""
    reader = open_decompressed(stream, compression)
    if reader is stream:
        return unpack_nar(stream, destination, policy)
    try:
        return unpack_nar(_DecompressedStream(reader, compression), destination, policy)
    finally:
        reader.close()

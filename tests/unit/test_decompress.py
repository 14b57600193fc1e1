"""Tests for compressed archive handling."""

from __future__ import annotations

import bz2
import io
import lzma

import pytest

from nixlock.core.decompress import (
    SUPPORTED_COMPRESSIONS,
    UnsupportedCompressionError,
    open_decompressed,
    unpack_compressed_nar,
)
from nixlock.core.nar import NarFormatError


class TestOpenDecompressed:
    def test_none_returns_stream(self):
        stream = io.BytesIO(b"raw")
        assert open_decompressed(stream, "none") is stream
        assert open_decompressed(stream, "") is stream

    def test_xz(self):
        stream = io.BytesIO(lzma.compress(b"payload"))
        assert open_decompressed(stream, "xz").read() == b"payload"

    def test_bzip2(self):
        stream = io.BytesIO(bz2.compress(b"payload"))
        assert open_decompressed(stream, "bzip2").read() == b"payload"

    def test_case_insensitive(self):
        stream = io.BytesIO(lzma.compress(b"payload"))
        assert open_decompressed(stream, "XZ").read() == b"payload"

    @pytest.mark.parametrize("kind", ["zstd", "gzip", "br"])
    def test_unsupported(self, kind):
        with pytest.raises(UnsupportedCompressionError, match=kind):
            open_decompressed(io.BytesIO(b""), kind)

    def test_unsupported_message_lists_supported_kinds(self):
        with pytest.raises(UnsupportedCompressionError) as excinfo:
            open_decompressed(io.BytesIO(b""), "zstd")
        for kind in SUPPORTED_COMPRESSIONS:
            assert kind in str(excinfo.value)


class TestUnpackCompressedNar:
    @pytest.mark.parametrize(
        "kind, compress",
        [("xz", lzma.compress), ("bzip2", bz2.compress), ("none", lambda data: data)],
    )
    def test_extracts(self, nar, tmp_path, kind, compress):
        archive = nar.archive(nar.directory({"bin": nar.directory({"hi": nar.regular(b"hi")})}))
        dest = tmp_path / kind
        unpack_compressed_nar(io.BytesIO(compress(archive)), kind, dest)
        assert (dest / "bin" / "hi").read_bytes() == b"hi"

    def test_source_stream_left_open(self, nar, tmp_path):
        stream = io.BytesIO(lzma.compress(nar.archive(nar.regular(b"x"))))
        unpack_compressed_nar(stream, "xz", tmp_path / "out")
        assert not stream.closed

    @pytest.mark.parametrize("kind", ["xz", "bzip2"])
    def test_corrupt_stream_is_format_error(self, tmp_path, kind):
        stream = io.BytesIO(b"this is not a compressed archive at all")
        with pytest.raises(NarFormatError, match=f"corrupt {kind}"):
            unpack_compressed_nar(stream, kind, tmp_path / "out")

    def test_truncated_xz_is_format_error(self, nar, tmp_path):
        archive = nar.archive(nar.directory({"a": nar.regular(b"x" * 4096)}))
        packed = lzma.compress(archive)
        stream = io.BytesIO(packed[: len(packed) // 2])
        with pytest.raises(NarFormatError):
            unpack_compressed_nar(stream, "xz", tmp_path / "out")

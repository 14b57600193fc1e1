"""NAR (Nix Archive) decoder.

Wire format: every value (keywords, names, file contents) is encoded as::

    uint64_le(length) + raw bytes + zero padding to an 8-byte boundary

Grammar (``str(x)`` is the encoding above)::

    str("nix-archive-1") entry
    entry     = str("(") str("type") kind ... str(")")
    regular   = str("regular") [str("executable") str("")] [str("contents") str(<data>)]
    symlink   = str("symlink") str("target") str(<target>)
    directory = str("directory") { str("entry") str("(") str("name") str(<name>)
                                   str("node") entry str(")") }

:func:`unpack_nar` writes an archive to disk and :func:`parse_nar` builds the
entry tree in memory. Both share the same recursive decoder and differ only
in the :class:`ArchiveVisitor` that receives the decoded pieces.

Extraction is deliberately *lossy* under the default
:class:`ExtractionPolicy`: symlinks into the store and symlinks whose target
does not exist yet are not created, and a regular file extracted onto an
existing directory is written as ``<dir>/content``. Use
:meth:`ExtractionPolicy.strict` for a lossless extraction.
"""

from __future__ import annotations

import io
import logging
import os
import struct
from pathlib import Path
from typing import Any, BinaryIO, Protocol

from pydantic import BaseModel, ConfigDict

from nixlock.core.store_path import STORE_DIR
from nixlock.models.archive import (
    ArchiveEntry,
    Directory,
    DirectoryEntry,
    RegularFile,
    Symlink,
)

logger = logging.getLogger(__name__)

NAR_MAGIC = "nix-archive-1"
MAX_TOKEN_LENGTH = 1 << 20
_COPY_CHUNK = 64 * 1024
_LENGTH = struct.Struct("<Q")

REGULAR_FILE_MODE = 0o644
EXECUTABLE_FILE_MODE = 0o755
DIRECTORY_MODE = 0o755


class NarFormatError(ValueError):
    """Raised when a byte stream is not a well-formed NAR."""


# ---------------------------------------------------------------------------
# Extraction policy
# ---------------------------------------------------------------------------


class ExtractionPolicy(BaseModel):
    """How :func:`unpack_nar` deals with entries it cannot place faithfully.

    Parameters
    ----------
    skip_store_symlinks:
        Do not create symlinks whose absolute target lies in ``store_dir``;
        such links are expected to be provided by a runtime mount.
    skip_dangling_symlinks:
        Do not create symlinks whose target does not exist at extraction
        time (relative targets resolve against the link's directory).
    file_into_directory_name:
        When a regular file is extracted onto an existing directory, write
        it as this child name instead. ``None`` makes that an error.
    store_dir:
        Store namespace used by ``skip_store_symlinks``.
    """

    model_config = ConfigDict(frozen=True)

    skip_store_symlinks: bool = True
    skip_dangling_symlinks: bool = True
    file_into_directory_name: str | None = "content"
    store_dir: str = STORE_DIR

    @classmethod
    def strict(cls) -> ExtractionPolicy:
        """A lossless policy: every symlink is created, nothing is redirected."""
        return cls(
            skip_store_symlinks=False,
            skip_dangling_symlinks=False,
            file_into_directory_name=None,
        )


# ---------------------------------------------------------------------------
# Token cursor
# ---------------------------------------------------------------------------


def _padding(length: int) -> int:
    return (8 - length % 8) % 8


class NarReader:
    """Cursor over a NAR byte stream.

    Every read goes through this object so ``position`` always reflects the
    number of bytes consumed, which is reported in format errors.
    """

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        self.position = 0

    def _read_exact(self, count: int) -> bytes:
        chunks: list[bytes] = []
        remaining = count
        while remaining:
            chunk = self._stream.read(remaining)
            if not chunk:
                raise NarFormatError(
                    f"truncated archive at offset {self.position}: "
                    f"needed {remaining} more bytes"
                )
            chunks.append(chunk)
            remaining -= len(chunk)
            self.position += len(chunk)
        return b"".join(chunks)

    def _read_length(self) -> int:
        (length,) = _LENGTH.unpack(self._read_exact(_LENGTH.size))
        return length

    def _skip_padding(self, length: int) -> None:
        pad = _padding(length)
        if pad and self._read_exact(pad) != b"\0" * pad:
            raise NarFormatError(f"non-zero padding before offset {self.position}")

    def read_bytes(self, max_length: int | None = None) -> bytes:
        """Read one length-prefixed value."""
        start = self.position
        length = self._read_length()
        if max_length is not None and length > max_length:
            raise NarFormatError(
                f"token at offset {start} is {length} bytes, limit is {max_length}"
            )
        data = self._read_exact(length)
        self._skip_padding(length)
        return data

    def read_token(self) -> str:
        """Read one structural token or name.

        Undecodable bytes are kept via ``surrogateescape`` so that file
        names round-trip to the filesystem unchanged.
        """
        return self.read_bytes(MAX_TOKEN_LENGTH).decode("utf-8", "surrogateescape")

    def expect(self, expected: str) -> None:
        start = self.position
        token = self.read_token()
        if token != expected:
            raise NarFormatError(
                f"expected {expected!r} at offset {start}, got {token!r}"
            )

    def copy_payload(self, out: BinaryIO) -> int:
        """Stream one length-prefixed value into *out*; return its length."""
        length = self._read_length()
        remaining = length
        while remaining:
            chunk = self._read_exact(min(remaining, _COPY_CHUNK))
            out.write(chunk)
            remaining -= len(chunk)
        self._skip_padding(length)
        return length


# ---------------------------------------------------------------------------
# Recursive decoder
# ---------------------------------------------------------------------------


class ArchiveVisitor(Protocol):
    """Receives decoded entries. ``target`` is opaque to the decoder."""

    def child(self, target: Any, name: str) -> Any: ...

    def contents(self, target: Any, reader: NarReader) -> Any: ...

    def regular(self, target: Any, executable: bool, contents: Any) -> Any: ...

    def start_directory(self, target: Any) -> None: ...

    def directory(self, target: Any, entries: list[tuple[str, Any]]) -> Any: ...

    def symlink(self, target: Any, link_target: str) -> Any: ...


def _sort_key(name: str) -> bytes:
    # Archives list entries in strictly ascending raw byte order.
    return name.encode("utf-8", "surrogateescape")


def _check_name(name: str, offset: int) -> str:
    if name in ("", ".", "..") or "/" in name or "\0" in name:
        raise NarFormatError(f"invalid entry name {name!r} at offset {offset}")
    return name


def _decode_entry(reader: NarReader, target: Any, visitor: ArchiveVisitor) -> Any:
    reader.expect("(")
    reader.expect("type")
    start = reader.position
    kind = reader.read_token()
    if kind == "regular":
        return _decode_regular(reader, target, visitor)
    if kind == "directory":
        return _decode_directory(reader, target, visitor)
    if kind == "symlink":
        return _decode_symlink(reader, target, visitor)
    raise NarFormatError(f"unknown entry type {kind!r} at offset {start}")


def _decode_regular(reader: NarReader, target: Any, visitor: ArchiveVisitor) -> Any:
    executable = False
    contents = None
    while True:
        start = reader.position
        token = reader.read_token()
        if token == ")":
            break
        if token == "executable":
            reader.expect("")
            executable = True
        elif token == "contents":
            contents = visitor.contents(target, reader)
        else:
            raise NarFormatError(
                f"unexpected token {token!r} in regular file at offset {start}"
            )
    return visitor.regular(target, executable, contents)


def _decode_directory(reader: NarReader, target: Any, visitor: ArchiveVisitor) -> Any:
    visitor.start_directory(target)
    entries: list[tuple[str, Any]] = []
    previous: str | None = None
    while True:
        start = reader.position
        token = reader.read_token()
        if token == ")":
            break
        if token != "entry":
            raise NarFormatError(
                f"expected 'entry' or ')' at offset {start}, got {token!r}"
            )
        reader.expect("(")
        reader.expect("name")
        name_start = reader.position
        name = _check_name(reader.read_token(), name_start)
        if previous is not None and _sort_key(name) <= _sort_key(previous):
            raise NarFormatError(
                f"entry {name!r} at offset {name_start} is not after {previous!r}"
            )
        previous = name
        reader.expect("node")
        node = _decode_entry(reader, visitor.child(target, name), visitor)
        reader.expect(")")
        entries.append((name, node))
    return visitor.directory(target, entries)


def _decode_symlink(reader: NarReader, target: Any, visitor: ArchiveVisitor) -> Any:
    link_target = ""
    while True:
        token = reader.read_token()
        if token == ")":
            break
        if token == "target":
            link_target = reader.read_token()
    return visitor.symlink(target, link_target)


def _decode_archive(stream: BinaryIO, target: Any, visitor: ArchiveVisitor) -> Any:
    reader = NarReader(stream)
    magic = reader.read_token()
    if magic != NAR_MAGIC:
        raise NarFormatError(f"not a NAR archive (magic: {magic!r})")
    return _decode_entry(reader, target, visitor)


# ---------------------------------------------------------------------------
# Visitors
# ---------------------------------------------------------------------------


class _DiskWriter:
    """Materializes entries under a destination path."""

    def __init__(self, policy: ExtractionPolicy) -> None:
        self._policy = policy
        self.skipped_symlinks: list[Path] = []

    @staticmethod
    def _refuse_symlink(path: Path) -> None:
        if path.is_symlink():
            raise FileExistsError(f"refusing to extract through symlink {path}")

    def _file_path(self, path: Path) -> Path:
        self._refuse_symlink(path)
        if path.is_dir():
            if self._policy.file_into_directory_name is None:
                raise IsADirectoryError(f"cannot extract a file onto directory {path}")
            fallback = path / self._policy.file_into_directory_name
            self._refuse_symlink(fallback)
            return fallback
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    def child(self, target: Path, name: str) -> Path:
        return target / name

    def contents(self, target: Path, reader: NarReader) -> Path:
        path = self._file_path(target)
        with path.open("wb") as handle:
            reader.copy_payload(handle)
        return path

    def regular(self, target: Path, executable: bool, contents: Path | None) -> None:
        path = contents
        if path is None:
            path = self._file_path(target)
            path.write_bytes(b"")
        path.chmod(EXECUTABLE_FILE_MODE if executable else REGULAR_FILE_MODE)

    def start_directory(self, target: Path) -> None:
        self._refuse_symlink(target)
        target.mkdir(mode=DIRECTORY_MODE, parents=True, exist_ok=True)

    def directory(self, target: Path, entries: list[tuple[str, Any]]) -> None:
        return None

    def symlink(self, target: Path, link_target: str) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        policy = self._policy

        store_prefix = policy.store_dir.rstrip("/") + "/"
        if policy.skip_store_symlinks and link_target.startswith(store_prefix):
            logger.debug("Skipping store symlink %s -> %s", target, link_target)
            self.skipped_symlinks.append(target)
            return

        if policy.skip_dangling_symlinks:
            resolved = Path(link_target)
            if not resolved.is_absolute():
                resolved = target.parent / link_target
            if not resolved.exists():
                logger.debug("Skipping dangling symlink %s -> %s", target, link_target)
                self.skipped_symlinks.append(target)
                return

        if target.is_symlink():
            target.unlink()
        os.symlink(link_target, target)


class _TreeBuilder:
    """Builds :class:`~nixlock.models.archive.ArchiveEntry` models."""

    def child(self, target: None, name: str) -> None:
        return None

    def contents(self, target: None, reader: NarReader) -> bytes:
        buffer = io.BytesIO()
        reader.copy_payload(buffer)
        return buffer.getvalue()

    def regular(self, target: None, executable: bool, contents: bytes | None) -> RegularFile:
        return RegularFile(executable=executable, contents=contents or b"")

    def start_directory(self, target: None) -> None:
        return None

    def directory(self, target: None, entries: list[tuple[str, Any]]) -> Directory:
        return Directory(
            entries=[DirectoryEntry(name=name, node=node) for name, node in entries]
        )

    def symlink(self, target: None, link_target: str) -> Symlink:
        return Symlink(target=link_target)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def unpack_nar(
    stream: BinaryIO,
    destination: Path | str,
    policy: ExtractionPolicy | None = None,
) -> list[Path]:
    """Extract a decompressed NAR stream to *destination*.

    Returns the symlinks that the policy chose not to create. Any format
    error aborts the extraction; files already written are left in place.
    """
    writer = _DiskWriter(policy or ExtractionPolicy())
    _decode_archive(stream, Path(destination), writer)
    if writer.skipped_symlinks:
        logger.info(
            "Extracted %s (%d symlink(s) skipped by policy)",
            destination,
            len(writer.skipped_symlinks),
        )
    return writer.skipped_symlinks


def parse_nar(stream: BinaryIO) -> ArchiveEntry:
    """Decode a NAR stream into an in-memory entry tree."""
    return _decode_archive(stream, None, _TreeBuilder())

"""In-memory representation of a decoded NAR entry tree.

Entries only exist while an archive is being inspected; extraction to disk
never builds this tree.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class RegularFile(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["regular"] = "regular"
    executable: bool = False
    contents: bytes = b""


class Symlink(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["symlink"] = "symlink"
    target: str


class DirectoryEntry(BaseModel):
    """A named child of a directory, in archive order."""

    model_config = ConfigDict(frozen=True)

    name: str
    node: ArchiveEntry


class Directory(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["directory"] = "directory"
    entries: list[DirectoryEntry] = Field(default_factory=list)

    def child(self, name: str) -> ArchiveEntry | None:
        """Return the child called *name*, or ``None``."""
        for entry in self.entries:
            if entry.name == name:
                return entry.node
        return None


ArchiveEntry = Annotated[
    Union[RegularFile, Directory, Symlink], Field(discriminator="kind")
]

DirectoryEntry.model_rebuild()
Directory.model_rebuild()

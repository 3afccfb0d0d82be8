"""Typed models for tree snapshots and patches."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Final

FILE: Final = "file"
DIRECTORY: Final = "directory"

MKDIR: Final = "mkdir"
RMDIR: Final = "rmdir"
UNLINK: Final = "unlink"
CREATE: Final = "create"
CHANGE: Final = "change"


@dataclass(slots=True, frozen=True)
class Entry:
    """One path in a tree at a point in time."""

    relative_path: str
    kind: str
    size: int = 0
    mtime_ns: int = 0
    mode: int = 0

    def is_directory(self) -> bool:
        return self.kind == DIRECTORY

    @property
    def token(self) -> tuple[int, int, int]:
        """Metadata used for change detection only."""
        return (self.size, self.mtime_ns, self.mode)


@dataclass(slots=True, frozen=True)
class Patch:
    """One structural or content operation."""

    operation: str
    relative_path: str
    entry: Entry


def path_sort_key(relative_path: str) -> tuple[str, ...]:
    """Order paths by component so directories precede their descendants."""
    return tuple(relative_path.split("/"))


class Snapshot:
    """Immutable, path-ordered view of a directory tree."""

    __slots__ = ("_entries", "_by_path")

    def __init__(self, entries: tuple[Entry, ...]) -> None:
        self._entries = entries
        self._by_path = {entry.relative_path: entry for entry in entries}

    @classmethod
    def empty(cls) -> Snapshot:
        return cls(())

    @classmethod
    def from_entries(cls, entries: Iterable[Entry]) -> Snapshot:
        """Sort entries and validate uniqueness and parent presence."""
        ordered = sorted(entries, key=lambda item: path_sort_key(item.relative_path))
        seen: dict[str, Entry] = {}
        for entry in ordered:
            path = entry.relative_path
            if not path or path.startswith("/") or path.endswith("/"):
                raise ValueError(f"Invalid snapshot path: {path!r}")
            if path in seen:
                raise ValueError(f"Duplicate snapshot path: {path}")
            parent, _, _ = path.rpartition("/")
            if parent:
                parent_entry = seen.get(parent)
                if parent_entry is None or not parent_entry.is_directory():
                    raise ValueError(f"Missing parent directory for snapshot path: {path}")
            seen[path] = entry
        return cls(tuple(ordered))

    @property
    def entries(self) -> tuple[Entry, ...]:
        return self._entries

    def get(self, relative_path: str) -> Entry | None:
        return self._by_path.get(relative_path)

    def __contains__(self, relative_path: object) -> bool:
        return relative_path in self._by_path

    def __iter__(self) -> Iterator[Entry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Snapshot):
            return NotImplemented
        return self._entries == other._entries

    def __hash__(self) -> int:
        return hash(self._entries)

    def __repr__(self) -> str:
        return f"Snapshot({len(self._entries)} entries)"

"""On-disk key/value store for processed outputs."""

from __future__ import annotations

import hashlib
import os
import tempfile
import zlib
from dataclasses import dataclass
from pathlib import Path


@dataclass(slots=True, frozen=True)
class CacheEntry:
    """Result of one cache lookup."""

    is_cached: bool
    key: str
    value: bytes | None = None


class DiskCache:
    """Compressed, atomically written files keyed by an opaque string.

    Entries are never mutated in place: a set() for an existing key replaces
    the whole file, so concurrent writers of the same key leave one complete
    value behind.
    """

    def __init__(self, namespace: str, root: Path, compression: bool = True) -> None:
        self._namespace = namespace
        self._root = root.resolve() / namespace
        self._compression = compression

    @property
    def namespace(self) -> str:
        return self._namespace

    @property
    def root(self) -> Path:
        """Return the on-disk directory holding this namespace."""
        return self._root

    def path_for(self, key: str) -> Path:
        name = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self._root / name[:2] / name

    def has(self, key: str) -> bool:
        return self.path_for(key).exists()

    def get(self, key: str) -> CacheEntry:
        path = self.path_for(key)
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            return CacheEntry(is_cached=False, key=key)
        value = zlib.decompress(raw) if self._compression else raw
        return CacheEntry(is_cached=True, key=key, value=value)

    def set(self, key: str, value: bytes) -> Path:
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = zlib.compress(value) if self._compression else value
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        tmp = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(payload)
            tmp.replace(path)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
        return path

"""Content hashing and deterministic cache key derivation."""

from __future__ import annotations

import hashlib
import os
from pathlib import Path

_IGNORED_DIR_NAMES = frozenset({"__pycache__", ".git", ".pytest_cache", ".mypy_cache"})


def cache_key_for_contents(contents: str | bytes, relative_path: str) -> str:
    """Hash file contents together with the path they will be written under."""
    digest = hashlib.sha256()
    digest.update(contents.encode("utf-8") if isinstance(contents, str) else contents)
    digest.update(b"\x00")
    digest.update(relative_path.encode("utf-8"))
    return digest.hexdigest()


def hash_for_dir(base_dir: Path) -> str:
    """Hash every file under base_dir, so code or version changes move the namespace."""
    root = base_dir.resolve()
    digest = hashlib.sha256()
    for path in _iter_files(root):
        digest.update(path.relative_to(root).as_posix().encode("utf-8"))
        digest.update(b"\x00")
        digest.update(sha256_file(path).encode("ascii"))
        digest.update(b"\n")
    return digest.hexdigest()


def sha256_file(path: Path) -> str:
    """Compute SHA-256 hash in deterministic chunked reads."""
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        while True:
            chunk = handle.read(1024 * 128)
            if not chunk:
                break
            digest.update(chunk)
    return digest.hexdigest()


def _iter_files(root: Path) -> list[Path]:
    output: list[Path] = []
    for current, dir_names, file_names in os.walk(root):
        dir_names[:] = sorted(name for name in dir_names if name not in _IGNORED_DIR_NAMES)
        for name in sorted(file_names):
            if name.endswith((".pyc", ".pyo")):
                continue
            output.append(Path(current) / name)
    output.sort(key=lambda item: item.relative_to(root).as_posix())
    return output

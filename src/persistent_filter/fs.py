"""Filesystem primitives used when applying patches."""

from __future__ import annotations

import os
import shutil
from pathlib import Path


def ensure_dir(path: Path) -> None:
    """Create path and any missing parents."""
    path.mkdir(parents=True, exist_ok=True)


def remove_tree(path: Path) -> None:
    """Remove a directory tree, file or link; missing paths are ignored."""
    if path.is_symlink() or path.is_file():
        path.unlink()
        return
    if path.exists():
        shutil.rmtree(path)


def symlink_or_copy(src: Path, dest: Path) -> None:
    """Link dest to src, copying when the platform refuses symlinks."""
    try:
        os.symlink(src.resolve(), dest)
    except (NotImplementedError, PermissionError):
        shutil.copy2(src, dest)


def read_output(path: Path, encoding: str | None) -> str | bytes | None:
    """Read an existing output file verbatim, None when it does not exist."""
    try:
        if encoding is None:
            return path.read_bytes()
        with path.open("r", encoding=encoding, newline="") as handle:
            return handle.read()
    except FileNotFoundError:
        return None


def write_output(path: Path, output: str | bytes, encoding: str | None) -> None:
    """Write output verbatim, creating missing parent directories on demand."""
    try:
        _write(path, output, encoding)
    except FileNotFoundError:
        ensure_dir(path.parent)
        _write(path, output, encoding)


def _write(path: Path, output: str | bytes, encoding: str | None) -> None:
    if isinstance(output, bytes):
        path.write_bytes(output)
        return
    with path.open("w", encoding=encoding or "utf-8", newline="") as handle:
        handle.write(output)

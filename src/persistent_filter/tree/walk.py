"""Deterministic tree enumeration into snapshots."""

from __future__ import annotations

import os
import stat as stat_module
import time
from dataclasses import asdict, dataclass
from pathlib import Path

from persistent_filter.tree.models import DIRECTORY, FILE, Entry, Snapshot


@dataclass(slots=True, frozen=True)
class WalkProfile:
    """Deterministic diagnostics for one walk pass."""

    directories: int
    files: int
    skipped: int
    total_seconds: float


def walk_snapshot(root: Path, profile: dict[str, object] | None = None) -> Snapshot:
    """Enumerate every directory and file under root into a snapshot.

    Symlinks are followed so that trees assembled from links look like plain
    trees; dangling links, special files and links back to an ancestor
    directory are skipped.
    """
    started = time.perf_counter()
    base = root.resolve()
    entries: list[Entry] = []
    directories = 0
    files = 0
    skipped = 0
    root_info = base.stat()
    stack: list[tuple[Path, str, frozenset[tuple[int, int]]]] = [
        (base, "", frozenset({(root_info.st_dev, root_info.st_ino)}))
    ]
    while stack:
        current, prefix, ancestors = stack.pop()
        with os.scandir(current) as scanned:
            ordered = sorted(scanned, key=lambda item: item.name)
        for item in reversed(ordered):
            relative = f"{prefix}{item.name}"
            try:
                info = item.stat(follow_symlinks=True)
            except OSError:
                skipped += 1
                continue
            if stat_module.S_ISDIR(info.st_mode):
                identity = (info.st_dev, info.st_ino)
                if identity in ancestors:
                    skipped += 1
                    continue
                entries.append(
                    Entry(
                        relative_path=relative,
                        kind=DIRECTORY,
                        size=0,
                        mtime_ns=info.st_mtime_ns,
                        mode=info.st_mode,
                    )
                )
                directories += 1
                stack.append((Path(item.path), f"{relative}/", ancestors | {identity}))
                continue
            if not stat_module.S_ISREG(info.st_mode):
                skipped += 1
                continue
            entries.append(
                Entry(
                    relative_path=relative,
                    kind=FILE,
                    size=info.st_size,
                    mtime_ns=info.st_mtime_ns,
                    mode=info.st_mode,
                )
            )
            files += 1

    if profile is not None:
        payload = WalkProfile(
            directories=directories,
            files=files,
            skipped=skipped,
            total_seconds=time.perf_counter() - started,
        )
        profile.update(asdict(payload))
    return Snapshot.from_entries(entries)

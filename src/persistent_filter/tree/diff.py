"""Ordered patch calculation between two snapshots."""

from __future__ import annotations

from persistent_filter.tree.models import (
    CHANGE,
    CREATE,
    MKDIR,
    RMDIR,
    UNLINK,
    Entry,
    Patch,
    Snapshot,
    path_sort_key,
)


def calculate_patch(previous: Snapshot, next_snapshot: Snapshot) -> list[Patch]:
    """Compute the ordered operations turning previous into next_snapshot.

    Removals come first, children before parents. Additions and changes follow,
    parents before children. Runs in a single lock-step pass over both
    snapshots, which are already path-ordered.
    """
    ours = previous.entries
    theirs = next_snapshot.entries
    removals: list[Patch] = []
    additions: list[Patch] = []
    i = 0
    j = 0
    while i < len(ours) and j < len(theirs):
        old = ours[i]
        new = theirs[j]
        old_key = path_sort_key(old.relative_path)
        new_key = path_sort_key(new.relative_path)
        if old_key < new_key:
            removals.append(_removal(old))
            i += 1
            continue
        if old_key > new_key:
            additions.append(_addition(new))
            j += 1
            continue
        if old.kind != new.kind:
            removals.append(_removal(old))
            additions.append(_addition(new))
        elif not new.is_directory() and old.token != new.token:
            additions.append(Patch(CHANGE, new.relative_path, new))
        i += 1
        j += 1

    removals.extend(_removal(entry) for entry in ours[i:])
    additions.extend(_addition(entry) for entry in theirs[j:])
    removals.reverse()
    return removals + additions


def _removal(entry: Entry) -> Patch:
    operation = RMDIR if entry.is_directory() else UNLINK
    return Patch(operation, entry.relative_path, entry)


def _addition(entry: Entry) -> Patch:
    operation = MKDIR if entry.is_directory() else CREATE
    return Patch(operation, entry.relative_path, entry)

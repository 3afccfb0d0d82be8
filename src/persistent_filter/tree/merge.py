"""Folding forced invalidations into a diff patch list."""

from __future__ import annotations

from collections.abc import Iterable

from persistent_filter.tree.models import CHANGE, CREATE, Patch, Snapshot, path_sort_key


def invalidations_as_patches(
    invalidated: Iterable[str],
    previous: Snapshot,
    next_snapshot: Snapshot,
) -> list[Patch]:
    """Turn invalidated paths into change/create patches against next_snapshot.

    Paths missing from next_snapshot were removed concurrently and are skipped.
    """
    patches: list[Patch] = []
    for relative_path in sorted(set(invalidated), key=path_sort_key):
        entry = next_snapshot.get(relative_path)
        if entry is None or entry.is_directory():
            continue
        operation = CHANGE if relative_path in previous else CREATE
        patches.append(Patch(operation, relative_path, entry))
    return patches


def add_patches(new_patches: list[Patch], base_patches: list[Patch]) -> list[Patch]:
    """Append new patches for paths the base list does not already touch."""
    if not new_patches:
        return base_patches
    covered = {patch.relative_path for patch in base_patches}
    merged = list(base_patches)
    for patch in new_patches:
        if patch.relative_path in covered:
            continue
        covered.add(patch.relative_path)
        merged.append(patch)
    return merged


def merge_invalidations(
    invalidated: Iterable[str],
    previous: Snapshot,
    next_snapshot: Snapshot,
    base_patches: list[Patch],
) -> list[Patch]:
    """Merge forced invalidations into base_patches, existing patches win."""
    return add_patches(
        invalidations_as_patches(invalidated, previous, next_snapshot),
        base_patches,
    )

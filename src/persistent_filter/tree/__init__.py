"""Tree snapshots, diffing and invalidation merging."""

from .diff import calculate_patch
from .merge import add_patches, invalidations_as_patches, merge_invalidations
from .models import (
    CHANGE,
    CREATE,
    DIRECTORY,
    FILE,
    MKDIR,
    RMDIR,
    UNLINK,
    Entry,
    Patch,
    Snapshot,
    path_sort_key,
)
from .walk import walk_snapshot

__all__ = [
    "CHANGE",
    "CREATE",
    "DIRECTORY",
    "Entry",
    "FILE",
    "MKDIR",
    "Patch",
    "RMDIR",
    "Snapshot",
    "UNLINK",
    "add_patches",
    "calculate_patch",
    "invalidations_as_patches",
    "merge_invalidations",
    "path_sort_key",
    "walk_snapshot",
]

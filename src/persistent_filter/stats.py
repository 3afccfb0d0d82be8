"""Per-cycle build statistics."""

from __future__ import annotations

from dataclasses import dataclass, fields


@dataclass(slots=True)
class DerivePatchesStats:
    """Counters and timings for patch derivation."""

    patches: int = 0
    entries: int = 0
    invalidated: int = 0
    invalidation_patches: int = 0
    tracked_dependencies: int = 0
    walk_seconds: float = 0.0
    invalidation_seconds: float = 0.0
    total_seconds: float = 0.0


@dataclass(slots=True)
class ApplyPatchesStats:
    """Counters and timings for patch application.

    Each deferred task owns its own instance; instances are folded together
    with merge() once the queue has drained.
    """

    mkdir: int = 0
    rmdir: int = 0
    unlink: int = 0
    change: int = 0
    create: int = 0
    other: int = 0
    processed: int = 0
    linked: int = 0
    handle_file: int = 0
    skipped_unchanged: int = 0
    process_string: int = 0
    process_string_seconds: float = 0.0
    persistent_cache_hit: int = 0
    persistent_cache_prime: int = 0
    persistent_cache_write_error: int = 0
    handle_file_seconds: float = 0.0

    def merge(self, other: ApplyPatchesStats) -> None:
        """Add every counter of other into self."""
        for item in fields(self):
            setattr(self, item.name, getattr(self, item.name) + getattr(other, item.name))

"""Incremental, cache-backed per-file tree filters."""

from .config import ConfigOverrides, FilterConfig, default_concurrency, load_effective_config
from .dependencies import Dependencies
from .errors import (
    DependenciesSealedError,
    FilterDefinitionError,
    FilterProcessingError,
    PatchOperationError,
    PathMappingError,
)
from .filter import Filter
from .stats import ApplyPatchesStats, DerivePatchesStats
from .work_queue import run_queue

__all__ = [
    "ApplyPatchesStats",
    "ConfigOverrides",
    "Dependencies",
    "DependenciesSealedError",
    "DerivePatchesStats",
    "Filter",
    "FilterConfig",
    "FilterDefinitionError",
    "FilterProcessingError",
    "PatchOperationError",
    "PathMappingError",
    "default_concurrency",
    "load_effective_config",
    "run_queue",
]

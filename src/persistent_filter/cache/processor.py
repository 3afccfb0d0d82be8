"""Binds a filter to the cache strategy chosen at construction."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from persistent_filter.cache.strategies import CacheStrategy
from persistent_filter.dependencies import Dependencies
from persistent_filter.stats import ApplyPatchesStats

if TYPE_CHECKING:
    from persistent_filter.filter import Filter


class Processor:
    """Delegates processing and dependency lifecycle to one fixed strategy."""

    __slots__ = ("_strategy",)

    def __init__(self, strategy: CacheStrategy) -> None:
        self._strategy = strategy

    @property
    def strategy(self) -> CacheStrategy:
        return self._strategy

    def init(self, ctx: Filter) -> None:
        self._strategy.init(ctx)

    def process_string(
        self,
        ctx: Filter,
        contents: str | bytes,
        relative_path: str,
        force_invalidation: bool,
        stats: ApplyPatchesStats,
    ) -> str | bytes:
        return self._strategy.process_string(
            ctx, contents, relative_path, force_invalidation, stats
        )

    def initial_dependencies(self, root_dir: Path) -> Dependencies:
        return self._strategy.initial_dependencies(root_dir)

    def seal_dependencies(self, dependencies: Dependencies) -> None:
        self._strategy.seal_dependencies(dependencies)

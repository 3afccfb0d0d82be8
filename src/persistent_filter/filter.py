"""Incremental per-file filter: diff, invalidate, apply, cache."""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from dataclasses import asdict
from functools import partial
from pathlib import Path

from persistent_filter.cache.processor import Processor
from persistent_filter.cache.strategies import (
    CacheStrategy,
    DefaultStrategy,
    PersistentStrategy,
    ProcessResult,
)
from persistent_filter.config import FilterConfig
from persistent_filter.dependencies import Dependencies
from persistent_filter.errors import (
    FilterDefinitionError,
    FilterProcessingError,
    PatchOperationError,
    PathMappingError,
)
from persistent_filter.fs import (
    ensure_dir,
    read_output,
    remove_tree,
    symlink_or_copy,
    write_output,
)
from persistent_filter.hashing import cache_key_for_contents, hash_for_dir
from persistent_filter.logging import BuildEvent, JsonlBuildLogger, utc_timestamp
from persistent_filter.stats import ApplyPatchesStats, DerivePatchesStats
from persistent_filter.tree import (
    CHANGE,
    CREATE,
    MKDIR,
    RMDIR,
    UNLINK,
    Entry,
    Patch,
    Snapshot,
    calculate_patch,
    merge_invalidations,
    walk_snapshot,
)
from persistent_filter.work_queue import run_queue

_REQUIRED_METHODS = ("process_string", "base_dir")


class Filter:
    """Base class for incremental file filters.

    Subclasses implement process_string() and base_dir(); they may override
    cache_key_process_string(), cache_key() and post_process(). Each build()
    walks the input tree, diffs it against the previous walk, folds in files
    invalidated through their dependencies and applies the resulting patches
    to the output tree. A build that fails partway makes the next build start
    from an empty snapshot and an empty output directory.
    """

    def __init__(
        self,
        input_path: Path,
        output_path: Path,
        config: FilterConfig,
        logger: JsonlBuildLogger | None = None,
    ) -> None:
        if type(self) is Filter:
            raise FilterDefinitionError(
                "Filter is abstract and cannot be instantiated directly; subclass it."
            )
        missing = [
            name
            for name in _REQUIRED_METHODS
            if getattr(type(self), name) is getattr(Filter, name)
        ]
        if missing:
            raise FilterDefinitionError(
                f"{type(self).__name__} must implement: {', '.join(missing)}."
            )
        if config.concurrency < 1:
            raise ValueError("FilterConfig.concurrency must be a positive integer.")
        if config.persist and config.cache_root is None:
            raise ValueError("FilterConfig.cache_root is required when persist is enabled.")

        self._input_path = input_path.resolve()
        self._output_path = output_path.resolve()
        self._config = config
        self._logger = logger
        self.extensions = config.extensions
        self.target_extension = config.target_extension
        self.input_encoding = config.input_encoding
        self.output_encoding = config.output_encoding
        self.async_ = config.async_
        self.concurrency = config.concurrency
        self.dependency_invalidation = config.dependency_invalidation

        strategy: CacheStrategy = PersistentStrategy() if config.persist else DefaultStrategy()
        self.processor = Processor(strategy)
        self.dependencies: Dependencies | None = None
        self.current_tree = Snapshot.empty()
        self._needs_reset = False
        self._output_links: set[Path] = set()
        self.processor.init(self)

    @property
    def input_path(self) -> Path:
        return self._input_path

    @property
    def output_path(self) -> Path:
        return self._output_path

    @property
    def config(self) -> FilterConfig:
        return self._config

    @property
    def cache_root(self) -> Path | None:
        return self._config.cache_root

    @property
    def logger_name(self) -> str:
        name = f"persistent-filter:{self._config.name or type(self).__name__}"
        if self._config.annotation:
            name += f" > [{self._config.annotation}]"
        return name

    @property
    def needs_reset(self) -> bool:
        return self._needs_reset

    # Extension points

    def process_string(self, contents: str | bytes, relative_path: str) -> object:
        """Transform one file's contents; return str, bytes or {'output': ...}."""
        raise NotImplementedError

    def base_dir(self) -> Path:
        """Root of the code implementing this filter, hashed into cache_key()."""
        raise NotImplementedError

    def cache_key(self) -> str:
        """Namespace for persisted outputs; changes whenever base_dir() changes."""
        return hash_for_dir(self.base_dir())

    def cache_key_process_string(self, contents: str | bytes, relative_path: str) -> str:
        """Key for one file's output; override to fold in external state."""
        return cache_key_for_contents(contents, relative_path)

    def post_process(self, result: ProcessResult, relative_path: str) -> ProcessResult:
        """Adjust a (possibly cached) result before it is written."""
        return result

    def record_dependencies(
        self, relative_path: str, dependencies: Iterable[str | Path]
    ) -> None:
        """Declare files relative_path depends on; no-op without dependency tracking."""
        if self.dependencies is None:
            return
        self.dependencies.set_dependencies(relative_path, dependencies)

    # Path mapping

    def is_directory(self, relative_path: str, entry: Entry | None = None) -> bool:
        if entry is not None:
            return entry.is_directory()
        return (self._input_path / relative_path).is_dir()

    def get_dest_file_path(self, relative_path: str, entry: Entry | None = None) -> str | None:
        """Map an input path to its output path, None when it is not processed."""
        if self.is_directory(relative_path, entry):
            return None
        if self.extensions is None:
            return relative_path
        for ext in self.extensions:
            if relative_path.endswith(f".{ext}"):
                if self.target_extension is not None:
                    return relative_path[: -len(ext)] + self.target_extension
                return relative_path
        return None

    def can_process_file(self, relative_path: str, entry: Entry | None = None) -> bool:
        return self.get_dest_file_path(relative_path, entry) is not None

    # Build cycle

    def build(self) -> dict[str, object]:
        """Run one build cycle and return its summary."""
        started = time.perf_counter()
        src_dir = self._input_path
        dest_dir = self._output_path

        if self.dependency_invalidation and self.dependencies is None:
            self.dependencies = self.processor.initial_dependencies(src_dir)

        if self._needs_reset:
            self._reset(src_dir, dest_dir)

        derive_stats = DerivePatchesStats()
        patches, invalidated = self.derive_patches(src_dir, derive_stats)

        if not patches:
            return self._summary(started, derive_stats, ApplyPatchesStats(), invalidated)

        self._needs_reset = True
        ensure_dir(dest_dir)
        apply_stats = ApplyPatchesStats()
        apply_started = time.perf_counter()
        try:
            self.apply_patches(patches, src_dir, dest_dir, invalidated, apply_stats)
            if self.dependencies is not None:
                self.processor.seal_dependencies(self.dependencies)
        except Exception as exc:
            self.log_event(
                "build_failed",
                ok=False,
                error_code=type(exc).__name__,
                metadata={
                    "message": str(exc),
                    "apply_profile": asdict(apply_stats),
                },
            )
            raise
        self._needs_reset = False
        self.log_event(
            "apply_patches",
            metadata={
                "duration_seconds": time.perf_counter() - apply_started,
                "apply_profile": asdict(apply_stats),
            },
        )
        return self._summary(started, derive_stats, apply_stats, invalidated)

    def derive_patches(
        self, src_dir: Path, stats: DerivePatchesStats
    ) -> tuple[list[Patch], frozenset[str]]:
        """Walk src_dir, diff it against the current snapshot and merge invalidations.

        The current snapshot is replaced by the new walk, and the dependency
        tracker is pruned of unlinked files.
        """
        started = time.perf_counter()
        walk_started = time.perf_counter()
        next_tree = walk_snapshot(src_dir)
        stats.walk_seconds = time.perf_counter() - walk_started

        invalidations_started = time.perf_counter()
        invalidated: tuple[str, ...] = ()
        if self.dependencies is not None:
            invalidated = self.dependencies.invalidated_files()
            stats.tracked_dependencies = self.dependencies.count_unique()
        base_patches = calculate_patch(self.current_tree, next_tree)
        patches = merge_invalidations(invalidated, self.current_tree, next_tree, base_patches)
        stats.invalidation_seconds = time.perf_counter() - invalidations_started

        stats.entries = len(next_tree)
        stats.patches = len(patches)
        stats.invalidated = len(invalidated)
        stats.invalidation_patches = len(patches) - len(base_patches)

        self.current_tree = next_tree

        if self.dependencies is not None and patches:
            removed = [patch.relative_path for patch in patches if patch.operation == UNLINK]
            self.dependencies = self.dependencies.copy_without(removed)

        stats.total_seconds = time.perf_counter() - started
        self.log_event("derive_patches", metadata={"derive_profile": asdict(stats)})
        return patches, frozenset(invalidated)

    def apply_patches(
        self,
        patches: list[Patch],
        src_dir: Path,
        dest_dir: Path,
        invalidated: frozenset[str],
        stats: ApplyPatchesStats,
    ) -> None:
        """Apply patches in order to dest_dir.

        Structural operations and verbatim links always run inline. Content
        operations run inline too, unless async is enabled, in which case they
        are queued and run with bounded concurrency after the ordered pass.
        """
        pending: list[Callable[[ApplyPatchesStats], str | bytes | None]] = []
        for patch in patches:
            operation = patch.operation
            relative_path = patch.relative_path
            entry = patch.entry
            output_path = dest_dir / (self.get_dest_file_path(relative_path, entry) or relative_path)

            if operation == MKDIR:
                stats.mkdir += 1
                self._structural(operation, relative_path, output_path, output_path.mkdir)
            elif operation == RMDIR:
                stats.rmdir += 1
                self._structural(operation, relative_path, output_path, output_path.rmdir)
            elif operation == UNLINK:
                stats.unlink += 1
                self._structural(operation, relative_path, output_path, output_path.unlink)
                self._output_links.discard(output_path)
            elif operation in (CREATE, CHANGE):
                is_change = operation == CHANGE
                if is_change:
                    stats.change += 1
                else:
                    stats.create += 1
                stats.handle_file += 1
                if not self.can_process_file(relative_path, entry):
                    self._link_file(relative_path, src_dir, output_path, is_change, stats)
                    continue
                stats.processed += 1
                if output_path in self._output_links:
                    self._output_links.discard(output_path)
                    self._structural(UNLINK, relative_path, output_path, output_path.unlink)
                work = partial(
                    self._process_task,
                    src_dir,
                    dest_dir,
                    entry,
                    relative_path in invalidated,
                    is_change,
                )
                if self.async_:
                    pending.append(work)
                    continue
                work(stats)
            else:
                stats.other += 1

        if not pending:
            return
        task_stats = [ApplyPatchesStats() for _ in pending]
        tasks = [partial(work, own) for work, own in zip(pending, task_stats)]
        try:
            run_queue(tasks, self.concurrency)
        finally:
            for own in task_stats:
                stats.merge(own)

    def process_and_cache_file(
        self,
        src_dir: Path,
        dest_dir: Path,
        entry: Entry,
        force_invalidation: bool,
        is_change: bool,
        stats: ApplyPatchesStats,
    ) -> str | bytes | None:
        """Process one file, attaching file and tree context to failures."""
        relative_path = entry.relative_path
        try:
            return self.process_file(
                src_dir, dest_dir, relative_path, force_invalidation, is_change, stats, entry
            )
        except PathMappingError:
            raise
        except Exception as exc:
            reason = str(exc) or type(exc).__name__
            raise FilterProcessingError(reason, file=relative_path, tree_dir=src_dir) from exc

    def process_file(
        self,
        src_dir: Path,
        dest_dir: Path,
        relative_path: str,
        force_invalidation: bool,
        is_change: bool,
        stats: ApplyPatchesStats,
        entry: Entry | None = None,
    ) -> str | bytes | None:
        """Read, transform and write one file; returns None when the write was skipped."""
        contents = self._read_input(src_dir / relative_path)
        stats.process_string += 1
        output = self.processor.process_string(
            self, contents, relative_path, force_invalidation, stats
        )
        dest_relative = self.get_dest_file_path(relative_path, entry)
        if dest_relative is None:
            raise PathMappingError(relative_path)
        output_path = dest_dir / dest_relative
        encoding = None if isinstance(output, bytes) else (self.output_encoding or "utf-8")

        if is_change and read_output(output_path, encoding) == output:
            stats.skipped_unchanged += 1
            return None

        write_output(output_path, output, encoding)
        return output

    def log_event(
        self,
        phase: str,
        ok: bool = True,
        error_code: str | None = None,
        metadata: dict[str, object] | None = None,
    ) -> None:
        if self._logger is None:
            return
        self._logger.append(
            BuildEvent(
                timestamp=utc_timestamp(),
                filter_name=self.logger_name,
                phase=phase,
                ok=ok,
                error_code=error_code,
                metadata=metadata or {},
            )
        )

    def _process_task(
        self,
        src_dir: Path,
        dest_dir: Path,
        entry: Entry,
        force_invalidation: bool,
        is_change: bool,
        stats: ApplyPatchesStats,
    ) -> str | bytes | None:
        started = time.perf_counter()
        try:
            return self.process_and_cache_file(
                src_dir, dest_dir, entry, force_invalidation, is_change, stats
            )
        finally:
            stats.handle_file_seconds += time.perf_counter() - started

    def _link_file(
        self,
        relative_path: str,
        src_dir: Path,
        output_path: Path,
        is_change: bool,
        stats: ApplyPatchesStats,
    ) -> None:
        started = time.perf_counter()
        stats.linked += 1
        try:
            if is_change:
                output_path.unlink(missing_ok=True)
            symlink_or_copy(src_dir / relative_path, output_path)
        except OSError as exc:
            raise PatchOperationError("link", relative_path, output_path) from exc
        finally:
            stats.handle_file_seconds += time.perf_counter() - started
        self._output_links.add(output_path)

    def _read_input(self, path: Path) -> str | bytes:
        if self.input_encoding is None:
            return path.read_bytes()
        with path.open("r", encoding=self.input_encoding, newline="") as handle:
            return handle.read()

    @staticmethod
    def _structural(
        operation: str,
        relative_path: str,
        output_path: Path,
        action: Callable[[], None],
    ) -> None:
        try:
            action()
        except OSError as exc:
            raise PatchOperationError(operation, relative_path, output_path) from exc

    def _reset(self, src_dir: Path, dest_dir: Path) -> None:
        started = time.perf_counter()
        self.current_tree = Snapshot.empty()
        if self.dependencies is not None:
            self.dependencies = self.processor.initial_dependencies(src_dir)
        remove_tree(dest_dir)
        ensure_dir(dest_dir)
        self._output_links.clear()
        self.log_event("reset", metadata={"duration_seconds": time.perf_counter() - started})

    def _summary(
        self,
        started: float,
        derive_stats: DerivePatchesStats,
        apply_stats: ApplyPatchesStats,
        invalidated: frozenset[str],
    ) -> dict[str, object]:
        return {
            "patches": derive_stats.patches,
            "invalidated": sorted(invalidated),
            "duration_ms": int((time.perf_counter() - started) * 1000),
            "derive_profile": asdict(derive_stats),
            "apply_profile": asdict(apply_stats),
        }

"""Cache strategies deciding when a transformation actually runs."""

from __future__ import annotations

import base64
import json
import time
import zlib
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from persistent_filter.cache.backend import DiskCache
from persistent_filter.dependencies import Dependencies
from persistent_filter.stats import ApplyPatchesStats

if TYPE_CHECKING:
    from persistent_filter.filter import Filter

DEPENDENCIES_CACHE_KEY = "dependencies"

ProcessResult = dict[str, object]


class CacheStrategy(Protocol):
    """Protocol implemented by cache strategies."""

    def init(self, ctx: Filter) -> None: ...

    def process_string(
        self,
        ctx: Filter,
        contents: str | bytes,
        relative_path: str,
        force_invalidation: bool,
        stats: ApplyPatchesStats,
    ) -> str | bytes: ...

    def initial_dependencies(self, root_dir: Path) -> Dependencies: ...

    def seal_dependencies(self, dependencies: Dependencies) -> None: ...


def as_result(value: object) -> ProcessResult:
    """Normalize a process_string return value into a result mapping."""
    if isinstance(value, dict):
        if "output" not in value:
            raise TypeError("process_string result mappings must contain an 'output' key.")
        return dict(value)
    if isinstance(value, (str, bytes)):
        return {"output": value}
    raise TypeError(
        f"process_string must return str, bytes or a mapping, got {type(value).__name__}."
    )


def result_output(result: ProcessResult) -> str | bytes:
    output = result.get("output")
    if not isinstance(output, (str, bytes)):
        raise TypeError("post_process must return a mapping with a str or bytes 'output'.")
    return output


def serialize_result(result: ProcessResult) -> bytes:
    payload = dict(result)
    output = payload.pop("output")
    if isinstance(output, bytes):
        payload["output_b64"] = base64.b64encode(output).decode("ascii")
    else:
        payload["output"] = output
    return json.dumps(payload, sort_keys=True).encode("utf-8")


def deserialize_result(raw: bytes) -> ProcessResult:
    payload = json.loads(raw.decode("utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("Cached result must be a JSON object.")
    if "output_b64" in payload:
        payload["output"] = base64.b64decode(payload.pop("output_b64"))
    if not isinstance(payload.get("output"), (str, bytes)):
        raise ValueError("Cached result is missing its output.")
    return payload


def _timed_process_string(
    ctx: Filter,
    contents: str | bytes,
    relative_path: str,
    stats: ApplyPatchesStats,
) -> ProcessResult:
    started = time.perf_counter()
    try:
        return as_result(ctx.process_string(contents, relative_path))
    finally:
        stats.process_string_seconds += time.perf_counter() - started


class DefaultStrategy:
    """Always run the transformation; nothing survives the process."""

    def init(self, ctx: Filter) -> None:
        return None

    def process_string(
        self,
        ctx: Filter,
        contents: str | bytes,
        relative_path: str,
        force_invalidation: bool,
        stats: ApplyPatchesStats,
    ) -> str | bytes:
        result = _timed_process_string(ctx, contents, relative_path, stats)
        return result_output(ctx.post_process(result, relative_path))

    def initial_dependencies(self, root_dir: Path) -> Dependencies:
        return Dependencies(root_dir)

    def seal_dependencies(self, dependencies: Dependencies) -> None:
        dependencies.seal()


class PersistentStrategy:
    """Look outputs up by content key before running the transformation."""

    def __init__(self) -> None:
        self._ctx: Filter | None = None
        self._cache: DiskCache | None = None
        self._dependencies_cache: DiskCache | None = None

    @property
    def cache(self) -> DiskCache:
        if self._cache is None:
            raise RuntimeError("PersistentStrategy.init() has not been called.")
        return self._cache

    @property
    def dependencies_cache(self) -> DiskCache:
        if self._dependencies_cache is None:
            raise RuntimeError("PersistentStrategy.init() has not been called.")
        return self._dependencies_cache

    def init(self, ctx: Filter) -> None:
        namespace = ctx.cache_key()
        self._ctx = ctx
        self._cache = DiskCache(namespace, root=ctx.cache_root)
        self._dependencies_cache = DiskCache(f"{namespace}-dependencies", root=ctx.cache_root)

    def process_string(
        self,
        ctx: Filter,
        contents: str | bytes,
        relative_path: str,
        force_invalidation: bool,
        stats: ApplyPatchesStats,
    ) -> str | bytes:
        key = ctx.cache_key_process_string(contents, relative_path)
        result = None if force_invalidation else self._read(key)
        if result is not None:
            stats.persistent_cache_hit += 1
        else:
            stats.persistent_cache_prime += 1
            result = _timed_process_string(ctx, contents, relative_path, stats)
            try:
                payload = serialize_result(result)
                self.cache.set(key, payload)
            except (OSError, TypeError, ValueError) as exc:
                stats.persistent_cache_write_error += 1
                ctx.log_event(
                    "cache_write_failed",
                    ok=False,
                    error_code=type(exc).__name__,
                    metadata={"path": relative_path, "key": key},
                )
        return result_output(ctx.post_process(result, relative_path))

    def initial_dependencies(self, root_dir: Path) -> Dependencies:
        try:
            entry = self.dependencies_cache.get(DEPENDENCIES_CACHE_KEY)
        except (OSError, zlib.error):
            return Dependencies(root_dir)
        if not entry.is_cached or entry.value is None:
            return Dependencies(root_dir)
        try:
            payload = json.loads(entry.value.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return Dependencies(root_dir)
        if not isinstance(payload, dict):
            return Dependencies(root_dir)
        return Dependencies.deserialize(payload, root_dir)

    def seal_dependencies(self, dependencies: Dependencies) -> None:
        dependencies.seal()
        payload = json.dumps(dependencies.serialize(), sort_keys=True).encode("utf-8")
        try:
            self.dependencies_cache.set(DEPENDENCIES_CACHE_KEY, payload)
        except OSError as exc:
            if self._ctx is not None:
                self._ctx.log_event(
                    "cache_write_failed",
                    ok=False,
                    error_code=type(exc).__name__,
                    metadata={"key": DEPENDENCIES_CACHE_KEY},
                )

    def _read(self, key: str) -> ProcessResult | None:
        try:
            entry = self.cache.get(key)
        except (OSError, zlib.error):
            return None
        if not entry.is_cached or entry.value is None:
            return None
        try:
            return deserialize_result(entry.value)
        except (UnicodeDecodeError, ValueError):
            return None

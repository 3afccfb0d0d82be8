from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from unittest.mock import patch

import pytest
from conftest import UppercaseFilter

from persistent_filter import ApplyPatchesStats, FilterConfig
from persistent_filter.cache import DefaultStrategy, DiskCache, PersistentStrategy
from persistent_filter.cache.strategies import (
    DEPENDENCIES_CACHE_KEY,
    as_result,
    deserialize_result,
    serialize_result,
)
from persistent_filter.logging import JsonlBuildLogger


def _filter(
    trees: tuple[Path, Path],
    make_config: Callable[..., FilterConfig],
    logger: JsonlBuildLogger | None = None,
) -> UppercaseFilter:
    input_dir, output_dir = trees
    return UppercaseFilter(input_dir, output_dir, make_config(persist=True), logger=logger)


def test_persist_selects_persistent_strategy(trees, make_config) -> None:
    input_dir, output_dir = trees

    assert isinstance(_filter(trees, make_config).processor.strategy, PersistentStrategy)
    plain = UppercaseFilter(input_dir, output_dir, make_config())
    assert isinstance(plain.processor.strategy, DefaultStrategy)


def test_namespaces_follow_cache_key(trees, make_config, tmp_path: Path) -> None:
    strategy = _filter(trees, make_config).processor.strategy
    assert isinstance(strategy, PersistentStrategy)

    assert strategy.cache.namespace == "uppercase-v1"
    assert strategy.dependencies_cache.namespace == "uppercase-v1-dependencies"
    assert strategy.cache.root == (tmp_path / "cache" / "uppercase-v1").resolve()


def test_miss_primes_then_hit_skips_transformation(trees, make_config) -> None:
    instance = _filter(trees, make_config)
    stats = ApplyPatchesStats()

    first = instance.processor.process_string(instance, "hello", "a.txt", False, stats)
    second = instance.processor.process_string(instance, "hello", "a.txt", False, stats)

    assert first == second == "HELLO"
    assert instance.calls == ["a.txt"]
    assert stats.persistent_cache_prime == 1
    assert stats.persistent_cache_hit == 1


def test_second_instance_reads_first_instance_entries(trees, make_config) -> None:
    first = _filter(trees, make_config)
    first.processor.process_string(first, "hello", "a.txt", False, ApplyPatchesStats())

    second = _filter(trees, make_config)
    stats = ApplyPatchesStats()
    output = second.processor.process_string(second, "hello", "a.txt", False, stats)

    assert output == "HELLO"
    assert second.calls == []
    assert stats.persistent_cache_hit == 1


def test_force_invalidation_bypasses_lookup(trees, make_config) -> None:
    instance = _filter(trees, make_config)
    stats = ApplyPatchesStats()
    instance.processor.process_string(instance, "hello", "a.txt", False, stats)

    instance.processor.process_string(instance, "hello", "a.txt", True, stats)

    assert instance.calls == ["a.txt", "a.txt"]
    assert stats.persistent_cache_prime == 2
    assert stats.persistent_cache_hit == 0


def test_corrupt_entry_is_treated_as_miss(trees, make_config) -> None:
    instance = _filter(trees, make_config)
    strategy = instance.processor.strategy
    assert isinstance(strategy, PersistentStrategy)
    key = instance.cache_key_process_string("hello", "a.txt")
    strategy.cache.path_for(key).parent.mkdir(parents=True, exist_ok=True)
    strategy.cache.path_for(key).write_bytes(b"not zlib")
    stats = ApplyPatchesStats()

    output = instance.processor.process_string(instance, "hello", "a.txt", False, stats)

    assert output == "HELLO"
    assert stats.persistent_cache_prime == 1


def test_write_failure_is_counted_and_logged(trees, make_config, tmp_path: Path) -> None:
    logger = JsonlBuildLogger(tmp_path / "build.jsonl")
    instance = _filter(trees, make_config, logger=logger)
    stats = ApplyPatchesStats()

    with patch.object(DiskCache, "set", side_effect=PermissionError("read-only")):
        output = instance.processor.process_string(instance, "hello", "a.txt", False, stats)

    assert output == "HELLO"
    assert stats.persistent_cache_write_error == 1
    events = logger.read(phase="cache_write_failed")
    assert len(events) == 1
    assert events[0]["ok"] is False
    assert events[0]["error_code"] == "PermissionError"
    assert events[0]["metadata"]["path"] == "a.txt"


def test_post_process_runs_on_cache_hits(trees, make_config) -> None:
    class Suffixed(UppercaseFilter):
        def post_process(self, result, relative_path):
            return {**result, "output": f"{result['output']}!"}

    input_dir, output_dir = trees
    instance = Suffixed(input_dir, output_dir, make_config(persist=True))
    stats = ApplyPatchesStats()

    first = instance.processor.process_string(instance, "hi", "a.txt", False, stats)
    second = instance.processor.process_string(instance, "hi", "a.txt", False, stats)

    assert first == second == "HI!"
    assert stats.persistent_cache_hit == 1


def test_dependencies_round_trip_through_cache(trees, make_config) -> None:
    input_dir, _ = trees
    (input_dir / "shared.json").write_text("{}", encoding="utf-8")
    instance = _filter(trees, make_config)
    strategy = instance.processor.strategy
    assert isinstance(strategy, PersistentStrategy)
    deps = strategy.initial_dependencies(input_dir)
    deps.set_dependencies("b.txt", ["shared.json"])

    strategy.seal_dependencies(deps)

    assert strategy.dependencies_cache.has(DEPENDENCIES_CACHE_KEY)
    (input_dir / "shared.json").write_text('{"v": 2}', encoding="utf-8")
    restored = strategy.initial_dependencies(input_dir)
    assert restored.invalidated_files() == ("b.txt",)


def test_unreadable_dependencies_entry_yields_empty_tracker(trees, make_config) -> None:
    input_dir, _ = trees
    strategy = _filter(trees, make_config).processor.strategy
    assert isinstance(strategy, PersistentStrategy)
    strategy.dependencies_cache.set(DEPENDENCIES_CACHE_KEY, b"[1, 2]")

    restored = strategy.initial_dependencies(input_dir)

    assert restored.tracked_files() == ()
    assert restored.sealed is False


def test_result_serialization_preserves_bytes_and_extra_keys() -> None:
    raw = serialize_result({"output": b"\x00\xff", "map": "x"})

    assert json.loads(raw)["map"] == "x"
    assert deserialize_result(raw) == {"output": b"\x00\xff", "map": "x"}
    assert as_result("text") == {"output": "text"}


@pytest.mark.parametrize("persist", [False, True])
def test_unserializable_result_still_builds(trees, make_config, persist: bool) -> None:
    class WithMetadata(UppercaseFilter):
        def process_string(self, contents, relative_path):
            return {"output": super().process_string(contents, relative_path), "meta": {1, 2}}

    input_dir, output_dir = trees
    (input_dir / "a.txt").write_text("hi", encoding="utf-8")
    instance = WithMetadata(input_dir, output_dir, make_config(persist=persist))

    result = instance.build()

    assert (output_dir / "a.txt").read_text(encoding="utf-8") == "HI"
    assert result["apply_profile"]["persistent_cache_write_error"] == (1 if persist else 0)

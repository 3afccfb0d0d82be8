from __future__ import annotations

from pathlib import Path

from persistent_filter.logging import BuildEvent, JsonlBuildLogger, utc_timestamp


def _event(phase: str, timestamp: str = "2026-01-01T00:00:00.000Z") -> BuildEvent:
    return BuildEvent(
        timestamp=timestamp,
        filter_name="persistent-filter:Test",
        phase=phase,
        ok=True,
        error_code=None,
        metadata={"patches": 1},
    )


def test_append_writes_one_json_object_per_line(tmp_path: Path) -> None:
    logger = JsonlBuildLogger(tmp_path / "logs" / "build.jsonl")
    logger.append(_event("derive_patches"))
    logger.append(_event("apply_patches"))

    lines = logger.path.read_text(encoding="utf-8").splitlines()

    assert len(lines) == 2
    assert logger.read()[0]["phase"] == "derive_patches"
    assert logger.read()[1]["metadata"] == {"patches": 1}


def test_read_filters_by_phase_since_and_limit(tmp_path: Path) -> None:
    logger = JsonlBuildLogger(tmp_path / "build.jsonl")
    logger.append(_event("reset", "2026-01-01T00:00:00.000Z"))
    logger.append(_event("derive_patches", "2026-01-02T00:00:00.000Z"))
    logger.append(_event("derive_patches", "2026-01-03T00:00:00.000Z"))

    assert len(logger.read(phase="derive_patches")) == 2
    assert [e["phase"] for e in logger.read(since="2026-01-02T00:00:00.000Z")] == [
        "derive_patches",
        "derive_patches",
    ]
    assert logger.read(limit=1)[0]["timestamp"] == "2026-01-03T00:00:00.000Z"
    assert logger.read(limit=0) == []


def test_read_skips_corrupt_lines_and_missing_file(tmp_path: Path) -> None:
    logger = JsonlBuildLogger(tmp_path / "build.jsonl")

    assert logger.read() == []

    logger.append(_event("reset"))
    with logger.path.open("a", encoding="utf-8") as handle:
        handle.write("{not json\n\n")
    logger.append(_event("apply_patches"))

    assert [e["phase"] for e in logger.read()] == ["reset", "apply_patches"]


def test_utc_timestamp_format() -> None:
    stamp = utc_timestamp()

    assert stamp.endswith("Z")
    assert "T" in stamp

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from persistent_filter import Filter, FilterConfig


class UppercaseFilter(Filter):
    """Uppercases text and remembers which paths it transformed."""

    def __init__(self, *args: object, **kwargs: object) -> None:
        self.calls: list[str] = []
        super().__init__(*args, **kwargs)  # type: ignore[arg-type]

    def process_string(self, contents: str | bytes, relative_path: str) -> object:
        self.calls.append(relative_path)
        assert isinstance(contents, str)
        return contents.upper()

    def base_dir(self) -> Path:
        return Path(__file__).resolve().parent

    def cache_key(self) -> str:
        return "uppercase-v1"


class IncludeFilter(Filter):
    """Replaces '@include <path>' lines with the referenced file and records it."""

    def __init__(self, *args: object, **kwargs: object) -> None:
        self.calls: list[str] = []
        super().__init__(*args, **kwargs)  # type: ignore[arg-type]

    def process_string(self, contents: str | bytes, relative_path: str) -> object:
        self.calls.append(relative_path)
        assert isinstance(contents, str)
        parent = Path(relative_path).parent
        included: list[str] = []
        lines: list[str] = []
        for line in contents.splitlines():
            if line.startswith("@include "):
                name = line.removeprefix("@include ").strip()
                included.append(name)
                target = self.input_path / parent / name
                lines.append(target.read_text(encoding="utf-8").strip())
                continue
            lines.append(line)
        self.record_dependencies(relative_path, included)
        return "\n".join(lines)

    def base_dir(self) -> Path:
        return Path(__file__).resolve().parent

    def cache_key(self) -> str:
        return "include-v1"


def read_tree(root: Path) -> dict[str, str]:
    """Map every file under root (following links) to its text."""
    output: dict[str, str] = {}
    for path in sorted(root.rglob("*")):
        if path.is_file():
            output[path.relative_to(root).as_posix()] = path.read_text(encoding="utf-8")
    return output


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., FilterConfig]:
    def _make(**kwargs: object) -> FilterConfig:
        kwargs.setdefault("concurrency", 2)
        kwargs.setdefault("cache_root", tmp_path / "cache")
        return FilterConfig(**kwargs)  # type: ignore[arg-type]

    return _make


@pytest.fixture
def trees(tmp_path: Path) -> tuple[Path, Path]:
    input_dir = tmp_path / "input"
    output_dir = tmp_path / "output"
    input_dir.mkdir()
    output_dir.mkdir()
    return input_dir, output_dir

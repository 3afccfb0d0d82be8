"""Per-file dependency tracking and forced invalidation."""

from __future__ import annotations

import posixpath
import threading
from collections.abc import Iterable
from pathlib import Path, PurePosixPath

from persistent_filter.errors import DependenciesSealedError
from persistent_filter.hashing import sha256_file

DEPENDENCIES_SCHEMA_VERSION = 1


class Dependencies:
    """Records which extra files each processed file depends on.

    Dependencies inside the root are keyed by their root-relative POSIX path,
    dependencies outside it by their absolute path. seal() captures a content
    hash of every dependency; invalidated_files() reports the tracked files
    whose dependencies no longer match those hashes.
    """

    def __init__(self, root_dir: Path) -> None:
        self._root_dir = root_dir.resolve()
        self._sealed = False
        self._dependency_map: dict[str, tuple[str, ...]] = {}
        self._dependency_states: dict[str, str | None] = {}
        self._lock = threading.Lock()

    @property
    def root_dir(self) -> Path:
        return self._root_dir

    @property
    def sealed(self) -> bool:
        return self._sealed

    def set_dependencies(self, relative_path: str, dependencies: Iterable[str | Path]) -> None:
        """Record the dependencies discovered while processing relative_path.

        Relative dependency paths resolve against the directory of
        relative_path; an empty iterable clears the record.
        """
        if self._sealed:
            raise DependenciesSealedError(
                f"Cannot record dependencies for {relative_path}: tracker is sealed."
            )
        normalized = tuple(sorted({self._normalize(relative_path, dep) for dep in dependencies}))
        with self._lock:
            if normalized:
                self._dependency_map[relative_path] = normalized
            else:
                self._dependency_map.pop(relative_path, None)

    def dependencies_of(self, relative_path: str) -> tuple[str, ...]:
        return self._dependency_map.get(relative_path, ())

    def tracked_files(self) -> tuple[str, ...]:
        return tuple(sorted(self._dependency_map))

    def count_unique(self) -> int:
        """Return the number of distinct dependency paths."""
        return len(self._all_dependencies())

    def seal(self) -> None:
        """Capture dependency states for the next invalidated_files() call."""
        self._dependency_states = {dep: self._state_of(dep) for dep in self._all_dependencies()}
        self._sealed = True

    def invalidated_files(self) -> tuple[str, ...]:
        """Return tracked files whose dependencies changed since the last seal."""
        if not self._sealed:
            return ()
        changed = {
            dep
            for dep, state in self._dependency_states.items()
            if self._state_of(dep) != state
        }
        if not changed:
            return ()
        return tuple(
            path
            for path in self.tracked_files()
            if any(dep in changed for dep in self.dependencies_of(path))
        )

    def copy_without(self, removed_paths: Iterable[str]) -> Dependencies:
        """Return an unsealed copy without records for removed_paths."""
        removed = set(removed_paths)
        copy = Dependencies(self._root_dir)
        copy._dependency_map = {
            path: deps for path, deps in self._dependency_map.items() if path not in removed
        }
        copy._dependency_states = dict(self._dependency_states)
        return copy

    def serialize(self) -> dict[str, object]:
        return {
            "schema_version": DEPENDENCIES_SCHEMA_VERSION,
            "root_dir": str(self._root_dir),
            "dependencies": {
                path: list(deps) for path, deps in sorted(self._dependency_map.items())
            },
            "states": dict(sorted(self._dependency_states.items())),
        }

    @classmethod
    def deserialize(cls, payload: dict[str, object], root_dir: Path) -> Dependencies:
        """Restore a sealed tracker; malformed payloads yield an empty tracker."""
        tracker = cls(root_dir)
        if payload.get("schema_version") != DEPENDENCIES_SCHEMA_VERSION:
            return tracker
        raw_dependencies = payload.get("dependencies")
        raw_states = payload.get("states")
        if not isinstance(raw_dependencies, dict) or not isinstance(raw_states, dict):
            return tracker
        for path, deps in raw_dependencies.items():
            if not isinstance(path, str) or not isinstance(deps, list):
                continue
            tracker._dependency_map[path] = tuple(dep for dep in deps if isinstance(dep, str))
        for dep, state in raw_states.items():
            if not isinstance(dep, str):
                continue
            if state is not None and not isinstance(state, str):
                continue
            tracker._dependency_states[dep] = state
        tracker._sealed = True
        return tracker

    def _all_dependencies(self) -> set[str]:
        output: set[str] = set()
        for deps in self._dependency_map.values():
            output.update(deps)
        return output

    def _normalize(self, relative_path: str, dependency: str | Path) -> str:
        raw = Path(dependency)
        if raw.is_absolute():
            resolved = raw.resolve()
        else:
            parent = PurePosixPath(relative_path).parent.as_posix()
            joined = posixpath.normpath(posixpath.join(parent, Path(dependency).as_posix()))
            if not joined.startswith("../") and joined != "..":
                return joined
            resolved = (self._root_dir / joined).resolve()
        if resolved.is_relative_to(self._root_dir):
            return resolved.relative_to(self._root_dir).as_posix()
        return str(resolved)

    def _state_of(self, dependency: str) -> str | None:
        path = Path(dependency)
        if not path.is_absolute():
            path = self._root_dir / dependency
        try:
            return sha256_file(path)
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            return None

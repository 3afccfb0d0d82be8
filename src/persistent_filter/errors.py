"""Error taxonomy for filter builds."""

from __future__ import annotations

from pathlib import Path


class FilterDefinitionError(TypeError):
    """Raised when a filter subclass does not provide its required methods."""


class PathMappingError(RuntimeError):
    """Raised when an accepted path does not map to any output path."""

    def __init__(self, relative_path: str) -> None:
        super().__init__(
            f'can_process_file("{relative_path}") is true, '
            f'but get_dest_file_path("{relative_path}") is None'
        )
        self.relative_path = relative_path


class PatchOperationError(Exception):
    """Raised when a structural operation on the output tree fails."""

    def __init__(self, operation: str, relative_path: str, output_path: Path) -> None:
        super().__init__(f"{operation} failed for {relative_path} ({output_path})")
        self.operation = operation
        self.relative_path = relative_path
        self.output_path = output_path


class FilterProcessingError(Exception):
    """Raised when processing one file fails; carries the file and tree context."""

    def __init__(self, reason: str, file: str, tree_dir: Path) -> None:
        super().__init__(f"{reason} (file: {file}, tree: {tree_dir})")
        self.reason = reason
        self.file = file
        self.tree_dir = tree_dir


class DependenciesSealedError(RuntimeError):
    """Raised when dependencies are recorded on a sealed tracker."""

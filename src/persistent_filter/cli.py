"""Command-line entrypoint running one build of a filter class."""

from __future__ import annotations

import argparse
import importlib
import json
import sys
from pathlib import Path
from typing import TextIO

from persistent_filter.config import ConfigOverrides, load_effective_config
from persistent_filter.errors import (
    FilterDefinitionError,
    FilterProcessingError,
    PatchOperationError,
)
from persistent_filter.filter import Filter
from persistent_filter.fs import ensure_dir, remove_tree
from persistent_filter.logging import JsonlBuildLogger


def build_arg_parser() -> argparse.ArgumentParser:
    """Build argument parser for one-shot builds."""
    parser = argparse.ArgumentParser(prog="persistent-filter")
    parser.add_argument("--input", required=True)
    parser.add_argument("--output", required=True)
    parser.add_argument("--filter", required=True, help="Filter class as 'module:ClassName'.")
    parser.add_argument("--project-root", required=False, default=".")
    parser.add_argument("--extensions", nargs="+", required=False, default=None)
    parser.add_argument("--target-extension", required=False, default=None)
    parser.add_argument("--persist", action="store_true", default=None)
    parser.add_argument("--async", dest="async_", action="store_true", default=None)
    parser.add_argument("--concurrency", type=int, required=False, default=None)
    parser.add_argument(
        "--dependency-invalidation", action="store_true", default=None
    )
    parser.add_argument("--cache-root", required=False, default=None)
    parser.add_argument("--log", required=False, default=None)
    return parser


def load_filter_class(target: str, project_root: Path | None = None) -> type[Filter]:
    """Import 'module:ClassName' and check it is a Filter subclass.

    project_root is made importable first so filters can live beside their config.
    """
    if project_root is not None:
        root = str(project_root.resolve())
        if root not in sys.path:
            sys.path.insert(0, root)
    module_name, sep, class_name = target.partition(":")
    if not sep or not module_name or not class_name:
        raise ValueError(f"Filter must be given as 'module:ClassName', got {target!r}.")
    module = importlib.import_module(module_name)
    candidate = getattr(module, class_name, None)
    if not isinstance(candidate, type) or not issubclass(candidate, Filter):
        raise ValueError(f"{target} is not a Filter subclass.")
    return candidate


def run(argv: list[str] | None = None, out_stream: TextIO | None = None) -> int:
    """Run one build and write a JSON envelope; returns the process exit code."""
    out = out_stream or sys.stdout
    args = build_arg_parser().parse_args(argv)
    overrides = ConfigOverrides(
        extensions=tuple(args.extensions) if args.extensions is not None else None,
        target_extension=args.target_extension,
        persist=args.persist,
        async_=args.async_,
        concurrency=args.concurrency,
        dependency_invalidation=args.dependency_invalidation,
        cache_root=Path(args.cache_root) if args.cache_root is not None else None,
    )
    try:
        config = load_effective_config(Path(args.project_root), overrides)
        filter_class = load_filter_class(args.filter, Path(args.project_root))
    except (ValueError, ImportError) as exc:
        _write(out, {"ok": False, "error": {"code": "INVALID_CONFIG", "message": str(exc)}})
        return 2

    output_dir = Path(args.output)
    remove_tree(output_dir)
    ensure_dir(output_dir)
    logger = JsonlBuildLogger(Path(args.log)) if args.log is not None else None
    try:
        instance = filter_class(Path(args.input), output_dir, config, logger=logger)
    except (FilterDefinitionError, ValueError) as exc:
        _write(out, {"ok": False, "error": {"code": "INVALID_CONFIG", "message": str(exc)}})
        return 2
    try:
        summary = instance.build()
    except FilterProcessingError as exc:
        _write(
            out,
            {
                "ok": False,
                "error": {
                    "code": "PROCESSING_FAILED",
                    "message": exc.reason,
                    "file": exc.file,
                    "tree_dir": str(exc.tree_dir),
                },
            },
        )
        return 1
    except PatchOperationError as exc:
        _write(
            out,
            {
                "ok": False,
                "error": {
                    "code": "PATCH_FAILED",
                    "message": str(exc),
                    "operation": exc.operation,
                    "file": exc.relative_path,
                },
            },
        )
        return 1
    _write(out, {"ok": True, "config": config.to_public_dict(), "result": summary})
    return 0


def main() -> None:
    raise SystemExit(run())


def _write(out: TextIO, payload: dict[str, object]) -> None:
    out.write(f"{json.dumps(payload, sort_keys=True)}\n")
    out.flush()


if __name__ == "__main__":
    main()

"""Configuration loading and deterministic merge order."""

from __future__ import annotations

import os
import tempfile
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, replace
from pathlib import Path

CONFIG_FILE_NAME = "persistent_filter.toml"
CACHE_ROOT_ENV = "PERSISTENT_FILTER_CACHE_ROOT"
MAX_CONCURRENCY_CAP = 256


@dataclass(slots=True, frozen=True)
class FilterConfig:
    """Settings for one filter instance.

    concurrency has no default here: embedding code picks it, usually via
    default_concurrency().
    """

    concurrency: int
    extensions: tuple[str, ...] | None = None
    target_extension: str | None = None
    input_encoding: str | None = "utf-8"
    output_encoding: str | None = "utf-8"
    persist: bool = False
    async_: bool = False
    dependency_invalidation: bool = False
    name: str | None = None
    annotation: str | None = None
    cache_root: Path | None = None

    def to_public_dict(self) -> dict[str, object]:
        """Return serializable config snapshot for summaries and logs."""
        return {
            "concurrency": self.concurrency,
            "extensions": list(self.extensions) if self.extensions is not None else None,
            "target_extension": self.target_extension,
            "input_encoding": self.input_encoding,
            "output_encoding": self.output_encoding,
            "persist": self.persist,
            "async": self.async_,
            "dependency_invalidation": self.dependency_invalidation,
            "name": self.name,
            "annotation": self.annotation,
            "cache_root": str(self.cache_root) if self.cache_root is not None else None,
        }


@dataclass(slots=True, frozen=True)
class ConfigOverrides:
    """Optional startup overrides applied at highest precedence."""

    extensions: tuple[str, ...] | None = None
    target_extension: str | None = None
    persist: bool | None = None
    async_: bool | None = None
    concurrency: int | None = None
    dependency_invalidation: bool | None = None
    name: str | None = None
    cache_root: Path | None = None


def default_concurrency(env: Mapping[str, str], cpu_count: int | None = None) -> int:
    """JOBS when set, otherwise one less than the available processors, at least one."""
    raw_jobs = env.get("JOBS", "").strip()
    if raw_jobs:
        try:
            jobs = int(raw_jobs)
        except ValueError:
            jobs = 0
        if jobs > 0:
            return min(jobs, MAX_CONCURRENCY_CAP)
    cpus = cpu_count if cpu_count is not None else (os.cpu_count() or 1)
    return max(cpus - 1, 1)


def should_persist(env: Mapping[str, str], persist: bool) -> bool:
    """Persistence is off on CI unless FORCE_PERSISTENCE_IN_CI is set."""
    if _truthy(env.get("CI")):
        return bool(persist and _truthy(env.get("FORCE_PERSISTENCE_IN_CI")))
    return bool(persist)


def default_cache_root(env: Mapping[str, str]) -> Path:
    """Cache root from PERSISTENT_FILTER_CACHE_ROOT, else under the system temp dir."""
    configured = env.get(CACHE_ROOT_ENV, "").strip()
    if configured:
        return Path(configured).expanduser().resolve()
    return Path(tempfile.gettempdir()) / "persistent-filter"


def default_config(env: Mapping[str, str] | None = None) -> FilterConfig:
    """Build default config, resolving environment-derived fields once."""
    environ = os.environ if env is None else env
    return FilterConfig(
        concurrency=default_concurrency(environ),
        cache_root=default_cache_root(environ),
    )


def load_config_file(project_root: Path) -> dict[str, object]:
    """Load optional persistent_filter.toml from project root."""
    config_path = project_root / CONFIG_FILE_NAME
    if not config_path.exists():
        return {}
    with config_path.open("rb") as handle:
        payload = tomllib.load(handle)
    if not isinstance(payload, dict):
        raise ValueError(f"{CONFIG_FILE_NAME} must contain a top-level table.")
    return payload


def merge_config(
    base: FilterConfig,
    payload: dict[str, object],
    overrides: ConfigOverrides,
    env: Mapping[str, str] | None = None,
) -> FilterConfig:
    """Merge defaults, config file, then startup overrides."""
    filter_payload = _get_table(payload, "filter")
    cache_payload = _get_table(payload, "cache")

    extensions = base.extensions
    if "extensions" in filter_payload:
        extensions = _tuple_of_strings(filter_payload["extensions"], "filter", "extensions")
    target_extension = _optional_str(
        filter_payload.get("target_extension"), "filter.target_extension", base.target_extension
    )
    input_encoding = _optional_encoding(
        filter_payload, "input_encoding", base.input_encoding
    )
    output_encoding = _optional_encoding(
        filter_payload, "output_encoding", base.output_encoding
    )
    async_ = _optional_bool(filter_payload.get("async"), "filter.async", base.async_)
    dependency_invalidation = _optional_bool(
        filter_payload.get("dependency_invalidation"),
        "filter.dependency_invalidation",
        base.dependency_invalidation,
    )
    concurrency = _optional_positive_int_with_cap(
        filter_payload.get("concurrency"),
        "filter.concurrency",
        base.concurrency,
        MAX_CONCURRENCY_CAP,
    )
    name = _optional_str(filter_payload.get("name"), "filter.name", base.name)
    annotation = _optional_str(
        filter_payload.get("annotation"), "filter.annotation", base.annotation
    )
    persist = _optional_bool(cache_payload.get("persist"), "cache.persist", base.persist)
    cache_root = base.cache_root
    raw_root = _optional_str(cache_payload.get("root"), "cache.root", None)
    if raw_root is not None:
        cache_root = Path(raw_root).expanduser()

    merged = FilterConfig(
        concurrency=concurrency,
        extensions=_normalize_extensions(extensions),
        target_extension=target_extension,
        input_encoding=input_encoding,
        output_encoding=output_encoding,
        persist=persist,
        async_=async_,
        dependency_invalidation=dependency_invalidation,
        name=name,
        annotation=annotation,
        cache_root=cache_root,
    )
    return apply_overrides(merged, overrides, env=env)


def apply_overrides(
    config: FilterConfig,
    overrides: ConfigOverrides,
    env: Mapping[str, str] | None = None,
) -> FilterConfig:
    """Apply startup overrides at highest precedence, then the CI persistence rule."""
    environ = os.environ if env is None else env
    concurrency = _optional_positive_int_with_cap(
        overrides.concurrency,
        "overrides.concurrency",
        config.concurrency,
        MAX_CONCURRENCY_CAP,
    )
    persist = overrides.persist if overrides.persist is not None else config.persist
    extensions = overrides.extensions if overrides.extensions is not None else config.extensions
    cache_root = overrides.cache_root or config.cache_root
    return replace(
        config,
        concurrency=concurrency,
        extensions=_normalize_extensions(extensions),
        target_extension=(
            overrides.target_extension
            if overrides.target_extension is not None
            else config.target_extension
        ),
        persist=should_persist(environ, persist),
        async_=overrides.async_ if overrides.async_ is not None else config.async_,
        dependency_invalidation=(
            overrides.dependency_invalidation
            if overrides.dependency_invalidation is not None
            else config.dependency_invalidation
        ),
        name=overrides.name if overrides.name is not None else config.name,
        cache_root=cache_root.resolve() if cache_root is not None else None,
    )


def load_effective_config(
    project_root: Path,
    overrides: ConfigOverrides | None = None,
    env: Mapping[str, str] | None = None,
) -> FilterConfig:
    """Load effective config using merge order defaults -> config file -> overrides."""
    resolved_root = project_root.resolve()
    base = default_config(env)
    payload = load_config_file(resolved_root)
    return merge_config(base, payload, overrides or ConfigOverrides(), env=env)


def _normalize_extensions(extensions: tuple[str, ...] | None) -> tuple[str, ...] | None:
    if extensions is None:
        return None
    return tuple(ext.lstrip(".") for ext in extensions)


def _truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() not in {"", "0", "false", "no"}


def _get_table(payload: dict[str, object], key: str) -> dict[str, object]:
    value = payload.get(key, {})
    if not isinstance(value, dict):
        raise ValueError(f"Config section '{key}' must be a table.")
    return value


def _tuple_of_strings(value: object, section: str, field: str) -> tuple[str, ...]:
    if not isinstance(value, list):
        raise ValueError(f"Config field '{section}.{field}' must be a list of strings.")
    output: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ValueError(f"Config field '{section}.{field}' must contain only strings.")
        output.append(item)
    return tuple(output)


def _optional_str(value: object, name: str, default: str | None) -> str | None:
    if value is None:
        return default
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Config field '{name}' must be a non-empty string.")
    return value


def _optional_bool(value: object, name: str, default: bool) -> bool:
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ValueError(f"Config field '{name}' must be a boolean.")
    return value


def _optional_encoding(
    payload: dict[str, object], field: str, default: str | None
) -> str | None:
    """Encodings accept a codec name, or false for raw bytes."""
    if field not in payload:
        return default
    value = payload[field]
    if value is False:
        return None
    return _optional_str(value, f"filter.{field}", default)


def _optional_positive_int_with_cap(
    value: object,
    name: str,
    default: int,
    cap: int | None,
) -> int:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"Config field '{name}' must be a positive integer.")
    if cap is not None and value > cap:
        raise ValueError(f"Config field '{name}' must be <= {cap}.")
    return value

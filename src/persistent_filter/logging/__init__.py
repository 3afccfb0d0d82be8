"""Structured logging utilities."""

from .events import BuildEvent, JsonlBuildLogger, utc_timestamp

__all__ = ["BuildEvent", "JsonlBuildLogger", "utc_timestamp"]

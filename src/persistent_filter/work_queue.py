"""Bounded-concurrency runner for deferred content operations."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, wait
from typing import TypeVar

T = TypeVar("T")


def run_queue(tasks: Sequence[Callable[[], T]], concurrency: int) -> list[T]:
    """Run zero-argument tasks with at most `concurrency` in flight.

    Results are returned in submission order. Every task runs to completion;
    if any failed, the failure of the earliest submitted one is raised after
    the rest have finished.
    """
    if concurrency < 1:
        raise ValueError("concurrency must be a positive integer.")
    if not tasks:
        return []
    with ThreadPoolExecutor(
        max_workers=min(concurrency, len(tasks)),
        thread_name_prefix="persistent-filter",
    ) as executor:
        futures = [executor.submit(task) for task in tasks]
        wait(futures)
    for future in futures:
        error = future.exception()
        if error is not None:
            raise error
    return [future.result() for future in futures]

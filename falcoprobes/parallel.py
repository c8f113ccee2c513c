"""Running callables concurrently while keeping every failure."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from typing import Any


def run_parallel_and_collect_errors(
    fns: Iterable[Callable[[], Any]], limit: int
) -> list[BaseException]:
    """Run ``fns`` with at most ``limit`` at a time and return what they raised.

    Unlike stopping at the first failure, every exception raised is collected.
    """
    if limit < 1:
        raise ValueError(f"parallel limit must be at least 1, got {limit}")
    fns = list(fns)
    if not fns:
        return []
    with ThreadPoolExecutor(max_workers=limit) as pool:
        futures = [pool.submit(fn) for fn in fns]
    return [exc for future in futures if (exc := future.exception()) is not None]
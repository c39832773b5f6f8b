"""Bounded worker pool for per-record sweep work.

Records are grouped by a key; each group runs sequentially inside one
worker so no two workers ever touch the same key at the same time, while
different groups run in parallel up to ``max_workers``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Hashable, Iterable
from concurrent.futures import ThreadPoolExecutor
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def group_by_key(items: Iterable[T], key: Callable[[T], Hashable]) -> list[list[T]]:
    """Group *items* by *key*, preserving first-seen order."""
    groups: dict[Hashable, list[T]] = {}
    for item in items:
        groups.setdefault(key(item), []).append(item)
    return list(groups.values())


def run_partitioned(
    items: Iterable[T],
    key: Callable[[T], Hashable],
    work: Callable[[T], R],
    max_workers: int,
) -> list[R]:
    """Run *work* over *items*, serialized per key, parallel across keys.

    *work* is expected to handle its own per-record failures; an exception
    escaping it propagates to the caller once every group has finished.
    """
    groups = group_by_key(items, key)
    if not groups:
        return []

    def _run_group(group: list[T]) -> list[R]:
        return [work(item) for item in group]

    if max_workers <= 1 or len(groups) == 1:
        results: list[R] = []
        for group in groups:
            results.extend(_run_group(group))
        return results

    with ThreadPoolExecutor(
        max_workers=min(max_workers, len(groups)),
        thread_name_prefix="sweep",
    ) as executor:
        futures = [executor.submit(_run_group, group) for group in groups]
        results = []
        for future in futures:
            results.extend(future.result())
    return results

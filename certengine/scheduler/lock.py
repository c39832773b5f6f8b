"""Sweep concurrency locks using threading.Lock.

The sweep lock prevents overlapping sweeps: a non-blocking acquire, so if
the lock is already held the caller gets False and can skip or return 409.

``KeyedLock`` serializes work per key (an evaluator id during assignment)
inside one process.
"""

from __future__ import annotations

import threading
from collections.abc import Hashable, Iterator
from contextlib import contextmanager
from uuid import UUID

from certengine.models.sweep import SweepReport

_sweep_lock = threading.Lock()
_current_run_id: UUID | None = None
_last_report: SweepReport | None = None


def acquire_sweep_lock(run_id: UUID) -> bool:
    """Try to acquire the sweep lock for the given run.

    Returns True if the lock was acquired, False if already held.
    """
    global _current_run_id
    if _sweep_lock.acquire(blocking=False):
        _current_run_id = run_id
        return True
    return False


def release_sweep_lock() -> None:
    """Release the sweep lock.

    Safe to call even if the lock is not held.
    """
    global _current_run_id
    _current_run_id = None
    try:
        _sweep_lock.release()
    except RuntimeError:
        pass  # Already released


def get_current_run_id() -> UUID | None:
    """Return the run_id of the currently executing sweep, or None."""
    return _current_run_id


def is_sweep_running() -> bool:
    """Check if a sweep is currently running."""
    return _current_run_id is not None


def record_sweep_report(report: SweepReport) -> None:
    """Remember the most recent finished sweep for /health."""
    global _last_report
    _last_report = report


def get_last_sweep_report() -> SweepReport | None:
    return _last_report


class KeyedLock:
    """One ``threading.Lock`` per key, created on demand."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Hashable, threading.Lock] = {}

    def _lock_for(self, key: Hashable) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        lock = self._lock_for(key)
        with lock:
            yield

"""
Per-tool mutual exclusion.

Switches, imports and acknowledgements for one tool are serialized by a lock
owned by that tool. Different tools never share a lock. The change watcher
takes the same lock without blocking so that it never inspects a native file
while the engine itself is rewriting it.

Notes
-----
These are in-process threading locks. The engine assumes a single local user
and does not coordinate with other processes.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager

from profile_engine.data_models import ToolId
from profile_engine.errors import TpmError


class ToolLockError(TpmError):
    """Raised when a tool lock cannot be acquired within the requested timeout."""


class ToolLockRegistry:
    """Owns one lock per tool id, created on first use."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[ToolId, threading.Lock] = {}

    def _lock_for(self, tool_id: ToolId) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(tool_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[tool_id] = lock
            return lock

    @contextmanager
    def hold(self, tool_id: ToolId, *, timeout: float | None = None) -> Iterator[None]:
        """
        Hold the lock for `tool_id`, waiting for any current holder.

        Parameters
        ----------
        tool_id:
            Tool whose lock to hold.
        timeout:
            Seconds to wait. None waits indefinitely.

        Raises
        ------
        ToolLockError
            If the timeout elapses first.
        """
        lock = self._lock_for(tool_id)
        acquired = lock.acquire(timeout=-1 if timeout is None else timeout)
        if not acquired:
            raise ToolLockError(f"Timed out waiting for another operation on {tool_id}.")
        try:
            yield
        finally:
            lock.release()

    @contextmanager
    def try_hold(self, tool_id: ToolId) -> Iterator[bool]:
        """
        Try to hold the lock for `tool_id` without waiting.

        Yields
        ------
        bool
            True if the lock is held for the duration of the block.
        """
        lock = self._lock_for(tool_id)
        acquired = lock.acquire(blocking=False)
        try:
            yield acquired
        finally:
            if acquired:
                lock.release()

    def is_held(self, tool_id: ToolId) -> bool:
        return self._lock_for(tool_id).locked()

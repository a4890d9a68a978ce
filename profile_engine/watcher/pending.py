"""
In-memory set of unacknowledged external changes.

Entries are keyed by (tool_id, path). A newer change to the same key replaces
the older one, and detected_at never goes backwards for a key even if the clock
does.
"""

from __future__ import annotations

import threading
from datetime import timedelta
from pathlib import Path

from profile_engine.data_models import ExternalConfigChange, ToolId

_MIN_STEP = timedelta(microseconds=1)

PendingKey = tuple[ToolId, Path]


class PendingChangeSet:
    """Thread-safe pending change buffer."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[PendingKey, ExternalConfigChange] = {}

    def upsert(self, change: ExternalConfigChange) -> ExternalConfigChange | None:
        """
        Insert or supersede the entry for the change's key.

        Parameters
        ----------
        change:
            Newly detected change.

        Returns
        -------
        ExternalConfigChange | None
            The stored entry, or None when the key already holds a change with
            the same fingerprint (nothing new to report).
        """
        key = (change.tool_id, change.path)
        with self._lock:
            existing = self._entries.get(key)
            if existing is not None:
                if existing.fingerprint == change.fingerprint:
                    return None
                if change.detected_at <= existing.detected_at:
                    change = change.with_detected_at(existing.detected_at + _MIN_STEP)
            self._entries[key] = change
            return change

    def get(self, tool_id: ToolId, path: Path) -> ExternalConfigChange | None:
        with self._lock:
            return self._entries.get((tool_id, path))

    def remove(self, tool_id: ToolId, path: Path) -> bool:
        """Remove the entry for (tool_id, path). Returns True if one existed."""
        with self._lock:
            return self._entries.pop((tool_id, path), None) is not None

    def clear_tool(self, tool_id: ToolId) -> int:
        """Remove every entry of a tool and return how many were removed."""
        with self._lock:
            keys = [key for key in self._entries if key[0] == tool_id]
            for key in keys:
                del self._entries[key]
            return len(keys)

    def list(self, tool_id: ToolId | None = None) -> list[ExternalConfigChange]:
        """Return entries ordered by detection time, optionally for one tool."""
        with self._lock:
            entries = [
                change
                for change in self._entries.values()
                if tool_id is None or change.tool_id == tool_id
            ]
        return sorted(entries, key=lambda c: (c.detected_at, c.tool_id, str(c.path)))

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

"""
Filesystem push notifications via watchdog.

One Observer thread serves every watched tool. Each tool's config directory is
scheduled non-recursively and events are filtered down to the tool's native
file names, including the destination of a rename (how atomic writes land).
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Callable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import ObservedWatch

from profile_engine.data_models import Tool, ToolId

logger = logging.getLogger(__name__)


class NativeFileEventHandler(FileSystemEventHandler):
    """Calls back when an event touches one of a tool's native files."""

    def __init__(self, tool: Tool, on_change: Callable[[], None]) -> None:
        super().__init__()
        self._tool_id = tool.tool_id
        self._names = frozenset(path.name for path in tool.native_files)
        self._on_change = on_change

    def _touches_native_file(self, event: FileSystemEvent) -> bool:
        candidates = [event.src_path, getattr(event, "dest_path", "")]
        return any(raw and Path(os.fsdecode(raw)).name in self._names for raw in candidates)

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type in ("opened", "closed_no_write"):
            return
        if self._touches_native_file(event):
            logger.debug("Push event %s for %s: %s", event.event_type, self._tool_id, event.src_path)
            self._on_change()


class PushChannel:
    """Owns the watchdog Observer and one scheduled watch per tool."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._observer: Observer | None = None
        self._watches: dict[ToolId, ObservedWatch] = {}

    def subscribe(self, tool: Tool, on_change: Callable[[], None]) -> bool:
        """
        Start delivering change events for `tool`.

        Returns
        -------
        bool
            False when push notifications are unavailable for the tool (missing
            config directory, or the platform refused the watch). Callers fall
            back to polling only.
        """
        if not tool.config_dir.is_dir():
            return False
        with self._lock:
            self.unsubscribe_locked(tool.tool_id)
            try:
                if self._observer is None:
                    observer = Observer()
                    observer.daemon = True
                    observer.start()
                    self._observer = observer
                watch = self._observer.schedule(
                    NativeFileEventHandler(tool, on_change), str(tool.config_dir), recursive=False
                )
            except OSError as exc:
                logger.warning("Push notifications unavailable for %s: %s", tool.tool_id, exc)
                return False
            self._watches[tool.tool_id] = watch
            return True

    def unsubscribe(self, tool_id: ToolId) -> None:
        with self._lock:
            self.unsubscribe_locked(tool_id)

    def unsubscribe_locked(self, tool_id: ToolId) -> None:
        watch = self._watches.pop(tool_id, None)
        if watch is None or self._observer is None:
            return
        try:
            self._observer.unschedule(watch)
        except KeyError:
            pass

    def is_subscribed(self, tool_id: ToolId) -> bool:
        with self._lock:
            return tool_id in self._watches

    def stop(self) -> None:
        with self._lock:
            observer, self._observer = self._observer, None
            self._watches.clear()
        if observer is not None:
            observer.stop()
            observer.join(timeout=2.0)

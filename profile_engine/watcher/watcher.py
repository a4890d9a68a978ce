"""
External change detection.

Each watched tool runs a small state machine::

    IDLE --enable--> WATCHING --trigger--> DETECTING --done--> WATCHING
    WATCHING --disable--> IDLE

Two triggers converge on one detection routine:

- push: watchdog events for the tool's native files (when available)
- poll: a per-tool thread that wakes every configured interval

Detection compares each native file's fingerprint with the fingerprint the
engine last recorded for it (written by a switch, an import or an
acknowledgement). A mismatch is an external change and is upserted into the
pending set; subscribers are notified once per upsert. Deleting a file the
engine has a fingerprint for is a change too: it carries an empty snapshot and
the MISSING_FINGERPRINT marker.

Notes
-----
- Reads that fail transiently are logged and retried on the next trigger.
- A detection is skipped while the tool's lock is held, since the engine is
  rewriting the files at that moment.
- Results of a detection that finishes after its tool was disabled are
  discarded.
- Disabling a tool stops detection and notifications but keeps entries that
  are already pending.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from enum import Enum
from pathlib import Path
from typing import Callable

from profile_engine.clock import Clock
from profile_engine.data_models import ExternalConfigChange, Tool, ToolId, fingerprint_or_missing
from profile_engine.profile_store.api import ProfileStore
from profile_engine.settings_store import EngineSettings
from profile_engine.tool_lock import ToolLockRegistry
from profile_engine.tools import ToolRegistry

from .pending import PendingChangeSet
from .push import PushChannel

logger = logging.getLogger(__name__)

ChangeListener = Callable[[ExternalConfigChange], None]


class WatchState(str, Enum):
    """Per-tool watcher state."""

    IDLE = "idle"
    WATCHING = "watching"
    DETECTING = "detecting"


class ChangeWatcher:
    """
    Detects native file mutations the engine did not make.

    Parameters
    ----------
    tools:
        Supported tools.
    store:
        Source of the engine's recorded fingerprints.
    pending:
        Buffer receiving detected changes.
    locks:
        Per-tool locks shared with the reconciliation service.
    settings_loader:
        Returns current settings. Called on every poll cycle.
    clock:
        Source of detection timestamps.
    push:
        Push channel; None disables push notifications entirely.
    """

    def __init__(
        self,
        *,
        tools: ToolRegistry,
        store: ProfileStore,
        pending: PendingChangeSet,
        locks: ToolLockRegistry,
        settings_loader: Callable[[], EngineSettings],
        clock: Clock,
        push: PushChannel | None = None,
    ) -> None:
        self._tools = tools
        self._store = store
        self._pending = pending
        self._locks = locks
        self._settings_loader = settings_loader
        self._clock = clock
        self._push = push

        self._lock = threading.Lock()
        self._listeners: list[ChangeListener] = []
        self._states: dict[ToolId, WatchState] = {t.tool_id: WatchState.IDLE for t in tools}
        self._generations: dict[ToolId, int] = {t.tool_id: 0 for t in tools}
        self._stop_events: dict[ToolId, threading.Event] = {}
        self._threads: dict[ToolId, threading.Thread] = {}

    # Subscriptions

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """
        Register a listener for newly pending changes.

        Returns
        -------
        Callable[[], None]
            Call to unsubscribe. Calling it twice is harmless.
        """
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, change: ExternalConfigChange) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(change)
            except Exception:
                logger.exception("Change listener failed for %s %s", change.tool_id, change.path)

    # Lifecycle

    def state(self, tool_id: ToolId) -> WatchState:
        self._tools.get(tool_id)
        with self._lock:
            return self._states[tool_id]

    def is_watching(self, tool_id: ToolId) -> bool:
        return self.state(tool_id) is not WatchState.IDLE

    def has_push(self, tool_id: ToolId) -> bool:
        return self._push is not None and self._push.is_subscribed(tool_id)

    def enable(self, tool_id: ToolId) -> None:
        """Start watching a tool. Does nothing if it is already watched."""
        tool = self._tools.get(tool_id)
        with self._lock:
            if self._states[tool_id] is not WatchState.IDLE:
                return
            self._generations[tool_id] += 1
            generation = self._generations[tool_id]
            self._states[tool_id] = WatchState.WATCHING
            stop_event = threading.Event()
            thread = threading.Thread(
                target=self._poll_loop,
                args=(tool_id, generation, stop_event),
                name=f"tpm-poll-{tool_id}",
                daemon=True,
            )
            self._stop_events[tool_id] = stop_event
            self._threads[tool_id] = thread
        thread.start()

        if self._push is not None:
            subscribed = self._push.subscribe(tool, lambda: self._on_push(tool_id, generation))
            if not subscribed:
                logger.warning("Watching %s by polling only.", tool_id)
        logger.info("Watching %s for external changes.", tool_id)

    def disable(self, tool_id: ToolId) -> None:
        """Stop watching a tool. In-flight detections finish and are discarded."""
        self._tools.get(tool_id)
        with self._lock:
            if self._states[tool_id] is WatchState.IDLE:
                return
            self._generations[tool_id] += 1
            self._states[tool_id] = WatchState.IDLE
            stop_event = self._stop_events.pop(tool_id)
            thread = self._threads.pop(tool_id)
        stop_event.set()
        if self._push is not None:
            self._push.unsubscribe(tool_id)
        if thread is not threading.current_thread():
            thread.join(timeout=2.0)
        logger.info("Stopped watching %s.", tool_id)

    def enable_all(self) -> None:
        for tool in self._tools:
            self.enable(tool.tool_id)

    def disable_all(self) -> None:
        for tool in self._tools:
            self.disable(tool.tool_id)

    def apply_settings(self, settings: EngineSettings) -> None:
        if settings.external_watch_enabled:
            self.enable_all()
        else:
            self.disable_all()

    def shutdown(self) -> None:
        self.disable_all()
        if self._push is not None:
            self._push.stop()

    # Triggers

    def check_now(self, tool_id: ToolId) -> list[ExternalConfigChange]:
        """
        Run one detection synchronously, whether or not the tool is watched.

        Returns
        -------
        list[ExternalConfigChange]
            Changes that were newly upserted by this detection.
        """
        return self._detect(tool_id, trigger="manual", generation=None)

    def _on_push(self, tool_id: ToolId, generation: int) -> None:
        if not self._is_current(tool_id, generation):
            return
        if not self._settings_loader().external_watch_enabled:
            return
        self._run_guarded(tool_id, "push", generation)

    def _poll_loop(self, tool_id: ToolId, generation: int, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            settings = self._settings_loader()
            if settings.external_watch_enabled:
                self._run_guarded(tool_id, "poll", generation)
            if stop_event.wait(self._settings_loader().poll_interval_seconds):
                break

    def _run_guarded(self, tool_id: ToolId, trigger: str, generation: int) -> None:
        try:
            self._detect(tool_id, trigger=trigger, generation=generation)
        except (OSError, sqlite3.Error) as exc:
            logger.warning("Change detection for %s failed (%s); retrying later: %s", tool_id, trigger, exc)

    # Detection

    def _is_current(self, tool_id: ToolId, generation: int | None) -> bool:
        if generation is None:
            return True
        with self._lock:
            return (
                self._generations[tool_id] == generation
                and self._states[tool_id] is not WatchState.IDLE
            )

    def _set_state(self, tool_id: ToolId, state: WatchState, generation: int | None) -> None:
        with self._lock:
            if self._states[tool_id] is WatchState.IDLE:
                return
            if generation is not None and self._generations[tool_id] != generation:
                return
            self._states[tool_id] = state

    def _detect(
        self, tool_id: ToolId, *, trigger: str, generation: int | None
    ) -> list[ExternalConfigChange]:
        tool = self._tools.get(tool_id)
        upserted: list[ExternalConfigChange] = []
        with self._locks.try_hold(tool_id) as held:
            if not held:
                logger.debug("Skipping %s detection for %s: tool is busy.", trigger, tool_id)
                return []
            self._set_state(tool_id, WatchState.DETECTING, generation)
            try:
                found = self._scan(tool)
                if not self._is_current(tool_id, generation):
                    logger.debug("Discarding %s detection for %s: watch disabled.", trigger, tool_id)
                    return []
                for change in found:
                    stored = self._pending.upsert(change)
                    if stored is not None:
                        upserted.append(stored)
            finally:
                self._set_state(tool_id, WatchState.WATCHING, generation)

        for change in upserted:
            logger.info("External change detected (%s) for %s: %s", trigger, tool_id, change.path)
            self._notify(change)
        return upserted

    def _scan(self, tool: Tool) -> list[ExternalConfigChange]:
        baselines = self._store.load_fingerprints(tool.tool_id)
        adopted: dict[Path, str] = {}
        changes: list[ExternalConfigChange] = []
        detected_at = self._clock.now()
        for path in tool.native_files:
            baseline = baselines.get(path)
            try:
                data = path.read_bytes()
            except FileNotFoundError:
                # Only a file the engine has seen can go missing.
                if baseline is None:
                    continue
                data = None
            except OSError as exc:
                logger.debug("Transient read failure for %s: %s", path, exc)
                continue
            fingerprint = fingerprint_or_missing(data)
            if baseline is None:
                adopted[path] = fingerprint
            elif fingerprint != baseline:
                changes.append(
                    ExternalConfigChange(
                        tool_id=tool.tool_id,
                        path=path,
                        detected_at=detected_at,
                        content_snapshot=data or b"",
                        fingerprint=fingerprint,
                    )
                )
        if adopted:
            self._store.save_fingerprints(tool.tool_id, adopted)
        return changes

"""Qt adapter for the engine ReconciliationService.

The engine owns profiles, native config files and proxies. The GUI talks to
this adapter via signals/slots so file I/O never blocks the UI thread.

Threading model
--------------
- A single worker QObject lives on a dedicated QThread and owns the service.
- The GUI communicates with the worker via queued Qt signals.
- External change notifications arrive on watcher threads; they are re-emitted
  as a Qt signal, which Qt delivers on the receiver's thread.
"""

from __future__ import annotations

import logging
from pathlib import Path

from PySide6.QtCore import QMetaObject, QObject, Qt, QThread, Signal, Slot

from profile_engine.data_models import Credentials, ExternalConfigChange
from profile_engine.errors import NoActiveProfileError, TpmError
from profile_engine.reconciliation.engine import open_engine

logger = logging.getLogger(__name__)


class ReconciliationWorker(QObject):
    """Worker that owns the ReconciliationService and runs in a background thread."""

    profiles_loaded = Signal(str, object)  # tool_id, list[ProfileDescriptor]
    active_loaded = Signal(str, object)  # tool_id, ActiveConfig
    profile_saved = Signal(str, object)  # tool_id, Profile
    profile_deleted = Signal(str, str)  # tool_id, name
    switched = Signal(str, object)  # tool_id, SwitchResult
    pending_loaded = Signal(object)  # list[ExternalConfigChange]
    acknowledged = Signal(str, int)  # tool_id, cleared
    imported = Signal(str, object)  # tool_id, ImportResult
    no_active_profile = Signal(str, str)  # tool_id, path
    legacy_scanned = Signal(object)  # list[MigrationRecord]
    legacy_cleaned = Signal(object)  # list[CleanupOutcome]
    proxy_status = Signal(str, object)  # tool_id, ProxyStatus
    external_change = Signal(object)  # ExternalConfigChange
    error = Signal(str, str)  # tool_id, message

    def __init__(self, data_root: Path | None, home: Path | None) -> None:
        super().__init__()
        self._service = open_engine(data_root=data_root, home=home)
        self._unsubscribe = self._service.subscribe(self._forward_change)

    def _forward_change(self, change: ExternalConfigChange) -> None:
        self.external_change.emit(change)

    def _fail(self, tool_id: str, exc: Exception) -> None:
        if not isinstance(exc, TpmError):
            logger.exception("Unexpected engine failure for %s", tool_id or "<all tools>")
        self.error.emit(tool_id, str(exc))

    @Slot()
    def start(self) -> None:
        """Start watching and auto-start proxies."""
        try:
            self._service.start()
        except Exception as e:
            self._fail("", e)

    @Slot()
    def shutdown(self) -> None:
        self._unsubscribe()
        self._service.shutdown()

    @Slot(str)
    def list_profiles(self, tool_id: str) -> None:
        try:
            descriptors = self._service.list_profiles(tool_id)
        except Exception as e:
            self._fail(tool_id, e)
            return
        self.profiles_loaded.emit(tool_id, descriptors)

    @Slot(str)
    def load_active(self, tool_id: str) -> None:
        try:
            active = self._service.get_active_config(tool_id)
        except Exception as e:
            self._fail(tool_id, e)
            return
        self.active_loaded.emit(tool_id, active)

    @Slot(str, str, object)
    def save_profile(self, tool_id: str, name: str, credentials: object) -> None:
        try:
            if not isinstance(credentials, Credentials):
                raise TypeError(f"Expected Credentials, got {type(credentials).__name__}")
            profile = self._service.save_profile(tool_id, name, credentials)
        except Exception as e:
            self._fail(tool_id, e)
            return
        self.profile_saved.emit(tool_id, profile)

    @Slot(str, str)
    def delete_profile(self, tool_id: str, name: str) -> None:
        try:
            self._service.delete_profile(tool_id, name)
        except Exception as e:
            self._fail(tool_id, e)
            return
        self.profile_deleted.emit(tool_id, name)

    @Slot(str, str)
    def switch_profile(self, tool_id: str, name: str) -> None:
        try:
            result = self._service.switch_profile(tool_id, name)
        except Exception as e:
            self._fail(tool_id, e)
            return
        self.switched.emit(tool_id, result)

    @Slot()
    def load_pending(self) -> None:
        try:
            changes = self._service.get_pending_changes()
        except Exception as e:
            self._fail("", e)
            return
        self.pending_loaded.emit(changes)

    @Slot(str)
    def acknowledge(self, tool_id: str) -> None:
        try:
            cleared = self._service.acknowledge_change(tool_id)
        except Exception as e:
            self._fail(tool_id, e)
            return
        self.acknowledged.emit(tool_id, cleared)

    @Slot(str, str, str)
    def import_change(self, tool_id: str, path: str, as_new_name: str) -> None:
        """Import a change; an empty name overwrites the active profile."""
        try:
            result = self._service.import_external_change(tool_id, Path(path), as_new_name or None)
        except NoActiveProfileError:
            self.no_active_profile.emit(tool_id, path)
            return
        except Exception as e:
            self._fail(tool_id, e)
            return
        self.imported.emit(tool_id, result)

    @Slot()
    def scan_legacy(self) -> None:
        try:
            records = self._service.scan_legacy()
        except Exception as e:
            self._fail("", e)
            return
        self.legacy_scanned.emit(records)

    @Slot(object)
    def clean_legacy(self, records: object) -> None:
        try:
            outcomes = self._service.clean_legacy(list(records))  # type: ignore[arg-type]
        except Exception as e:
            self._fail("", e)
            return
        self.legacy_cleaned.emit(outcomes)

    @Slot(str, bool)
    def set_proxy_running(self, tool_id: str, running: bool) -> None:
        try:
            if running:
                self._service.start_proxy(tool_id)
            else:
                self._service.stop_proxy(tool_id)
            status = self._service.proxy_status(tool_id)
        except Exception as e:
            self._fail(tool_id, e)
            return
        self.proxy_status.emit(tool_id, status)


class ReconciliationAdapter(QObject):
    """Qt adapter that marshals ReconciliationService calls onto a worker thread."""

    # Requests (GUI emits these; wired as queued connections to worker slots)
    request_start = Signal()
    request_list_profiles = Signal(str)
    request_load_active = Signal(str)
    request_save_profile = Signal(str, str, object)
    request_delete_profile = Signal(str, str)
    request_switch_profile = Signal(str, str)
    request_load_pending = Signal()
    request_acknowledge = Signal(str)
    request_import_change = Signal(str, str, str)
    request_scan_legacy = Signal()
    request_clean_legacy = Signal(object)
    request_set_proxy_running = Signal(str, bool)

    # Results (worker emits; adapter forwards)
    profiles_loaded = Signal(str, object)
    active_loaded = Signal(str, object)
    profile_saved = Signal(str, object)
    profile_deleted = Signal(str, str)
    switched = Signal(str, object)
    pending_loaded = Signal(object)
    acknowledged = Signal(str, int)
    imported = Signal(str, object)
    no_active_profile = Signal(str, str)
    legacy_scanned = Signal(object)
    legacy_cleaned = Signal(object)
    proxy_status = Signal(str, object)
    external_change = Signal(object)
    error = Signal(str, str)

    def __init__(self, data_root: Path | None = None, home: Path | None = None) -> None:
        super().__init__()

        self._thread = QThread()
        self._worker = ReconciliationWorker(data_root=data_root, home=home)
        self._worker.moveToThread(self._thread)

        queued = Qt.ConnectionType.QueuedConnection
        for request, slot in (
            (self.request_start, self._worker.start),
            (self.request_list_profiles, self._worker.list_profiles),
            (self.request_load_active, self._worker.load_active),
            (self.request_save_profile, self._worker.save_profile),
            (self.request_delete_profile, self._worker.delete_profile),
            (self.request_switch_profile, self._worker.switch_profile),
            (self.request_load_pending, self._worker.load_pending),
            (self.request_acknowledge, self._worker.acknowledge),
            (self.request_import_change, self._worker.import_change),
            (self.request_scan_legacy, self._worker.scan_legacy),
            (self.request_clean_legacy, self._worker.clean_legacy),
            (self.request_set_proxy_running, self._worker.set_proxy_running),
        ):
            request.connect(slot, type=queued)

        for source, target in (
            (self._worker.profiles_loaded, self.profiles_loaded),
            (self._worker.active_loaded, self.active_loaded),
            (self._worker.profile_saved, self.profile_saved),
            (self._worker.profile_deleted, self.profile_deleted),
            (self._worker.switched, self.switched),
            (self._worker.pending_loaded, self.pending_loaded),
            (self._worker.acknowledged, self.acknowledged),
            (self._worker.imported, self.imported),
            (self._worker.no_active_profile, self.no_active_profile),
            (self._worker.legacy_scanned, self.legacy_scanned),
            (self._worker.legacy_cleaned, self.legacy_cleaned),
            (self._worker.proxy_status, self.proxy_status),
            (self._worker.external_change, self.external_change),
            (self._worker.error, self.error),
        ):
            source.connect(target)

        self._thread.start()

    def shutdown(self) -> None:
        """Stop the engine and the worker thread cleanly."""
        QMetaObject.invokeMethod(
            self._worker, "shutdown", Qt.ConnectionType.BlockingQueuedConnection
        )
        self._thread.quit()
        self._thread.wait()

"""
Reconciliation service: the engine's public operations.

The service keeps three sources of truth consistent:

- the profile store (saved credentials),
- each tool's native config files (what the tool actually uses),
- each tool's running proxy (what forwarded requests actually use).

Every mutation of a tool runs under that tool's lock, and every operation that
changes what is active returns a freshly resolved ActiveConfig instead of an
assumed one.

Failure semantics
-----------------
- A failed native write leaves the store, the switch hint and the recorded
  fingerprints untouched.
- A proxy sync failure after a successful write is a partial success: the
  switch stands and SwitchResult.proxy_sync reports FAILED.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Callable

from profile_engine import legacy_cleanup
from profile_engine.clock import Clock
from profile_engine.data_models import (
    ActiveConfig,
    CleanupOutcome,
    Credentials,
    ExternalConfigChange,
    ImportResult,
    MigrationRecord,
    Profile,
    ProfileDescriptor,
    ProxyStatus,
    ProxySyncOutcome,
    SwitchResult,
    Tool,
    ToolId,
    ToolProxyConfig,
    fingerprint_or_missing,
    mask_api_key,
)
from profile_engine.errors import (
    EngineStateIOError,
    NativeConfigIOError,
    NoActiveProfileError,
    ProfileNotFoundError,
    ProxyUnavailableError,
    UnknownPathError,
)
from profile_engine.native_config.adapters import adapter_for
from profile_engine.profile_store.api import ProfileStore
from profile_engine.proxy.bridge import ProxyManager, ProxySyncBridge
from profile_engine.proxy.config_store import ProxyConfigStore
from profile_engine.proxy.controller import ProxyController
from profile_engine.resolver import ActiveConfigResolver
from profile_engine.settings_store import (
    EngineSettings,
    clamp_poll_interval,
    load_engine_settings,
    save_engine_settings,
)
from profile_engine.tool_lock import ToolLockRegistry
from profile_engine.tools import ToolRegistry
from profile_engine.watcher.pending import PendingChangeSet
from profile_engine.watcher.watcher import ChangeListener, ChangeWatcher

logger = logging.getLogger(__name__)


class ReconciliationService:
    """
    Orchestrates profiles, native config files, change detection and proxies.

    Parameters
    ----------
    tools:
        Supported tools.
    store:
        Profile and per-tool state persistence.
    pending:
        Pending external changes, shared with the watcher.
    watcher:
        Change watcher feeding `pending`.
    locks:
        Per-tool locks, shared with the watcher.
    proxy_store:
        Per-tool proxy configuration.
    proxy_controller:
        Control API of the proxy subsystem.
    settings_path:
        Engine settings JSON.
    clock:
        Source of switch timestamps.
    """

    def __init__(
        self,
        *,
        tools: ToolRegistry,
        store: ProfileStore,
        pending: PendingChangeSet,
        watcher: ChangeWatcher,
        locks: ToolLockRegistry,
        proxy_store: ProxyConfigStore,
        proxy_controller: ProxyController,
        settings_path: Path,
        clock: Clock,
    ) -> None:
        self._tools = tools
        self._store = store
        self._pending = pending
        self._watcher = watcher
        self._locks = locks
        self._controller = proxy_controller
        self._settings_path = settings_path
        self._clock = clock
        self._resolver = ActiveConfigResolver(store)
        self._bridge = ProxySyncBridge(proxy_store, proxy_controller)
        self._proxies = ProxyManager(proxy_store, proxy_controller)

    @property
    def tools(self) -> ToolRegistry:
        return self._tools

    # Lifecycle

    def start(self) -> None:
        """Start watching (if enabled in settings) and auto-start flagged proxies."""
        self._watcher.apply_settings(self.get_watch_settings())
        self._proxies.auto_start([tool.tool_id for tool in self._tools])

    def shutdown(self) -> None:
        """Stop watching and stop running proxies without changing their settings."""
        self._watcher.shutdown()
        for tool in self._tools:
            self._controller.stop(tool.tool_id)

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a listener for new external changes. Returns an unsubscribe callable."""
        return self._watcher.subscribe(listener)

    # Profiles

    def list_profiles(self, tool_id: ToolId) -> list[ProfileDescriptor]:
        """
        Return display descriptors for a tool's profiles in insertion order.

        Notes
        -----
        has_drift marks the profile the tool was last switched to when the
        native files no longer match it or have unacknowledged external changes.
        """
        tool = self._tools.get(tool_id)
        active = self._resolver.resolve(tool)
        hint = self._store.load_switch_hint(tool_id)
        switched_at = self._store.load_switched_at(tool_id)
        has_pending = bool(self._pending.list(tool_id))

        descriptors: list[ProfileDescriptor] = []
        for profile in self._store.list(tool_id):
            is_active = active.profile_name == profile.name
            is_last_switched = hint is not None and hint.profile_name == profile.name
            descriptors.append(
                ProfileDescriptor(
                    tool_id=tool_id,
                    name=profile.name,
                    api_key_preview=mask_api_key(profile.api_key),
                    base_url=profile.base_url,
                    provider=profile.provider,
                    created_at=profile.created_at,
                    updated_at=profile.updated_at,
                    is_active=is_active,
                    has_drift=is_last_switched and (not is_active or has_pending),
                    switched_at=switched_at.get(profile.name),
                )
            )
        return descriptors

    def get_active_config(self, tool_id: ToolId) -> ActiveConfig:
        return self._resolver.resolve(self._tools.get(tool_id))

    def save_profile(self, tool_id: ToolId, name: str, credentials: Credentials) -> Profile:
        """
        Create or update a profile.

        When the saved profile is the one currently active, the updated
        credentials are written to the native files (and the live proxy) right
        away.

        Raises
        ------
        InvalidNameError
            If the name is empty, whitespace-only or reserved.
        InvalidCredentialsError
            If a new profile lacks an API key or base URL.
        NativeConfigIOError
            If re-applying an active profile fails. The profile is saved.
        """
        tool = self._tools.get(tool_id)
        with self._locks.hold(tool_id):
            try:
                active_before = self._resolver.resolve(tool).profile_name
            except NativeConfigIOError as exc:
                logger.warning("Cannot read %s config while saving a profile: %s", tool_id, exc)
                active_before = None

            profile = self._store.save(tool_id, name, credentials)
            logger.info("Saved profile %s for %s.", profile.name, tool_id)
            if active_before == profile.name:
                self._write(tool, profile)
                self._sync_proxy(tool_id, profile)
                logger.info("Re-applied active profile %s for %s.", profile.name, tool_id)
        return profile

    def delete_profile(self, tool_id: ToolId, name: str) -> None:
        """
        Delete a profile.

        The native files are left as they are, even when the deleted profile is
        active; the tool then resolves as custom.

        Raises
        ------
        ProfileNotFoundError
            If the profile does not exist.
        """
        self._tools.get(tool_id)
        with self._locks.hold(tool_id):
            self._store.delete(tool_id, name)
            hint = self._store.load_switch_hint(tool_id)
            if hint is not None and hint.profile_name == name.strip():
                self._store.clear_switch_hint(tool_id)
        logger.info("Deleted profile %s for %s.", name, tool_id)

    def switch_profile(self, tool_id: ToolId, name: str) -> SwitchResult:
        """
        Activate a profile by writing it to the tool's native files.

        Switches of the same tool are serialized; a second switch waits for the
        first one to finish.

        Raises
        ------
        ProfileNotFoundError
            If the profile does not exist.
        NativeConfigIOError
            If the native files cannot be written. Nothing changes then.
        """
        tool = self._tools.get(tool_id)
        with self._locks.hold(tool_id):
            profile = self._store.get(tool_id, name)
            self._write(tool, profile)
            self._store.save_switch_hint(tool_id, profile.name, self._clock.now())
            outcome, message = self._sync_proxy(tool_id, profile)
            active = self._resolver.resolve(tool)
        logger.info("Switched %s to profile %s (proxy: %s).", tool_id, profile.name, outcome.value)
        return SwitchResult(active_config=active, proxy_sync=outcome, proxy_message=message)

    def _write(self, tool: Tool, profile: Profile) -> None:
        # Caller holds the tool lock.
        result = adapter_for(tool).write(tool, profile.credentials, label=profile.name)
        self._store.save_fingerprints(tool.tool_id, result.fingerprints)

    def _sync_proxy(self, tool_id: ToolId, profile: Profile) -> tuple[ProxySyncOutcome, str | None]:
        try:
            if not self._bridge.is_live(tool_id):
                return ProxySyncOutcome.NOT_APPLICABLE, None
            self._bridge.push(tool_id, profile.credentials, profile.name)
        except (ProxyUnavailableError, EngineStateIOError) as exc:
            logger.warning("Profile %s switched for %s, proxy sync failed: %s", profile.name, tool_id, exc)
            return ProxySyncOutcome.FAILED, f"Profile switched, proxy sync failed: {exc}"
        return ProxySyncOutcome.SYNCED, None

    # External changes

    def get_pending_changes(self) -> list[ExternalConfigChange]:
        """Return pending external changes for all tools, oldest first."""
        return self._pending.list()

    def check_for_changes(self, tool_id: ToolId | None = None) -> list[ExternalConfigChange]:
        """Run one detection now for a tool (or all tools) and return new pending changes."""
        tool_ids = [tool_id] if tool_id is not None else [t.tool_id for t in self._tools]
        found: list[ExternalConfigChange] = []
        for current in tool_ids:
            found.extend(self._watcher.check_now(current))
        return found

    def acknowledge_change(self, tool_id: ToolId) -> int:
        """
        Accept a tool's current native content without touching any profile.

        Pending entries of the tool are cleared and the current content becomes
        the new baseline, so it is not reported again.

        Returns
        -------
        int
            Number of pending entries cleared.
        """
        tool = self._tools.get(tool_id)
        with self._locks.hold(tool_id):
            snapshot = adapter_for(tool).snapshot(tool)
            baselines = self._store.load_fingerprints(tool_id)
            self._store.save_fingerprints(
                tool_id,
                {
                    path: fingerprint_or_missing(data)
                    for path, data in snapshot.items()
                    if data is not None or path in baselines
                },
            )
            cleared = self._pending.clear_tool(tool_id)
        logger.info("Acknowledged %d external change(s) for %s.", cleared, tool_id)
        return cleared

    def import_external_change(
        self, tool_id: ToolId, path: Path | str, as_new_name: str | None = None
    ) -> ImportResult:
        """
        Turn a tool's current native content into profile data.

        Parameters
        ----------
        tool_id:
            Tool the change belongs to.
        path:
            Native file the change was detected on.
        as_new_name:
            When given, create a new profile with this name. Otherwise overwrite
            the active profile (or, when the content no longer matches any
            profile, the profile the tool was last switched to).

        Returns
        -------
        ImportResult
            The affected profile and the re-resolved active config.

        Raises
        ------
        UnknownPathError
            If path is not one of the tool's native files.
        InvalidNameError
            If as_new_name is invalid or already taken.
        NoActiveProfileError
            If no profile can be determined to overwrite.
        NativeConfigParseError
            If the native content cannot be parsed.
        """
        tool = self._tools.get(tool_id)
        native_path = self._native_path(tool, Path(path))
        adapter = adapter_for(tool)

        with self._locks.hold(tool_id):
            snapshot = adapter.snapshot(tool)
            credentials = adapter.parse(tool, snapshot)
            if as_new_name is not None:
                profile = self._store.create(tool_id, as_new_name, credentials)
                self._store.save_switch_hint(tool_id, profile.name, self._clock.now())
                was_new = True
            else:
                target = self._overwrite_target(tool)
                profile = self._store.overwrite(tool_id, target, credentials)
                was_new = False

            self._store.save_fingerprints(
                tool_id, {native_path: fingerprint_or_missing(snapshot.get(native_path))}
            )
            self._pending.remove(tool_id, native_path)
            active = self._resolver.resolve(tool)

        logger.info(
            "Imported external %s change into %s profile %s.",
            tool_id,
            "new" if was_new else "existing",
            profile.name,
        )
        return ImportResult(
            profile_name=profile.name,
            was_new=was_new,
            replaced=not was_new,
            active_config=active,
        )

    def _native_path(self, tool: Tool, path: Path) -> Path:
        for native in tool.native_files:
            if path == native or path.expanduser().resolve() == native.resolve():
                return native
        raise UnknownPathError(f"{path} is not a native config file of {tool.display_name}.")

    def _overwrite_target(self, tool: Tool) -> str:
        active = self._resolver.resolve(tool)
        if active.profile_name is not None:
            return active.profile_name
        hint = self._store.load_switch_hint(tool.tool_id)
        if hint is not None:
            try:
                return self._store.get(tool.tool_id, hint.profile_name).name
            except ProfileNotFoundError:
                pass
        raise NoActiveProfileError(
            f"{tool.display_name} has no active profile to overwrite; import it under a new name."
        )

    # Watch settings

    def get_watch_settings(self) -> EngineSettings:
        return load_engine_settings(self._settings_path)

    def update_watch_settings(
        self, *, enabled: bool | None = None, poll_interval_ms: int | None = None
    ) -> EngineSettings:
        """
        Persist watch settings and apply them immediately.

        Notes
        -----
        Disabling watch stops detection and notifications; changes that are
        already pending stay pending until acknowledged or imported.
        """
        current = self.get_watch_settings()
        updated = EngineSettings(
            external_watch_enabled=current.external_watch_enabled if enabled is None else enabled,
            external_poll_interval_ms=(
                current.external_poll_interval_ms
                if poll_interval_ms is None
                else clamp_poll_interval(poll_interval_ms)
            ),
            log_level=current.log_level,
        )
        save_engine_settings(self._settings_path, updated)
        self._watcher.apply_settings(updated)
        return updated

    # Proxy

    def get_proxy_config(self, tool_id: ToolId) -> ToolProxyConfig:
        self._tools.get(tool_id)
        return self._proxies.get_config(tool_id)

    def update_proxy_config(self, tool_id: ToolId, **changes: Any) -> ToolProxyConfig:
        self._tools.get(tool_id)
        return self._proxies.update_config(tool_id, **changes)

    def proxy_status(self, tool_id: ToolId) -> ProxyStatus:
        self._tools.get(tool_id)
        return self._proxies.status(tool_id)

    def start_proxy(self, tool_id: ToolId) -> ProxyStatus:
        self._tools.get(tool_id)
        return self._proxies.start(tool_id)

    def stop_proxy(self, tool_id: ToolId) -> bool:
        self._tools.get(tool_id)
        return self._proxies.stop(tool_id)

    def update_proxy_from_profile(self, tool_id: ToolId, name: str) -> ToolProxyConfig:
        """Use a stored profile as the proxy upstream without switching the tool."""
        self._tools.get(tool_id)
        profile = self._store.get(tool_id, name)
        return self._proxies.update_from_profile(tool_id, profile)

    # Legacy backups

    def scan_legacy(self) -> list[MigrationRecord]:
        return legacy_cleanup.scan(self._tools)

    def migrate_legacy(self, records: Sequence[MigrationRecord]) -> list[legacy_cleanup.MigrationOutcome]:
        return legacy_cleanup.migrate(records, self._tools, self._store)

    def clean_legacy(
        self, records: Sequence[MigrationRecord], *, archive_path: Path | None = None
    ) -> list[CleanupOutcome]:
        return legacy_cleanup.clean(records, self._tools, archive_path=archive_path)

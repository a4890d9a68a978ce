"""
Engine assembly.

`open_engine` wires the store, adapters, watcher, proxy components and service
together for a data root and a home directory. Front ends (CLI, GUI adapter)
and tests construct the engine only through this function.
"""

from __future__ import annotations

from pathlib import Path

from profile_engine.clock import Clock, SystemClock
from profile_engine.paths import EnginePaths, ensure_engine_directories, resolve_engine_paths
from profile_engine.profile_store.sqlite_store import open_profile_store
from profile_engine.proxy.config_store import ProxyConfigStore
from profile_engine.proxy.controller import InProcessProxyController, ProxyController
from profile_engine.settings_store import load_engine_settings
from profile_engine.tool_lock import ToolLockRegistry
from profile_engine.tools import ToolRegistry
from profile_engine.watcher.pending import PendingChangeSet
from profile_engine.watcher.push import PushChannel
from profile_engine.watcher.watcher import ChangeWatcher

from .service import ReconciliationService


def open_engine(
    data_root: Path | None = None,
    home: Path | None = None,
    *,
    clock: Clock | None = None,
    proxy_controller: ProxyController | None = None,
    use_push: bool = True,
) -> ReconciliationService:
    """
    Build a ready-to-use ReconciliationService.

    Parameters
    ----------
    data_root:
        Engine data root. Defaults to `default_data_root()`.
    home:
        Directory holding the tools' config directories. Defaults to the
        user's home directory.
    clock:
        Optional clock override.
    proxy_controller:
        Optional proxy control implementation. Defaults to the in-process one.
    use_push:
        If False, the watcher relies on polling only.

    Returns
    -------
    ReconciliationService
        The service. Call `start()` to begin watching.
    """
    paths: EnginePaths = resolve_engine_paths(data_root)
    ensure_engine_directories(paths)
    clock = clock or SystemClock()

    tools = ToolRegistry(home)
    store = open_profile_store(paths, clock=clock)
    pending = PendingChangeSet()
    locks = ToolLockRegistry()
    watcher = ChangeWatcher(
        tools=tools,
        store=store,
        pending=pending,
        locks=locks,
        settings_loader=lambda: load_engine_settings(paths.settings_path),
        clock=clock,
        push=PushChannel() if use_push else None,
    )
    return ReconciliationService(
        tools=tools,
        store=store,
        pending=pending,
        watcher=watcher,
        locks=locks,
        proxy_store=ProxyConfigStore(paths.proxy_config_path),
        proxy_controller=proxy_controller or InProcessProxyController(),
        settings_path=paths.settings_path,
        clock=clock,
    )

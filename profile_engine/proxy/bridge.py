"""
Proxy synchronization and settings operations.

ProxySyncBridge pushes a newly activated profile into a running proxy. It only
acts when the tool's proxy is enabled and running, and it always hot-applies
the new upstream; it never restarts the listener, so clients keep their
connections and need no restart.

ProxyManager is the settings surface: read and edit a tool's proxy config and
start or stop its proxy.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from profile_engine.data_models import Credentials, Profile, ProxyStatus, ToolId, ToolProxyConfig
from profile_engine.errors import ProxyUnavailableError, TpmError

from .config_store import ProxyConfigStore
from .controller import ProxyController

logger = logging.getLogger(__name__)

_UPSTREAM_FIELDS = frozenset({"real_api_key", "real_base_url"})


@dataclass(frozen=True, slots=True)
class ProxySyncBridge:
    """Pushes credentials into a running proxy."""

    config_store: ProxyConfigStore
    controller: ProxyController

    def is_live(self, tool_id: ToolId) -> bool:
        """True when the tool's proxy is enabled and running."""
        return self.config_store.get(tool_id).enabled and self.controller.status(tool_id).running

    def push(self, tool_id: ToolId, credentials: Credentials, profile_name: str | None) -> ToolProxyConfig:
        """
        Apply credentials to the live proxy and record them as its upstream.

        Parameters
        ----------
        tool_id:
            Tool whose proxy to update.
        credentials:
            New upstream credentials.
        profile_name:
            Profile the credentials came from, recorded for display.

        Returns
        -------
        ToolProxyConfig
            The updated proxy config.

        Raises
        ------
        ProxyUnavailableError
            If the proxy is disabled or not running, or rejects the update. A
            rejected update restores the previously recorded upstream.
        EngineStateIOError
            If the new upstream cannot be recorded. The live proxy keeps
            forwarding with its previous upstream then.
        """
        config = self.config_store.get(tool_id)
        if not config.enabled:
            raise ProxyUnavailableError(f"Proxy for {tool_id} is not enabled.")
        if not self.controller.status(tool_id).running:
            raise ProxyUnavailableError(f"Proxy for {tool_id} is not running.")

        updated = self.config_store.update(
            tool_id,
            real_api_key=credentials.api_key,
            real_base_url=credentials.base_url,
            real_profile_name=profile_name,
        )
        try:
            self.controller.apply_live_config(tool_id, credentials)
        except ProxyUnavailableError:
            self.config_store.update(
                tool_id,
                real_api_key=config.real_api_key,
                real_base_url=config.real_base_url,
                real_profile_name=config.real_profile_name,
            )
            raise
        logger.info("Proxy for %s now forwards with profile %s.", tool_id, profile_name or "<custom>")
        return updated


class ProxyManager:
    """Proxy settings operations for all tools."""

    def __init__(self, config_store: ProxyConfigStore, controller: ProxyController) -> None:
        self._store = config_store
        self._controller = controller

    def get_config(self, tool_id: ToolId) -> ToolProxyConfig:
        return self._store.get(tool_id)

    def update_config(self, tool_id: ToolId, **changes: Any) -> ToolProxyConfig:
        """
        Edit a tool's proxy config.

        Upstream changes are hot-applied when the proxy is running. Port and
        exposure changes take effect on the next start.
        """
        updated = self._store.update(tool_id, **changes)
        if _UPSTREAM_FIELDS & set(changes) and self._controller.status(tool_id).running:
            if updated.has_upstream():
                self._controller.apply_live_config(tool_id, _upstream(updated))
        return updated

    def status(self, tool_id: ToolId) -> ProxyStatus:
        return self._controller.status(tool_id)

    def start(self, tool_id: ToolId) -> ProxyStatus:
        """
        Start a tool's proxy and mark it enabled.

        Raises
        ------
        ProxyUnavailableError
            If no upstream API key and base URL are configured.
        """
        config = self._store.get(tool_id)
        if not config.has_upstream():
            raise ProxyUnavailableError(
                f"Proxy for {tool_id} needs an upstream API key and base URL before it can start."
            )
        status = self._controller.start(tool_id, config)
        self._store.update(tool_id, enabled=True)
        return status

    def stop(self, tool_id: ToolId) -> bool:
        """Stop a tool's proxy and mark it disabled. Returns False if it was not running."""
        stopped = self._controller.stop(tool_id)
        self._store.update(tool_id, enabled=False)
        return stopped

    def update_from_profile(self, tool_id: ToolId, profile: Profile) -> ToolProxyConfig:
        """Use a profile as the proxy's upstream, hot-applying it if the proxy runs."""
        updated = self._store.update(
            tool_id,
            real_api_key=profile.api_key,
            real_base_url=profile.base_url,
            real_profile_name=profile.name,
        )
        if self._controller.status(tool_id).running:
            self._controller.apply_live_config(tool_id, profile.credentials)
        return updated

    def auto_start(self, tool_ids: list[ToolId]) -> list[ProxyStatus]:
        """Start every proxy flagged auto_start that has an upstream configured."""
        started: list[ProxyStatus] = []
        for tool_id in tool_ids:
            config = self._store.get(tool_id)
            if not config.auto_start:
                continue
            try:
                started.append(self.start(tool_id))
            except TpmError as exc:
                logger.warning("Auto-start of proxy for %s skipped: %s", tool_id, exc)
        return started


def _upstream(config: ToolProxyConfig) -> Credentials:
    return Credentials(api_key=config.real_api_key or "", base_url=config.real_base_url or "")

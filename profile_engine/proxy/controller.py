"""
Transparent proxy control surface.

The engine only starts, stops and reconfigures proxies; request forwarding is
the proxy's own business. ProxyController is the contract the engine relies
on. InProcessProxyController keeps each running proxy's upstream in memory
behind a lock so that the forwarding layer always reads a complete config, and
a config swap never touches the listening socket.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Protocol

from profile_engine.data_models import Credentials, ProxyStatus, ToolId, ToolProxyConfig
from profile_engine.errors import ProxyUnavailableError

logger = logging.getLogger(__name__)


class ProxyController(Protocol):
    """Control API of the transparent proxy subsystem."""

    def start(self, tool_id: ToolId, config: ToolProxyConfig) -> ProxyStatus:
        """
        Start the proxy for a tool.

        Raises
        ------
        ProxyUnavailableError
            If the config has no upstream credentials.
        """
        ...

    def stop(self, tool_id: ToolId) -> bool:
        """Stop the proxy for a tool. Returns False if it was not running."""
        ...

    def status(self, tool_id: ToolId) -> ProxyStatus:
        ...

    def apply_live_config(self, tool_id: ToolId, credentials: Credentials) -> None:
        """
        Replace the running proxy's upstream credentials without restarting it.

        Raises
        ------
        ProxyUnavailableError
            If the proxy is not running.
        """
        ...


@dataclass(slots=True)
class _ProxyInstance:
    tool_id: ToolId
    port: int
    allow_public: bool
    upstream: Credentials
    lock: threading.Lock = field(default_factory=threading.Lock)
    generation: int = 0

    def swap(self, credentials: Credentials) -> None:
        with self.lock:
            self.upstream = credentials
            self.generation += 1

    def read(self) -> Credentials:
        with self.lock:
            return self.upstream


class InProcessProxyController:
    """Registry of proxy instances running in this process."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._instances: dict[ToolId, _ProxyInstance] = {}

    def start(self, tool_id: ToolId, config: ToolProxyConfig) -> ProxyStatus:
        if not config.has_upstream():
            raise ProxyUnavailableError(
                f"Proxy for {tool_id} needs an upstream API key and base URL before it can start."
            )
        upstream = Credentials(api_key=config.real_api_key or "", base_url=config.real_base_url or "")
        with self._lock:
            instance = self._instances.get(tool_id)
            if instance is None:
                instance = _ProxyInstance(
                    tool_id=tool_id,
                    port=config.port,
                    allow_public=config.allow_public,
                    upstream=upstream,
                )
                self._instances[tool_id] = instance
                logger.info("Registered proxy for %s (configured port %d).", tool_id, config.port)
            else:
                instance.swap(upstream)
        return ProxyStatus(tool_id=tool_id, running=True, port=instance.port)

    def stop(self, tool_id: ToolId) -> bool:
        with self._lock:
            instance = self._instances.pop(tool_id, None)
        if instance is not None:
            logger.info("Proxy for %s stopped.", tool_id)
        return instance is not None

    def status(self, tool_id: ToolId) -> ProxyStatus:
        with self._lock:
            instance = self._instances.get(tool_id)
        if instance is None:
            return ProxyStatus(tool_id=tool_id, running=False)
        return ProxyStatus(tool_id=tool_id, running=True, port=instance.port)

    def apply_live_config(self, tool_id: ToolId, credentials: Credentials) -> None:
        with self._lock:
            instance = self._instances.get(tool_id)
        if instance is None:
            raise ProxyUnavailableError(f"Proxy for {tool_id} is not running.")
        instance.swap(credentials)

    def live_config(self, tool_id: ToolId) -> Credentials:
        """
        Return the upstream the forwarding layer should use right now.

        Raises
        ------
        ProxyUnavailableError
            If the proxy is not running.
        """
        with self._lock:
            instance = self._instances.get(tool_id)
        if instance is None:
            raise ProxyUnavailableError(f"Proxy for {tool_id} is not running.")
        return instance.read()

    def config_generation(self, tool_id: ToolId) -> int:
        """Number of live config swaps since the proxy started."""
        with self._lock:
            instance = self._instances.get(tool_id)
        if instance is None:
            raise ProxyUnavailableError(f"Proxy for {tool_id} is not running.")
        with instance.lock:
            return instance.generation

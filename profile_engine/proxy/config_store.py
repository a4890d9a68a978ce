"""
Per-tool proxy configuration persisted as JSON.

Each tool gets its own record, created with defaults the first time it is
read. Records change through the proxy settings operations and through the
sync bridge when a profile switch happens while the proxy is running.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import asdict, replace
from pathlib import Path
from typing import Any, Mapping

from profile_engine.atomic_io import write_json_atomic
from profile_engine.data_models import ToolId, ToolProxyConfig
from profile_engine.errors import EngineStateIOError, TpmError
from profile_engine.tools import CLAUDE_CODE, CODEX, GEMINI_CLI

logger = logging.getLogger(__name__)

DEFAULT_PORTS: Mapping[ToolId, int] = {
    CLAUDE_CODE: 8787,
    CODEX: 8788,
    GEMINI_CLI: 8789,
}
_FALLBACK_PORT = 8790
_EDITABLE_FIELDS = frozenset(
    {
        "enabled",
        "port",
        "local_api_key",
        "real_api_key",
        "real_base_url",
        "real_profile_name",
        "allow_public",
        "auto_start",
    }
)


def default_proxy_config(tool_id: ToolId) -> ToolProxyConfig:
    return ToolProxyConfig(
        tool_id=tool_id,
        enabled=False,
        port=DEFAULT_PORTS.get(tool_id, _FALLBACK_PORT),
    )


def _from_payload(tool_id: ToolId, payload: Mapping[str, Any]) -> ToolProxyConfig:
    defaults = default_proxy_config(tool_id)

    def _opt_str(key: str) -> str | None:
        value = payload.get(key)
        return value if isinstance(value, str) and value else None

    def _bool(key: str, fallback: bool) -> bool:
        value = payload.get(key)
        return value if isinstance(value, bool) else fallback

    port = payload.get("port")
    if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
        port = defaults.port

    return ToolProxyConfig(
        tool_id=tool_id,
        enabled=_bool("enabled", defaults.enabled),
        port=port,
        local_api_key=_opt_str("local_api_key"),
        real_api_key=_opt_str("real_api_key"),
        real_base_url=_opt_str("real_base_url"),
        real_profile_name=_opt_str("real_profile_name"),
        allow_public=_bool("allow_public", defaults.allow_public),
        auto_start=_bool("auto_start", defaults.auto_start),
    )


class ProxyConfigStore:
    """JSON-backed store of ToolProxyConfig records."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _load_all(self) -> dict[str, Any]:
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable proxy config %s: %s", self._path, exc)
            return {}
        tools = payload.get("tools") if isinstance(payload, dict) else None
        return dict(tools) if isinstance(tools, dict) else {}

    def _save_all(self, tools: Mapping[str, Any]) -> None:
        try:
            write_json_atomic(self._path, {"tools": dict(tools)})
        except OSError as exc:
            raise EngineStateIOError(f"Cannot write proxy config {self._path}: {exc}") from exc

    def get(self, tool_id: ToolId) -> ToolProxyConfig:
        """Return the tool's proxy config, persisting defaults on first touch."""
        with self._lock:
            tools = self._load_all()
            raw = tools.get(tool_id)
            if isinstance(raw, dict):
                return _from_payload(tool_id, raw)
            config = default_proxy_config(tool_id)
            tools[tool_id] = _to_payload(config)
            self._save_all(tools)
            return config

    def update(self, tool_id: ToolId, **changes: Any) -> ToolProxyConfig:
        """
        Apply field changes to a tool's proxy config and persist it.

        Raises
        ------
        TpmError
            If a change names an unknown field or an invalid port.
        EngineStateIOError
            If the record cannot be written.
        """
        unknown = set(changes) - _EDITABLE_FIELDS
        if unknown:
            raise TpmError(f"Unknown proxy setting(s): {', '.join(sorted(unknown))}")
        port = changes.get("port")
        if port is not None and (not isinstance(port, int) or not 0 < port < 65536):
            raise TpmError(f"Invalid proxy port: {port!r}")

        with self._lock:
            tools = self._load_all()
            raw = tools.get(tool_id)
            current = _from_payload(tool_id, raw) if isinstance(raw, dict) else default_proxy_config(tool_id)
            updated = replace(current, **changes)
            tools[tool_id] = _to_payload(updated)
            self._save_all(tools)
            return updated


def _to_payload(config: ToolProxyConfig) -> dict[str, Any]:
    payload = asdict(config)
    payload.pop("tool_id")
    return payload

"""
Codex adapter: config.toml plus auth.json.

config.toml is edited with tomlkit so comments, formatting and settings the
engine does not manage survive a switch. The API key lives in auth.json.

Managed keys
------------
config.toml:
    model_provider, [model_providers.<label>] name/base_url/wire_api/
    requires_openai_auth, and defaults for model, model_reasoning_effort and
    network_access when the file does not set them.
auth.json:
    OPENAI_API_KEY
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import tomlkit
from tomlkit.exceptions import TOMLKitError

from profile_engine.atomic_io import dump_json_bytes
from profile_engine.data_models import AdapterKind, Credentials, Tool
from profile_engine.errors import NativeConfigParseError

from .base import NativeConfigAdapter, NativeSnapshot, decode_text

logger = logging.getLogger(__name__)

API_KEY_VAR = "OPENAI_API_KEY"
DEFAULT_WIRE_API = "responses"
DEFAULT_PROVIDER_LABEL = "custom"
CONFIG_DEFAULTS: tuple[tuple[str, str], ...] = (
    ("model", "gpt-5-codex"),
    ("model_reasoning_effort", "high"),
    ("network_access", "enabled"),
)


def normalize_base_url(base_url: str) -> str:
    """
    Normalize a Codex provider base URL so that it ends in '/v1'.

    Examples
    --------
    >>> normalize_base_url("https://api.example.com/")
    'https://api.example.com/v1'
    >>> normalize_base_url("https://api.example.com/v1")
    'https://api.example.com/v1'
    """
    cleaned = base_url.strip().rstrip("/")
    if not cleaned:
        return ""
    if cleaned.endswith("/v1"):
        return cleaned
    return cleaned + "/v1"


def _config_path(tool: Tool) -> Path:
    return tool.native_files[0]


def _auth_path(tool: Tool) -> Path:
    return tool.native_files[1]


def _load_toml(path: Path, data: bytes | None) -> tomlkit.TOMLDocument:
    text = decode_text(path, data)
    if not text.strip():
        return tomlkit.document()
    try:
        return tomlkit.parse(text)
    except (TOMLKitError, ValueError) as exc:
        raise NativeConfigParseError(f"{path} is not valid TOML: {exc}") from exc


def _load_auth(path: Path, data: bytes | None) -> dict[str, Any]:
    text = decode_text(path, data)
    if not text.strip():
        return {}
    try:
        document = json.loads(text)
    except json.JSONDecodeError as exc:
        raise NativeConfigParseError(f"{path} is not valid JSON: {exc}") from exc
    if not isinstance(document, dict):
        raise NativeConfigParseError(f"{path} must contain a JSON object.")
    return document


class CodexConfigAdapter(NativeConfigAdapter):
    """Reads and writes ~/.codex/config.toml and ~/.codex/auth.json."""

    kind = AdapterKind.CODEX_TOML_AUTH

    def parse(self, tool: Tool, contents: NativeSnapshot) -> Credentials:
        config = _load_toml(_config_path(tool), contents.get(_config_path(tool)))
        auth = _load_auth(_auth_path(tool), contents.get(_auth_path(tool)))

        base_url = ""
        wire_api: str | None = None
        label = config.get("model_provider")
        providers = config.get("model_providers")
        if label is not None and isinstance(providers, dict):
            entry = providers.get(str(label))
            if isinstance(entry, dict):
                base_url = str(entry.get("base_url") or "")
                wire_api = str(entry["wire_api"]) if entry.get("wire_api") else None

        return Credentials(
            api_key=str(auth.get(API_KEY_VAR) or ""),
            base_url=base_url,
            provider=wire_api,
        )

    def normalize(self, credentials: Credentials) -> Credentials:
        return Credentials(
            api_key=credentials.api_key.strip(),
            base_url=normalize_base_url(credentials.base_url),
            provider=(credentials.provider or "").strip() or DEFAULT_WIRE_API,
        )

    def serialize(
        self,
        tool: Tool,
        credentials: Credentials,
        contents: NativeSnapshot,
        *,
        label: str | None = None,
    ) -> dict[Path, bytes]:
        config_path = _config_path(tool)
        auth_path = _auth_path(tool)
        try:
            config = _load_toml(config_path, contents.get(config_path))
        except NativeConfigParseError as exc:
            logger.warning("Replacing unparseable %s: %s", config_path, exc)
            config = tomlkit.document()
        try:
            auth = _load_auth(auth_path, contents.get(auth_path))
        except NativeConfigParseError as exc:
            logger.warning("Replacing unparseable %s: %s", auth_path, exc)
            auth = {}

        current_label = config.get("model_provider")
        provider_label = label or (str(current_label) if current_label else DEFAULT_PROVIDER_LABEL)

        for key, value in CONFIG_DEFAULTS:
            if key not in config:
                config[key] = value
        config["model_provider"] = provider_label

        providers = config.get("model_providers")
        if not isinstance(providers, dict):
            providers = tomlkit.table(is_super_table=True)
            config["model_providers"] = providers
        entry = providers.get(provider_label)
        if not isinstance(entry, dict):
            entry = tomlkit.table()
            providers[provider_label] = entry
        entry["name"] = provider_label
        entry["base_url"] = credentials.base_url
        entry["wire_api"] = credentials.provider or DEFAULT_WIRE_API
        entry["requires_openai_auth"] = True

        auth[API_KEY_VAR] = credentials.api_key
        return {
            config_path: tomlkit.dumps(config).encode("utf-8"),
            auth_path: dump_json_bytes(auth),
        }

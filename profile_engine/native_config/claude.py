"""Claude Code settings.json adapter."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from profile_engine.atomic_io import dump_json_bytes
from profile_engine.data_models import AdapterKind, Credentials, Tool
from profile_engine.errors import NativeConfigParseError

from .base import NativeConfigAdapter, NativeSnapshot, decode_text

logger = logging.getLogger(__name__)

ENV_KEY = "env"
API_KEY_VAR = "ANTHROPIC_AUTH_TOKEN"
BASE_URL_VAR = "ANTHROPIC_BASE_URL"


def load_settings_document(path: Path, data: bytes | None) -> dict[str, Any]:
    """
    Parse settings.json bytes into a dict.

    Raises
    ------
    NativeConfigParseError
        If the content is not a JSON object or its 'env' entry is not an object.
    """
    text = decode_text(path, data)
    if not text.strip():
        return {}
    try:
        document = json.loads(text)
    except json.JSONDecodeError as exc:
        raise NativeConfigParseError(f"{path} is not valid JSON: {exc}") from exc
    if not isinstance(document, dict):
        raise NativeConfigParseError(f"{path} must contain a JSON object.")
    env = document.get(ENV_KEY)
    if env is not None and not isinstance(env, dict):
        raise NativeConfigParseError(f"{path}: '{ENV_KEY}' must be an object.")
    return document


class ClaudeSettingsAdapter(NativeConfigAdapter):
    """
    Reads and writes ~/.claude/settings.json.

    Only env.ANTHROPIC_AUTH_TOKEN and env.ANTHROPIC_BASE_URL are managed. Every
    other key in the file is preserved in its original order.
    """

    kind = AdapterKind.CLAUDE_SETTINGS_JSON

    def parse(self, tool: Tool, contents: NativeSnapshot) -> Credentials:
        path = tool.native_files[0]
        env = load_settings_document(path, contents.get(path)).get(ENV_KEY) or {}
        return Credentials(
            api_key=str(env.get(API_KEY_VAR) or ""),
            base_url=str(env.get(BASE_URL_VAR) or ""),
            provider=None,
        )

    def normalize(self, credentials: Credentials) -> Credentials:
        return Credentials(
            api_key=credentials.api_key.strip(),
            base_url=credentials.base_url.strip(),
            provider=None,
        )

    def serialize(
        self,
        tool: Tool,
        credentials: Credentials,
        contents: NativeSnapshot,
        *,
        label: str | None = None,
    ) -> dict[Path, bytes]:
        path = tool.native_files[0]
        try:
            document = load_settings_document(path, contents.get(path))
        except NativeConfigParseError as exc:
            logger.warning("Replacing unparseable %s: %s", path, exc)
            document = {}

        env = dict(document.get(ENV_KEY) or {})
        env[API_KEY_VAR] = credentials.api_key
        env[BASE_URL_VAR] = credentials.base_url
        document[ENV_KEY] = env
        return {path: dump_json_bytes(document)}

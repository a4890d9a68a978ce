"""Lookup from a tool's adapter kind to its adapter."""

from __future__ import annotations

from typing import Mapping

from profile_engine.data_models import AdapterKind, Tool

from .base import NativeConfigAdapter
from .claude import ClaudeSettingsAdapter
from .codex import CodexConfigAdapter
from .gemini import GeminiEnvAdapter

ADAPTERS: Mapping[AdapterKind, NativeConfigAdapter] = {
    AdapterKind.CLAUDE_SETTINGS_JSON: ClaudeSettingsAdapter(),
    AdapterKind.CODEX_TOML_AUTH: CodexConfigAdapter(),
    AdapterKind.GEMINI_DOTENV: GeminiEnvAdapter(),
}


def adapter_for(tool: Tool) -> NativeConfigAdapter:
    """Return the adapter that understands `tool`'s native files."""
    return ADAPTERS[tool.adapter_kind]

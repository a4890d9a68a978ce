"""
Registry of supported tools.

The set of tools is fixed. Only the home directory under which their config
directories live is configurable, which keeps tests away from the real
~/.claude, ~/.codex and ~/.gemini.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterator, Sequence

from profile_engine.data_models import AdapterKind, Tool, ToolId
from profile_engine.errors import UnknownToolError

CLAUDE_CODE: ToolId = "claude-code"
CODEX: ToolId = "codex"
GEMINI_CLI: ToolId = "gemini-cli"

TOOL_IDS: tuple[ToolId, ...] = (CLAUDE_CODE, CODEX, GEMINI_CLI)


def build_tools(home: Path) -> tuple[Tool, ...]:
    """
    Build the fixed tool set rooted at `home`.

    Parameters
    ----------
    home:
        Home directory containing the tools' config directories.

    Returns
    -------
    tuple[Tool, ...]
        Tools in TOOL_IDS order.
    """
    claude_dir = home / ".claude"
    codex_dir = home / ".codex"
    gemini_dir = home / ".gemini"
    return (
        Tool(
            tool_id=CLAUDE_CODE,
            display_name="Claude Code",
            config_dir=claude_dir,
            native_files=(claude_dir / "settings.json",),
            adapter_kind=AdapterKind.CLAUDE_SETTINGS_JSON,
        ),
        Tool(
            tool_id=CODEX,
            display_name="Codex",
            config_dir=codex_dir,
            native_files=(codex_dir / "config.toml", codex_dir / "auth.json"),
            adapter_kind=AdapterKind.CODEX_TOML_AUTH,
        ),
        Tool(
            tool_id=GEMINI_CLI,
            display_name="Gemini CLI",
            config_dir=gemini_dir,
            native_files=(gemini_dir / ".env",),
            adapter_kind=AdapterKind.GEMINI_DOTENV,
        ),
    )


class ToolRegistry:
    """Lookup of supported tools by id."""

    def __init__(self, home: Path | None = None) -> None:
        self._home = (home or Path.home()).expanduser()
        self._tools = {tool.tool_id: tool for tool in build_tools(self._home)}

    @property
    def home(self) -> Path:
        return self._home

    def get(self, tool_id: ToolId) -> Tool:
        """
        Return the tool for `tool_id`.

        Raises
        ------
        UnknownToolError
            If tool_id is not supported.
        """
        try:
            return self._tools[tool_id]
        except KeyError:
            known = ", ".join(TOOL_IDS)
            raise UnknownToolError(f"Unknown tool: {tool_id!r} (expected one of: {known})") from None

    def all(self) -> Sequence[Tool]:
        return tuple(self._tools[tool_id] for tool_id in TOOL_IDS)

    def __iter__(self) -> Iterator[Tool]:
        return iter(self.all())

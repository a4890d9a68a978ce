"""
Active config resolution.

The active config of a tool is a pure function of its native files: the engine
reads them, normalizes the credentials and looks for stored profiles that would
produce the same credentials if written.

Tie-break
---------
Two profiles can hold identical credentials. When several match, the profile
the tool was most recently switched to wins if it is among them; otherwise the
first match in store (insertion) order wins.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from profile_engine.data_models import ActiveConfig, Credentials, Profile, Tool
from profile_engine.errors import NativeConfigParseError
from profile_engine.native_config.adapters import adapter_for
from profile_engine.profile_store.api import ProfileStore

logger = logging.getLogger(__name__)


def match_profile(
    tool: Tool,
    credentials: Credentials,
    profiles: list[Profile],
    hint: str | None,
) -> str | None:
    """
    Return the name of the profile matching `credentials`, or None.

    Parameters
    ----------
    tool:
        Tool whose adapter defines normalization.
    credentials:
        Credentials read from the native files.
    profiles:
        Stored profiles in insertion order.
    hint:
        Name of the most recently switched-to profile, if any.
    """
    if credentials.is_empty():
        return None
    adapter = adapter_for(tool)
    target = adapter.credentials_fingerprint(credentials)
    matches = [p.name for p in profiles if adapter.credentials_fingerprint(p.credentials) == target]
    if not matches:
        return None
    if hint is not None and hint in matches:
        return hint
    return matches[0]


@dataclass(frozen=True, slots=True)
class ActiveConfigResolver:
    """Derives a tool's ActiveConfig from its native files and the profile store."""

    store: ProfileStore

    def resolve(self, tool: Tool) -> ActiveConfig:
        """
        Resolve the active config of `tool`.

        Returns
        -------
        ActiveConfig
            profile_name is None when the native content matches no profile or
            cannot be parsed (parse_error is then set).

        Raises
        ------
        NativeConfigIOError
            If a native file exists but cannot be read.
        """
        adapter = adapter_for(tool)
        try:
            credentials = adapter.read(tool)
        except NativeConfigParseError as exc:
            logger.debug("Treating %s config as custom: %s", tool.tool_id, exc)
            return ActiveConfig(
                tool_id=tool.tool_id,
                api_key="",
                base_url="",
                provider=None,
                profile_name=None,
                parse_error=str(exc),
            )

        hint = self.store.load_switch_hint(tool.tool_id)
        name = match_profile(
            tool,
            credentials,
            list(self.store.list(tool.tool_id)),
            hint.profile_name if hint is not None else None,
        )
        return ActiveConfig(
            tool_id=tool.tool_id,
            api_key=credentials.api_key,
            base_url=credentials.base_url,
            provider=credentials.provider,
            profile_name=name,
        )

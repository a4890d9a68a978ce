"""
ProfileStore public API.

This module defines the engine-owned persistence surface for profiles and the
per-tool state that goes with them. Callers speak only in typed domain objects
and never see SQLite details.

Notes
-----
- Profile names are unique per tool and listed in insertion order.
- Deleting a profile never touches a tool's native config files.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Mapping, Protocol, Sequence

from profile_engine.data_models import Credentials, Profile, ToolId


@dataclass(frozen=True, slots=True)
class SwitchHint:
    """
    The profile a tool was most recently switched to.

    Attributes
    ----------
    profile_name:
        Name of the profile.
    switched_at:
        When the switch happened.
    """

    profile_name: str
    switched_at: datetime


class ProfileStore(Protocol):
    """Persistence API for profiles and per-tool engine state."""

    def save(self, tool_id: ToolId, name: str, credentials: Credentials) -> Profile:
        """
        Create or update a profile.

        Parameters
        ----------
        tool_id:
            Tool the profile belongs to.
        name:
            Profile name. Surrounding whitespace is stripped.
        credentials:
            On create, api_key and base_url are required. On update, only
            non-empty fields replace the stored values.

        Returns
        -------
        Profile
            The stored profile.

        Raises
        ------
        InvalidNameError
            If the name is empty, whitespace-only or uses the reserved prefix.
        InvalidCredentialsError
            If a new profile lacks an API key or base URL.
        """
        raise NotImplementedError

    def create(self, tool_id: ToolId, name: str, credentials: Credentials) -> Profile:
        """
        Create a profile that must not exist yet.

        Raises
        ------
        InvalidNameError
            If the name is invalid or already taken.
        """
        raise NotImplementedError

    def overwrite(self, tool_id: ToolId, name: str, credentials: Credentials) -> Profile:
        """
        Replace every credential field of an existing profile.

        Raises
        ------
        ProfileNotFoundError
            If the profile does not exist.
        """
        raise NotImplementedError

    def get(self, tool_id: ToolId, name: str) -> Profile:
        """
        Load a profile by name.

        Raises
        ------
        ProfileNotFoundError
            If the profile does not exist.
        """
        raise NotImplementedError

    def delete(self, tool_id: ToolId, name: str) -> None:
        """
        Delete a profile.

        Raises
        ------
        ProfileNotFoundError
            If the profile does not exist.
        """
        raise NotImplementedError

    def list(self, tool_id: ToolId) -> Sequence[Profile]:
        """Return the tool's profiles in insertion order."""
        raise NotImplementedError

    def load_switch_hint(self, tool_id: ToolId) -> SwitchHint | None:
        raise NotImplementedError

    def save_switch_hint(self, tool_id: ToolId, name: str, switched_at: datetime) -> None:
        raise NotImplementedError

    def clear_switch_hint(self, tool_id: ToolId) -> None:
        raise NotImplementedError

    def load_switched_at(self, tool_id: ToolId) -> Mapping[str, datetime]:
        """Return the last switch time of every profile that was ever switched to."""
        raise NotImplementedError

    def load_fingerprints(self, tool_id: ToolId) -> Mapping[Path, str]:
        """Return the fingerprint the engine last recorded for each native path."""
        raise NotImplementedError

    def save_fingerprints(self, tool_id: ToolId, fingerprints: Mapping[Path, str]) -> None:
        """Record fingerprints for the given paths, leaving other paths untouched."""
        raise NotImplementedError

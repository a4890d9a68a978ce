"""
Filesystem path policy and safety gates.

This module is the single choke point for deciding where the engine keeps its
own runtime data:

- Engine data lives under a data root (default: %LOCALAPPDATA%\\tpm on Windows,
  ~/.tpm elsewhere; TPM_DATA_ROOT overrides both).
- The engine never writes its own state inside a tool's config directory; the
  only files it touches there are the tool's native config files.
- Deletion is limited to legacy backup files inside a tool's config directory
  (see legacy_cleanup) and is re-validated here.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass
from pathlib import Path

from profile_engine.errors import SafetyViolationError

DATA_ROOT_ENV = "TPM_DATA_ROOT"


@dataclass(frozen=True, slots=True)
class EnginePaths:
    """
    Concrete resolved paths for engine runtime data.

    Attributes
    ----------
    data_root:
        Root directory for all engine runtime data.
    index_root:
        SQLite database holding profiles and per-tool state.
    logs_root:
        Rotating log files.
    archives_root:
        Default location for archives of removed legacy backups.
    settings_path:
        JSON file holding watcher settings.
    proxy_config_path:
        JSON file holding per-tool proxy configuration.
    """

    data_root: Path
    index_root: Path
    logs_root: Path
    archives_root: Path
    settings_path: Path
    proxy_config_path: Path

    @property
    def db_path(self) -> Path:
        return self.index_root / "profiles.sqlite"


def default_data_root() -> Path:
    """
    Resolve the default engine data root.

    Preference order:
    1) $TPM_DATA_ROOT if set
    2) %LOCALAPPDATA% then %APPDATA% on Windows
    3) ~/.tpm
    """
    override = os.environ.get(DATA_ROOT_ENV)
    if override:
        return Path(override).expanduser()

    if os.name == "nt":
        local = os.environ.get("LOCALAPPDATA")
        if local:
            return Path(local) / "tpm"
        roaming = os.environ.get("APPDATA")
        if roaming:
            return Path(roaming) / "tpm"
        raise SafetyViolationError("Neither LOCALAPPDATA nor APPDATA environment variables are set.")

    return Path.home() / ".tpm"


def resolve_engine_paths(data_root: Path | None = None) -> EnginePaths:
    """
    Resolve and return all engine runtime paths.

    Parameters
    ----------
    data_root:
        Optional override for the data root.

    Returns
    -------
    EnginePaths
        Resolved paths. Nothing is created on disk.

    Raises
    ------
    SafetyViolationError
        If the data root is a filesystem root.
    """
    root = (data_root or default_data_root()).expanduser().resolve()
    if len(root.parts) <= 1:
        raise SafetyViolationError(f"Refusing to use filesystem root as data root: {root}")

    paths = EnginePaths(
        data_root=root,
        index_root=root / "index",
        logs_root=root / "logs",
        archives_root=root / "archives",
        settings_path=root / "settings.json",
        proxy_config_path=root / "proxy.json",
    )
    for value in asdict(paths).values():
        assert_within(root, Path(value), purpose="engine data")
    return paths


def ensure_engine_directories(paths: EnginePaths) -> None:
    """Create the engine directory structure. Performs no deletion."""
    for directory in (paths.data_root, paths.index_root, paths.logs_root, paths.archives_root):
        directory.mkdir(parents=True, exist_ok=True)


def engine_paths_as_text(paths: EnginePaths) -> str:
    """Render EnginePaths as a readable multi-line string."""
    items = asdict(paths)
    items["db_path"] = paths.db_path
    width = max(len(k) for k in items)
    return "\n".join(f"{key.ljust(width)} : {value}" for key, value in items.items())


def assert_within(base: Path, candidate: Path, purpose: str) -> None:
    """
    Ensure candidate is within base after resolution.

    Raises
    ------
    SafetyViolationError
        If candidate escapes base.
    """
    try:
        candidate.resolve().relative_to(base.resolve())
    except ValueError as exc:
        raise SafetyViolationError(
            f"Unsafe path for {purpose}: {candidate} is not within {base}"
        ) from exc

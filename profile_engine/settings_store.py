"""
Engine settings persisted as JSON under the data root.

Settings hold the external-change watch toggle, the poll interval and the log
level. Loading never fails: a missing, unreadable or malformed file (or a
single invalid field) falls back to defaults. Saving is atomic.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from profile_engine.atomic_io import write_json_atomic
from profile_engine.errors import EngineStateIOError

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_MS = 5000
MIN_POLL_INTERVAL_MS = 100
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@dataclass(frozen=True, slots=True)
class EngineSettings:
    """
    Persisted engine settings.

    Notes
    -----
    The watcher re-reads these on every poll cycle, so a change takes effect
    without restarting the engine.
    """

    external_watch_enabled: bool
    external_poll_interval_ms: int
    log_level: str

    @staticmethod
    def defaults() -> "EngineSettings":
        return EngineSettings(
            external_watch_enabled=True,
            external_poll_interval_ms=DEFAULT_POLL_INTERVAL_MS,
            log_level="INFO",
        )

    @property
    def poll_interval_seconds(self) -> float:
        return self.external_poll_interval_ms / 1000.0


def clamp_poll_interval(value: int) -> int:
    return max(MIN_POLL_INTERVAL_MS, int(value))


def load_engine_settings(path: Path) -> EngineSettings:
    """
    Load engine settings from disk.

    Parameters
    ----------
    path:
        Settings JSON path.

    Returns
    -------
    EngineSettings
        Loaded settings, or defaults for any missing or invalid field.
    """
    defaults = EngineSettings.defaults()
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return defaults
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring unreadable settings file %s: %s", path, exc)
        return defaults
    if not isinstance(payload, dict):
        return defaults

    enabled = payload.get("external_watch_enabled", defaults.external_watch_enabled)
    if not isinstance(enabled, bool):
        enabled = defaults.external_watch_enabled

    interval = payload.get("external_poll_interval_ms", defaults.external_poll_interval_ms)
    if isinstance(interval, bool) or not isinstance(interval, int):
        interval = defaults.external_poll_interval_ms

    log_level = payload.get("log_level", defaults.log_level)
    if not isinstance(log_level, str) or log_level.upper() not in LOG_LEVELS:
        log_level = defaults.log_level

    return EngineSettings(
        external_watch_enabled=enabled,
        external_poll_interval_ms=clamp_poll_interval(interval),
        log_level=log_level.upper(),
    )


def save_engine_settings(path: Path, settings: EngineSettings) -> None:
    """
    Save engine settings atomically.

    Raises
    ------
    EngineStateIOError
        If the settings file cannot be written.
    """
    payload = {
        "external_watch_enabled": settings.external_watch_enabled,
        "external_poll_interval_ms": clamp_poll_interval(settings.external_poll_interval_ms),
        "log_level": settings.log_level,
    }
    try:
        write_json_atomic(path, payload)
    except OSError as exc:
        raise EngineStateIOError(f"Cannot write settings {path}: {exc}") from exc

"""
SQLite implementation of ProfileStore.

This module owns the on-disk persistence format for profiles, the per-tool
last-switched hint and the native file fingerprints.

Threading
---------
A new sqlite3 connection is opened for every call, so one store instance can
be used from the service, the watcher threads and the GUI worker alike.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Mapping, Sequence

from profile_engine.clock import Clock, SystemClock, from_utc_text, to_utc_text
from profile_engine.data_models import RESERVED_PROFILE_PREFIX, Credentials, Profile, ToolId
from profile_engine.errors import InvalidCredentialsError, InvalidNameError, ProfileNotFoundError
from profile_engine.paths import EnginePaths, ensure_engine_directories

from .api import ProfileStore, SwitchHint
from .schema import SCHEMA_V1, SCHEMA_VERSION


def validate_profile_name(name: str) -> str:
    """
    Normalize and validate a profile name.

    Parameters
    ----------
    name:
        Raw name from user input.

    Returns
    -------
    str
        The stripped name.

    Raises
    ------
    InvalidNameError
        If the name is empty, whitespace-only or starts with the reserved prefix.
    """
    cleaned = str(name).strip()
    if not cleaned:
        raise InvalidNameError("Profile name must not be empty.")
    if cleaned.startswith(RESERVED_PROFILE_PREFIX):
        raise InvalidNameError(
            f"Profile names starting with {RESERVED_PROFILE_PREFIX!r} are reserved for the proxy."
        )
    return cleaned


def _clean(value: str | None) -> str:
    return (value or "").strip()


def _ensure_schema(conn: sqlite3.Connection) -> None:
    """
    Ensure the DB schema supports current ProfileStore features.

    Notes
    -----
    SQLite lacks `ALTER TABLE ... ADD COLUMN IF NOT EXISTS`, so we inspect table
    info and apply minimal migrations as needed.
    """
    cols = conn.execute("PRAGMA table_info(profiles)").fetchall()
    col_names = {str(r["name"]) for r in cols}
    if "last_switched_at" not in col_names:
        conn.execute("ALTER TABLE profiles ADD COLUMN last_switched_at TEXT NULL")

    conn.execute(
        "INSERT INTO store_meta(key, value) VALUES('schema_version', ?) "
        "ON CONFLICT(key) DO NOTHING",
        (SCHEMA_VERSION,),
    )


def _row_to_profile(row: sqlite3.Row) -> Profile:
    return Profile(
        tool_id=str(row["tool_id"]),
        name=str(row["name"]),
        api_key=str(row["api_key"]),
        base_url=str(row["base_url"]),
        provider=str(row["provider"]) if row["provider"] is not None else None,
        created_at=from_utc_text(str(row["created_at"])),
        updated_at=from_utc_text(str(row["updated_at"])),
    )


_PROFILE_COLUMNS = "tool_id, name, api_key, base_url, provider, created_at, updated_at"


@dataclass(frozen=True, slots=True)
class SqliteProfileStore(ProfileStore):
    """
    SQLite-backed ProfileStore.

    Parameters
    ----------
    db_path:
        Path to the SQLite database.
    clock:
        Source of created/updated timestamps.

    Notes
    -----
    The database file is created if absent. The parent directory is created as
    needed.
    """

    db_path: Path
    clock: Clock = field(default_factory=SystemClock)

    def __post_init__(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript(SCHEMA_V1)
            _ensure_schema(conn)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=10.0)
        conn.row_factory = sqlite3.Row
        return conn

    def _fetch(self, conn: sqlite3.Connection, tool_id: ToolId, name: str) -> sqlite3.Row | None:
        return conn.execute(
            f"SELECT {_PROFILE_COLUMNS} FROM profiles WHERE tool_id = ? AND name = ?",
            (tool_id, name),
        ).fetchone()

    def _insert(
        self, conn: sqlite3.Connection, tool_id: ToolId, name: str, credentials: Credentials
    ) -> None:
        api_key = _clean(credentials.api_key)
        base_url = _clean(credentials.base_url)
        if not api_key:
            raise InvalidCredentialsError("API key is required for a new profile.")
        if not base_url:
            raise InvalidCredentialsError("Base URL is required for a new profile.")

        now = to_utc_text(self.clock.now())
        row = conn.execute(
            "SELECT COALESCE(MAX(position), -1) + 1 AS next FROM profiles WHERE tool_id = ?",
            (tool_id,),
        ).fetchone()
        conn.execute(
            "INSERT INTO profiles(tool_id, name, api_key, base_url, provider, created_at, "
            "updated_at, position) VALUES(?, ?, ?, ?, ?, ?, ?, ?)",
            (
                tool_id,
                name,
                api_key,
                base_url,
                _clean(credentials.provider) or None,
                now,
                now,
                int(row["next"]),
            ),
        )

    def save(self, tool_id: ToolId, name: str, credentials: Credentials) -> Profile:
        """See ProfileStore.save."""
        name = validate_profile_name(name)
        with self._connect() as conn:
            existing = self._fetch(conn, tool_id, name)
            if existing is None:
                self._insert(conn, tool_id, name, credentials)
            else:
                api_key = _clean(credentials.api_key) or str(existing["api_key"])
                base_url = _clean(credentials.base_url) or str(existing["base_url"])
                provider = _clean(credentials.provider) or existing["provider"]
                conn.execute(
                    "UPDATE profiles SET api_key = ?, base_url = ?, provider = ?, updated_at = ? "
                    "WHERE tool_id = ? AND name = ?",
                    (api_key, base_url, provider, to_utc_text(self.clock.now()), tool_id, name),
                )
            row = self._fetch(conn, tool_id, name)
        assert row is not None
        return _row_to_profile(row)

    def create(self, tool_id: ToolId, name: str, credentials: Credentials) -> Profile:
        """See ProfileStore.create."""
        name = validate_profile_name(name)
        with self._connect() as conn:
            if self._fetch(conn, tool_id, name) is not None:
                raise InvalidNameError(f"Profile already exists for {tool_id}: {name!r}")
            self._insert(conn, tool_id, name, credentials)
            row = self._fetch(conn, tool_id, name)
        assert row is not None
        return _row_to_profile(row)

    def overwrite(self, tool_id: ToolId, name: str, credentials: Credentials) -> Profile:
        """See ProfileStore.overwrite."""
        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE profiles SET api_key = ?, base_url = ?, provider = ?, updated_at = ? "
                "WHERE tool_id = ? AND name = ?",
                (
                    credentials.api_key,
                    credentials.base_url,
                    credentials.provider,
                    to_utc_text(self.clock.now()),
                    tool_id,
                    name,
                ),
            )
            if cur.rowcount == 0:
                raise ProfileNotFoundError(f"Unknown profile for {tool_id}: {name!r}")
            row = self._fetch(conn, tool_id, name)
        assert row is not None
        return _row_to_profile(row)

    def get(self, tool_id: ToolId, name: str) -> Profile:
        """See ProfileStore.get."""
        with self._connect() as conn:
            row = self._fetch(conn, tool_id, name.strip())
        if row is None:
            raise ProfileNotFoundError(f"Unknown profile for {tool_id}: {name!r}")
        return _row_to_profile(row)

    def delete(self, tool_id: ToolId, name: str) -> None:
        """See ProfileStore.delete."""
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM profiles WHERE tool_id = ? AND name = ?", (tool_id, name.strip())
            )
            if cur.rowcount == 0:
                raise ProfileNotFoundError(f"Unknown profile for {tool_id}: {name!r}")

    def list(self, tool_id: ToolId) -> Sequence[Profile]:
        """See ProfileStore.list."""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_PROFILE_COLUMNS} FROM profiles WHERE tool_id = ? ORDER BY position ASC",
                (tool_id,),
            ).fetchall()
        return [_row_to_profile(r) for r in rows]

    def load_switch_hint(self, tool_id: ToolId) -> SwitchHint | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT last_switched_profile, switched_at FROM tool_state WHERE tool_id = ?",
                (tool_id,),
            ).fetchone()
        if row is None or row["last_switched_profile"] is None:
            return None
        return SwitchHint(
            profile_name=str(row["last_switched_profile"]),
            switched_at=from_utc_text(str(row["switched_at"])),
        )

    def save_switch_hint(self, tool_id: ToolId, name: str, switched_at: datetime) -> None:
        stamp = to_utc_text(switched_at)
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO tool_state(tool_id, last_switched_profile, switched_at) "
                "VALUES(?, ?, ?) ON CONFLICT(tool_id) DO UPDATE SET "
                "last_switched_profile = excluded.last_switched_profile, "
                "switched_at = excluded.switched_at",
                (tool_id, name, stamp),
            )
            conn.execute(
                "UPDATE profiles SET last_switched_at = ? WHERE tool_id = ? AND name = ?",
                (stamp, tool_id, name),
            )

    def clear_switch_hint(self, tool_id: ToolId) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE tool_state SET last_switched_profile = NULL, switched_at = NULL "
                "WHERE tool_id = ?",
                (tool_id,),
            )

    def load_switched_at(self, tool_id: ToolId) -> Mapping[str, datetime]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT name, last_switched_at FROM profiles "
                "WHERE tool_id = ? AND last_switched_at IS NOT NULL",
                (tool_id,),
            ).fetchall()
        return {str(r["name"]): from_utc_text(str(r["last_switched_at"])) for r in rows}

    def load_fingerprints(self, tool_id: ToolId) -> Mapping[Path, str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT path, fingerprint FROM native_fingerprints WHERE tool_id = ?",
                (tool_id,),
            ).fetchall()
        return {Path(str(r["path"])): str(r["fingerprint"]) for r in rows}

    def save_fingerprints(self, tool_id: ToolId, fingerprints: Mapping[Path, str]) -> None:
        with self._connect() as conn:
            for path, fingerprint in fingerprints.items():
                conn.execute(
                    "INSERT INTO native_fingerprints(tool_id, path, fingerprint) VALUES(?, ?, ?) "
                    "ON CONFLICT(tool_id, path) DO UPDATE SET fingerprint = excluded.fingerprint",
                    (tool_id, str(path), fingerprint),
                )


def open_profile_store(paths: EnginePaths, clock: Clock | None = None) -> SqliteProfileStore:
    """
    Convenience constructor that ensures engine directories exist.

    Parameters
    ----------
    paths:
        Resolved engine paths.
    clock:
        Optional clock override.

    Returns
    -------
    SqliteProfileStore
        Ready-to-use SQLite-backed store.
    """
    ensure_engine_directories(paths)
    return SqliteProfileStore(db_path=paths.db_path, clock=clock or SystemClock())

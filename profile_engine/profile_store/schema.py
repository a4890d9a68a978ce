"""SQLite schema for ProfileStore.

Notes
-----
The database lives under EnginePaths.index_root. Besides profiles it keeps the
small amount of per-tool state the engine needs across restarts: the
last-switched hint and the fingerprints of the native files the engine last
wrote.
"""

from __future__ import annotations

SCHEMA_V1 = """
PRAGMA journal_mode = WAL;

CREATE TABLE IF NOT EXISTS store_meta (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS profiles (
    tool_id    TEXT NOT NULL,
    name       TEXT NOT NULL,
    api_key    TEXT NOT NULL,
    base_url   TEXT NOT NULL,
    provider   TEXT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    position   INTEGER NOT NULL,
    PRIMARY KEY (tool_id, name)
);

CREATE INDEX IF NOT EXISTS idx_profiles_tool_position ON profiles(tool_id, position);

CREATE TABLE IF NOT EXISTS tool_state (
    tool_id               TEXT PRIMARY KEY,
    last_switched_profile TEXT NULL,
    switched_at           TEXT NULL
);

CREATE TABLE IF NOT EXISTS native_fingerprints (
    tool_id     TEXT NOT NULL,
    path        TEXT NOT NULL,
    fingerprint TEXT NOT NULL,
    PRIMARY KEY (tool_id, path)
);
"""

SCHEMA_VERSION = "1"

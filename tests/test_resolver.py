from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from profile_engine.clock import SteppingClock
from profile_engine.data_models import Credentials
from profile_engine.native_config.codex import CodexConfigAdapter
from profile_engine.profile_store.sqlite_store import SqliteProfileStore
from profile_engine.resolver import ActiveConfigResolver, match_profile
from profile_engine.tools import CLAUDE_CODE, CODEX, ToolRegistry

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def store(tmp_path: Path) -> SqliteProfileStore:
    return SqliteProfileStore(tmp_path / "index" / "profiles.sqlite", clock=SteppingClock(start=T0))


def _write_claude(registry: ToolRegistry, key: str, url: str) -> None:
    path = registry.get(CLAUDE_CODE).native_files[0]
    path.write_text(
        json.dumps({"env": {"ANTHROPIC_AUTH_TOKEN": key, "ANTHROPIC_BASE_URL": url}}),
        encoding="utf-8",
    )


def test_missing_native_files_resolve_as_custom(registry: ToolRegistry, store: SqliteProfileStore) -> None:
    store.create(CLAUDE_CODE, "work", Credentials("k", "https://u"))

    active = ActiveConfigResolver(store).resolve(registry.get(CLAUDE_CODE))

    assert active.profile_name is None
    assert active.is_custom
    assert active.parse_error is None


def test_matching_profile_is_active(registry: ToolRegistry, store: SqliteProfileStore) -> None:
    store.create(CLAUDE_CODE, "work", Credentials("k-work", "https://work"))
    store.create(CLAUDE_CODE, "home", Credentials("k-home", "https://home"))
    _write_claude(registry, "k-home", "https://home")

    active = ActiveConfigResolver(store).resolve(registry.get(CLAUDE_CODE))

    assert active.profile_name == "home"
    assert active.api_key == "k-home"


def test_unknown_content_is_custom(registry: ToolRegistry, store: SqliteProfileStore) -> None:
    store.create(CLAUDE_CODE, "work", Credentials("k-work", "https://work"))
    _write_claude(registry, "hand-edited", "https://work")

    active = ActiveConfigResolver(store).resolve(registry.get(CLAUDE_CODE))

    assert active.profile_name is None
    assert active.api_key == "hand-edited"


def test_unparseable_content_is_custom_with_error(registry: ToolRegistry, store: SqliteProfileStore) -> None:
    registry.get(CLAUDE_CODE).native_files[0].write_text("{oops", encoding="utf-8")

    active = ActiveConfigResolver(store).resolve(registry.get(CLAUDE_CODE))

    assert active.profile_name is None
    assert active.parse_error is not None


def test_duplicates_prefer_last_switched(registry: ToolRegistry, store: SqliteProfileStore) -> None:
    same = Credentials("k", "https://same")
    store.create(CLAUDE_CODE, "first", same)
    store.create(CLAUDE_CODE, "second", same)
    _write_claude(registry, "k", "https://same")
    resolver = ActiveConfigResolver(store)

    assert resolver.resolve(registry.get(CLAUDE_CODE)).profile_name == "first"

    store.save_switch_hint(CLAUDE_CODE, "second", T0)
    assert resolver.resolve(registry.get(CLAUDE_CODE)).profile_name == "second"


def test_match_uses_tool_normalization(registry: ToolRegistry, store: SqliteProfileStore) -> None:
    tool = registry.get(CODEX)
    profile = store.create(CODEX, "relay", Credentials("sk", "https://relay.example/"))
    CodexConfigAdapter().write(tool, profile.credentials, label="relay")

    active = ActiveConfigResolver(store).resolve(tool)

    assert active.profile_name == "relay"
    assert active.base_url == "https://relay.example/v1"
    assert active.provider == "responses"


def test_empty_credentials_never_match(registry: ToolRegistry) -> None:
    assert match_profile(registry.get(CLAUDE_CODE), Credentials("", ""), [], None) is None

from __future__ import annotations

import json

import pytest

from profile_engine.atomic_io import dump_json_bytes
from profile_engine.data_models import MISSING_FINGERPRINT, Credentials
from profile_engine.errors import (
    InvalidNameError,
    NoActiveProfileError,
    UnknownPathError,
)
from profile_engine.reconciliation.service import ReconciliationService
from profile_engine.tools import CLAUDE_CODE, CODEX

WORK = Credentials("sk-work-0001", "https://work.example")


def _rotate_codex_key(service: ReconciliationService, new_key: str) -> None:
    auth_path = service.tools.get(CODEX).native_files[1]
    auth_path.write_text(json.dumps({"OPENAI_API_KEY": new_key}, indent=2) + "\n", encoding="utf-8")


def test_codex_key_rotation_is_detected_and_imported(service: ReconciliationService) -> None:
    service.save_profile(CODEX, "work", WORK)
    service.switch_profile(CODEX, "work")
    auth_path = service.tools.get(CODEX).native_files[1]

    _rotate_codex_key(service, "sk-rotated-9999")
    changes = service.check_for_changes(CODEX)

    assert [c.path for c in changes] == [auth_path]
    assert service.get_active_config(CODEX).is_custom
    assert [d.has_drift for d in service.list_profiles(CODEX)] == [True]

    result = service.import_external_change(CODEX, auth_path)

    assert result.profile_name == "work"
    assert result.replaced is True
    assert result.was_new is False
    assert result.active_config.profile_name == "work"
    assert result.active_config.api_key == "sk-rotated-9999"
    assert service.get_pending_changes() == []
    assert service.check_for_changes(CODEX) == []
    assert [d.has_drift for d in service.list_profiles(CODEX)] == [False]


def test_import_as_new_profile(service: ReconciliationService) -> None:
    service.save_profile(CODEX, "work", WORK)
    service.switch_profile(CODEX, "work")
    auth_path = service.tools.get(CODEX).native_files[1]
    _rotate_codex_key(service, "sk-second-8888")
    service.check_for_changes(CODEX)

    result = service.import_external_change(CODEX, str(auth_path), as_new_name="second")

    assert result.was_new is True
    assert result.active_config.profile_name == "second"
    assert [d.name for d in service.list_profiles(CODEX)] == ["work", "second"]
    assert service.get_pending_changes() == []


def test_import_as_existing_name_is_rejected(service: ReconciliationService) -> None:
    service.save_profile(CODEX, "work", WORK)
    service.switch_profile(CODEX, "work")
    auth_path = service.tools.get(CODEX).native_files[1]
    _rotate_codex_key(service, "sk-x-7777")
    service.check_for_changes(CODEX)

    with pytest.raises(InvalidNameError):
        service.import_external_change(CODEX, auth_path, as_new_name="work")
    assert len(service.get_pending_changes()) == 1


def test_import_without_any_profile_needs_a_name(service: ReconciliationService) -> None:
    path = service.tools.get(CLAUDE_CODE).native_files[0]
    path.write_text(
        json.dumps({"env": {"ANTHROPIC_AUTH_TOKEN": "hand", "ANTHROPIC_BASE_URL": "https://h"}}),
        encoding="utf-8",
    )

    with pytest.raises(NoActiveProfileError):
        service.import_external_change(CLAUDE_CODE, path)

    result = service.import_external_change(CLAUDE_CODE, path, as_new_name="hand")
    assert result.active_config.profile_name == "hand"


def test_import_rejects_foreign_paths(service: ReconciliationService) -> None:
    other = service.tools.get(CLAUDE_CODE).native_files[0]

    with pytest.raises(UnknownPathError):
        service.import_external_change(CODEX, other)


def test_acknowledge_keeps_profiles_and_clears_pending(service: ReconciliationService) -> None:
    service.save_profile(CODEX, "work", WORK)
    service.switch_profile(CODEX, "work")
    _rotate_codex_key(service, "sk-manual-6666")
    service.check_for_changes(CODEX)

    cleared = service.acknowledge_change(CODEX)

    assert cleared == 1
    assert service.get_pending_changes() == []
    assert service.check_for_changes(CODEX) == []
    profiles = service.list_profiles(CODEX)
    assert profiles[0].api_key_preview == "sk-w...0001"
    assert profiles[0].has_drift is True
    assert service.get_active_config(CODEX).api_key == "sk-manual-6666"


def test_repeated_edits_keep_one_pending_entry(service: ReconciliationService) -> None:
    service.save_profile(CODEX, "work", WORK)
    service.switch_profile(CODEX, "work")

    _rotate_codex_key(service, "sk-first-1111")
    service.check_for_changes(CODEX)
    _rotate_codex_key(service, "sk-second-2222")
    service.check_for_changes(CODEX)

    pending = service.get_pending_changes()
    assert len(pending) == 1
    assert b"sk-second-2222" in pending[0].content_snapshot


def test_listener_receives_detected_changes(service: ReconciliationService) -> None:
    seen = []
    unsubscribe = service.subscribe(seen.append)
    service.save_profile(CODEX, "work", WORK)
    service.switch_profile(CODEX, "work")
    _rotate_codex_key(service, "sk-listen-3333")

    service.check_for_changes()
    unsubscribe()

    assert [c.tool_id for c in seen] == [CODEX]


def test_imported_profile_serializes_to_external_content(service: ReconciliationService) -> None:
    path = service.tools.get(CLAUDE_CODE).native_files[0]
    path.write_bytes(
        dump_json_bytes(
            {
                "theme": "dark",
                "env": {"ANTHROPIC_AUTH_TOKEN": "sk-ext-4444", "ANTHROPIC_BASE_URL": "https://ext"},
            }
        )
    )
    external = path.read_bytes()

    service.import_external_change(CLAUDE_CODE, path, as_new_name="N")
    service.switch_profile(CLAUDE_CODE, "N")

    assert path.read_bytes() == external


def test_deleted_native_file_is_pending_until_acknowledged(service: ReconciliationService) -> None:
    service.save_profile(CLAUDE_CODE, "work", WORK)
    service.switch_profile(CLAUDE_CODE, "work")
    settings_path = service.tools.get(CLAUDE_CODE).native_files[0]

    settings_path.unlink()
    found = service.check_for_changes(CLAUDE_CODE)

    assert [c.path for c in found] == [settings_path]
    assert found[0].fingerprint == MISSING_FINGERPRINT
    assert service.get_active_config(CLAUDE_CODE).profile_name is None

    assert service.acknowledge_change(CLAUDE_CODE) == 1
    assert service.check_for_changes(CLAUDE_CODE) == []

    settings_path.write_text(json.dumps({"env": {"ANTHROPIC_AUTH_TOKEN": "sk-new"}}), encoding="utf-8")

    assert len(service.check_for_changes(CLAUDE_CODE)) == 1

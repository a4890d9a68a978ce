from __future__ import annotations

import json
import os
import tarfile
from pathlib import Path

import pytest
import zstandard as zstd

from profile_engine import legacy_cleanup
from profile_engine.data_models import MigrationRecord
from profile_engine.errors import TpmError
from profile_engine.reconciliation.service import ReconciliationService
from profile_engine.tools import CLAUDE_CODE, CODEX, GEMINI_CLI, ToolRegistry


def _claude_backup(key: str) -> str:
    return json.dumps({"env": {"ANTHROPIC_AUTH_TOKEN": key, "ANTHROPIC_BASE_URL": "https://c"}})


@pytest.fixture
def legacy_home(home: Path) -> Path:
    (home / ".claude" / "settings.json").write_text("{}", encoding="utf-8")
    (home / ".claude" / "settings.local.json").write_text("{}", encoding="utf-8")
    (home / ".claude" / "settings.work.json").write_text(_claude_backup("sk-c-work"), encoding="utf-8")
    (home / ".claude" / "settings.json.tpm-tmp").write_text("{}", encoding="utf-8")
    (home / ".codex" / "config.work.toml").write_text(
        'model_provider = "work"\n\n[model_providers.work]\nbase_url = "https://x/v1"\n',
        encoding="utf-8",
    )
    (home / ".codex" / "auth.work.json").write_text(json.dumps({"OPENAI_API_KEY": "sk-x"}), encoding="utf-8")
    (home / ".codex" / "notes.txt").write_text("keep me", encoding="utf-8")
    (home / ".gemini" / ".env.work").write_text(
        "GEMINI_API_KEY=g\nGOOGLE_GEMINI_BASE_URL=https://g\n", encoding="utf-8"
    )
    (home / ".gemini" / "sub").mkdir()
    (home / ".gemini" / "sub" / ".env.nested").write_text("x", encoding="utf-8")
    return home


def test_scan_finds_only_legacy_backups(legacy_home: Path, registry: ToolRegistry) -> None:
    records = legacy_cleanup.scan(registry)

    found = {(r.tool_id, r.path.name, r.profile_name) for r in records}
    assert found == {
        (CLAUDE_CODE, "settings.work.json", "work"),
        (CODEX, "auth.work.json", "work"),
        (CODEX, "config.work.toml", "work"),
        (GEMINI_CLI, ".env.work", "work"),
    }
    assert all(r.size_bytes > 0 for r in records)


def test_scan_ignores_symlinks(legacy_home: Path, registry: ToolRegistry) -> None:
    target = legacy_home / "elsewhere.json"
    target.write_text("{}", encoding="utf-8")
    link = legacy_home / ".claude" / "settings.linked.json"
    try:
        os.symlink(target, link)
    except (OSError, NotImplementedError):
        pytest.skip("symlinks not available")

    names = {r.path.name for r in legacy_cleanup.scan(registry)}

    assert "settings.linked.json" not in names


def test_migrate_imports_each_profile_once(service: ReconciliationService, legacy_home: Path) -> None:
    outcomes = service.migrate_legacy(service.scan_legacy())

    assert {(o.tool_id, o.imported) for o in outcomes} == {
        (CLAUDE_CODE, True),
        (CODEX, True),
        (GEMINI_CLI, True),
    }
    codex = service.list_profiles(CODEX)
    assert [p.name for p in codex] == ["work"]
    assert codex[0].base_url == "https://x/v1"

    again = service.migrate_legacy(service.scan_legacy())
    assert not any(o.imported for o in again)


def test_clean_archives_then_deletes(
    service: ReconciliationService, legacy_home: Path, tmp_path: Path
) -> None:
    records = service.scan_legacy()
    archive = tmp_path / "legacy.tar.zst"

    outcomes = service.clean_legacy(records, archive_path=archive)

    assert all(o.removed for o in outcomes)
    assert service.scan_legacy() == []
    assert (legacy_home / ".claude" / "settings.local.json").exists()
    assert (legacy_home / ".codex" / "notes.txt").exists()

    with archive.open("rb") as raw:
        with zstd.ZstdDecompressor().stream_reader(raw) as reader:
            with tarfile.open(fileobj=reader, mode="r|") as tf:
                names = sorted(member.name for member in tf)
    assert names == [
        "claude-code/settings.work.json",
        "codex/auth.work.json",
        "codex/config.work.toml",
        "gemini-cli/.env.work",
    ]


def test_clean_refuses_existing_archive(
    service: ReconciliationService, legacy_home: Path, tmp_path: Path
) -> None:
    archive = tmp_path / "legacy.tar.zst"
    archive.write_bytes(b"occupied")
    records = service.scan_legacy()

    with pytest.raises(TpmError):
        service.clean_legacy(records, archive_path=archive)

    assert len(service.scan_legacy()) == len(records)


def test_clean_revalidates_each_record(
    service: ReconciliationService, legacy_home: Path, registry: ToolRegistry
) -> None:
    records = service.scan_legacy()
    gone = next(r for r in records if r.tool_id == GEMINI_CLI)
    gone.path.unlink()
    live = registry.get(CLAUDE_CODE).native_files[0]
    forged = [r for r in records if r is not gone]
    forged.append(
        MigrationRecord(
            tool_id=CLAUDE_CODE,
            path=live,
            profile_name="settings",
            size_bytes=2,
            modified_at=gone.modified_at,
            rule="settings.<profile>.json",
        )
    )

    outcomes = service.clean_legacy([gone, *forged])

    by_path = {o.record.path: o for o in outcomes}
    assert by_path[gone.path].removed is False
    assert by_path[live].removed is False
    assert by_path[live].error is not None
    assert live.exists()
    assert sum(o.removed for o in outcomes) == 3

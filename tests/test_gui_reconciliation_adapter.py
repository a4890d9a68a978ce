from __future__ import annotations

import json
from collections.abc import Iterator
from pathlib import Path

import pytest

QtCore = pytest.importorskip("PySide6.QtCore")

from gui.adapters.reconciliation_adapter import ReconciliationWorker  # noqa: E402
from profile_engine.data_models import Credentials  # noqa: E402


@pytest.fixture(scope="module")
def qt_app() -> object:
    return QtCore.QCoreApplication.instance() or QtCore.QCoreApplication([])


@pytest.fixture
def worker(qt_app: object, tmp_path: Path, home: Path) -> Iterator[ReconciliationWorker]:
    w = ReconciliationWorker(data_root=tmp_path / "data", home=home)
    yield w
    w.shutdown()


def test_worker_save_switch_and_list(worker: ReconciliationWorker) -> None:
    saved: list[tuple[str, object]] = []
    switched: list[tuple[str, object]] = []
    listed: list[tuple[str, object]] = []
    worker.profile_saved.connect(lambda tool, profile: saved.append((tool, profile)))
    worker.switched.connect(lambda tool, result: switched.append((tool, result)))
    worker.profiles_loaded.connect(lambda tool, items: listed.append((tool, items)))

    worker.save_profile("codex", "work", Credentials("sk-work-0001", "https://w"))
    worker.switch_profile("codex", "work")
    worker.list_profiles("codex")

    assert saved[0][0] == "codex"
    assert switched[0][1].active_config.profile_name == "work"
    assert [d.name for d in listed[0][1]] == ["work"]


def test_worker_reports_domain_errors(worker: ReconciliationWorker) -> None:
    errors: list[tuple[str, str]] = []
    worker.error.connect(lambda tool, message: errors.append((tool, message)))

    worker.switch_profile("codex", "missing")
    worker.save_profile("codex", "x", "not credentials")

    assert [tool for tool, _ in errors] == ["codex", "codex"]


def test_worker_import_without_profile_asks_for_name(worker: ReconciliationWorker, home: Path) -> None:
    asked: list[tuple[str, str]] = []
    imported: list[tuple[str, object]] = []
    worker.no_active_profile.connect(lambda tool, path: asked.append((tool, path)))
    worker.imported.connect(lambda tool, result: imported.append((tool, result)))
    settings = home / ".claude" / "settings.json"
    settings.write_text(
        json.dumps({"env": {"ANTHROPIC_AUTH_TOKEN": "hand", "ANTHROPIC_BASE_URL": "https://h"}}),
        encoding="utf-8",
    )

    worker.import_change("claude-code", str(settings), "")
    worker.import_change("claude-code", str(settings), "hand")

    assert asked == [("claude-code", str(settings))]
    assert imported[0][1].profile_name == "hand"

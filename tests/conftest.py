from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import Path

import pytest

from profile_engine.clock import SteppingClock
from profile_engine.reconciliation.engine import open_engine
from profile_engine.reconciliation.service import ReconciliationService
from profile_engine.tools import ToolRegistry

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def home(tmp_path: Path) -> Path:
    """A fake home directory with empty tool config directories."""
    root = tmp_path / "home"
    for name in (".claude", ".codex", ".gemini"):
        (root / name).mkdir(parents=True)
    return root


@pytest.fixture
def registry(home: Path) -> ToolRegistry:
    return ToolRegistry(home)


@pytest.fixture
def service(tmp_path: Path, home: Path) -> Iterator[ReconciliationService]:
    svc = open_engine(
        data_root=tmp_path / "data",
        home=home,
        clock=SteppingClock(start=T0),
        use_push=False,
    )
    yield svc
    svc.shutdown()

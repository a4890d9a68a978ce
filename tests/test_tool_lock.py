from __future__ import annotations

import threading
import time

import pytest

from profile_engine.tool_lock import ToolLockError, ToolLockRegistry


def test_try_hold_reports_busy_lock() -> None:
    locks = ToolLockRegistry()

    with locks.hold("codex"):
        assert locks.is_held("codex")
        with locks.try_hold("codex") as held:
            assert held is False
        with locks.try_hold("gemini-cli") as other:
            assert other is True

    assert not locks.is_held("codex")


def test_hold_times_out() -> None:
    locks = ToolLockRegistry()
    entered = threading.Event()
    release = threading.Event()

    def _holder() -> None:
        with locks.hold("codex"):
            entered.set()
            release.wait(5.0)

    thread = threading.Thread(target=_holder)
    thread.start()
    try:
        assert entered.wait(5.0)
        with pytest.raises(ToolLockError):
            with locks.hold("codex", timeout=0.05):
                pass
    finally:
        release.set()
        thread.join()


def test_hold_serializes_critical_sections() -> None:
    locks = ToolLockRegistry()
    inside = 0
    overlaps: list[int] = []

    def _work() -> None:
        nonlocal inside
        for _ in range(20):
            with locks.hold("claude-code"):
                inside += 1
                overlaps.append(inside)
                time.sleep(0.001)
                inside -= 1

    threads = [threading.Thread(target=_work) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert max(overlaps) == 1

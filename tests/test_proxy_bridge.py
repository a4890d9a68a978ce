from __future__ import annotations

import json
from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import Path

import pytest

from profile_engine.clock import SteppingClock
from profile_engine.data_models import Credentials, ProxySyncOutcome, ToolId
from profile_engine.errors import EngineStateIOError, ProxyUnavailableError, TpmError
from profile_engine.proxy import config_store as config_store_module
from profile_engine.proxy.config_store import DEFAULT_PORTS, ProxyConfigStore
from profile_engine.proxy.controller import InProcessProxyController
from profile_engine.reconciliation.engine import open_engine
from profile_engine.reconciliation.service import ReconciliationService
from profile_engine.tools import CLAUDE_CODE, CODEX, GEMINI_CLI

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
WORK = Credentials("sk-work-0001", "https://work.example")
HOME = Credentials("sk-home-0002", "https://home.example")


class _RejectingController(InProcessProxyController):
    def apply_live_config(self, tool_id: ToolId, credentials: Credentials) -> None:
        raise ProxyUnavailableError("upstream swap rejected")


def _engine(tmp_path: Path, home: Path, controller: InProcessProxyController) -> ReconciliationService:
    return open_engine(
        data_root=tmp_path / "data",
        home=home,
        clock=SteppingClock(start=T0),
        proxy_controller=controller,
        use_push=False,
    )


@pytest.fixture
def controller() -> InProcessProxyController:
    return InProcessProxyController()


@pytest.fixture
def proxied(tmp_path: Path, home: Path, controller: InProcessProxyController) -> Iterator[ReconciliationService]:
    svc = _engine(tmp_path, home, controller)
    yield svc
    svc.shutdown()


def _start_with(service: ReconciliationService, tool_id: ToolId, credentials: Credentials) -> None:
    service.update_proxy_config(
        tool_id, real_api_key=credentials.api_key, real_base_url=credentials.base_url
    )
    service.start_proxy(tool_id)


def test_default_config_per_tool(proxied: ReconciliationService) -> None:
    for tool_id in (CLAUDE_CODE, CODEX, GEMINI_CLI):
        config = proxied.get_proxy_config(tool_id)
        assert config.port == DEFAULT_PORTS[tool_id]
        assert config.enabled is False
        assert config.has_upstream() is False


def test_start_requires_upstream(proxied: ReconciliationService) -> None:
    with pytest.raises(ProxyUnavailableError):
        proxied.start_proxy(CLAUDE_CODE)
    assert proxied.proxy_status(CLAUDE_CODE).running is False


def test_switch_pushes_profile_into_running_proxy(
    proxied: ReconciliationService, controller: InProcessProxyController
) -> None:
    proxied.save_profile(CLAUDE_CODE, "work", WORK)
    proxied.save_profile(CLAUDE_CODE, "home", HOME)
    _start_with(proxied, CLAUDE_CODE, WORK)
    port_before = proxied.proxy_status(CLAUDE_CODE).port

    result = proxied.switch_profile(CLAUDE_CODE, "home")

    assert result.proxy_sync is ProxySyncOutcome.SYNCED
    assert controller.live_config(CLAUDE_CODE) == HOME
    assert controller.config_generation(CLAUDE_CODE) == 1
    assert proxied.proxy_status(CLAUDE_CODE).port == port_before
    config = proxied.get_proxy_config(CLAUDE_CODE)
    assert config.real_api_key == HOME.api_key
    assert config.real_profile_name == "home"


def test_switch_without_running_proxy_is_not_applicable(proxied: ReconciliationService) -> None:
    proxied.save_profile(CODEX, "work", WORK)

    result = proxied.switch_profile(CODEX, "work")

    assert result.proxy_sync is ProxySyncOutcome.NOT_APPLICABLE
    assert proxied.get_proxy_config(CODEX).real_profile_name is None


def test_proxy_failure_keeps_switch(tmp_path: Path, home: Path) -> None:
    controller = _RejectingController()
    service = _engine(tmp_path, home, controller)
    try:
        service.save_profile(CLAUDE_CODE, "work", WORK)
        service.save_profile(CLAUDE_CODE, "home", HOME)
        _start_with(service, CLAUDE_CODE, WORK)

        result = service.switch_profile(CLAUDE_CODE, "home")

        assert result.proxy_sync is ProxySyncOutcome.FAILED
        assert result.proxy_message is not None
        assert result.proxy_message.startswith("Profile switched, proxy sync failed")
        assert result.active_config.profile_name == "home"
        assert controller.live_config(CLAUDE_CODE) == WORK
        assert service.get_proxy_config(CLAUDE_CODE).real_api_key == WORK.api_key
    finally:
        service.shutdown()


def test_unwritable_proxy_record_keeps_switch(
    proxied: ReconciliationService,
    controller: InProcessProxyController,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    proxied.save_profile(CLAUDE_CODE, "work", WORK)
    proxied.save_profile(CLAUDE_CODE, "home", HOME)
    _start_with(proxied, CLAUDE_CODE, WORK)

    def _deny(path: Path, payload: object) -> None:
        raise PermissionError(13, "Permission denied", str(path))

    monkeypatch.setattr(config_store_module, "write_json_atomic", _deny)

    result = proxied.switch_profile(CLAUDE_CODE, "home")

    assert result.proxy_sync is ProxySyncOutcome.FAILED
    assert result.proxy_message is not None
    assert "Permission denied" in result.proxy_message
    assert result.active_config.profile_name == "home"
    assert controller.live_config(CLAUDE_CODE) == WORK
    assert proxied.get_proxy_config(CLAUDE_CODE).real_api_key == WORK.api_key


def test_proxy_settings_write_failure_is_domain_error(
    proxied: ReconciliationService, monkeypatch: pytest.MonkeyPatch
) -> None:
    _start_with(proxied, CODEX, WORK)

    def _deny(path: Path, payload: object) -> None:
        raise PermissionError(13, "Permission denied", str(path))

    monkeypatch.setattr(config_store_module, "write_json_atomic", _deny)

    with pytest.raises(EngineStateIOError):
        proxied.update_proxy_config(CODEX, port=9200)
    with pytest.raises(EngineStateIOError):
        proxied.stop_proxy(CODEX)


def test_stop_disables_and_update_from_profile(
    proxied: ReconciliationService, controller: InProcessProxyController
) -> None:
    proxied.save_profile(GEMINI_CLI, "work", WORK)
    proxied.save_profile(GEMINI_CLI, "home", HOME)
    _start_with(proxied, GEMINI_CLI, WORK)

    proxied.update_proxy_from_profile(GEMINI_CLI, "home")
    assert controller.live_config(GEMINI_CLI) == HOME

    assert proxied.stop_proxy(GEMINI_CLI) is True
    assert proxied.stop_proxy(GEMINI_CLI) is False
    assert proxied.get_proxy_config(GEMINI_CLI).enabled is False


def test_upstream_edit_is_hot_applied(
    proxied: ReconciliationService, controller: InProcessProxyController
) -> None:
    _start_with(proxied, CODEX, WORK)

    proxied.update_proxy_config(CODEX, real_api_key="sk-edited-5555")

    assert controller.live_config(CODEX).api_key == "sk-edited-5555"


def test_auto_start_on_service_start(tmp_path: Path, home: Path) -> None:
    first = _engine(tmp_path, home, InProcessProxyController())
    first.update_proxy_config(
        CODEX, real_api_key=WORK.api_key, real_base_url=WORK.base_url, auto_start=True
    )
    first.update_proxy_config(CLAUDE_CODE, auto_start=True)
    first.shutdown()

    controller = InProcessProxyController()
    second = _engine(tmp_path, home, controller)
    second.update_watch_settings(enabled=False)
    try:
        second.start()
        assert controller.status(CODEX).running is True
        assert controller.status(CLAUDE_CODE).running is False
    finally:
        second.shutdown()


def test_config_store_validation(tmp_path: Path) -> None:
    store = ProxyConfigStore(tmp_path / "proxy.json")

    with pytest.raises(TpmError):
        store.update(CODEX, port=70000)
    with pytest.raises(TpmError):
        store.update(CODEX, listen_everywhere=True)

    store.update(CODEX, port=9100, allow_public=True)
    payload = json.loads((tmp_path / "proxy.json").read_text(encoding="utf-8"))
    assert payload["tools"][CODEX]["port"] == 9100
    assert ProxyConfigStore(tmp_path / "proxy.json").get(CODEX).allow_public is True


def test_unreadable_config_falls_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "proxy.json"
    path.write_text("{not json", encoding="utf-8")

    assert ProxyConfigStore(path).get(CODEX).port == DEFAULT_PORTS[CODEX]

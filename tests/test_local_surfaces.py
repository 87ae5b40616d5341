import asyncio
import importlib
import json

import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, MagicMock, patch

from kioskwatch.network import ws_local
from kioskwatch.services.errors import ConfigFetchError
from kioskwatch.services.models import AppTarget, KioskFlag, RemoteConfig, UrlTarget
from kioskwatch.setup_wizard import app as wizard_module

# the package re-exports the FastAPI instance under the module name
panel_module = importlib.import_module("kioskwatch.status_panel.app")


# ==================== Status Panel ====================

@pytest.fixture
def panel(store):
    with patch.object(panel_module, "get_local_store", return_value=store):
        yield TestClient(panel_module.app)


def test_panel_health(panel):
    assert panel.get("/health").json() == {"status": "ok"}


def test_panel_status_before_first_cycle(panel):
    assert panel.get("/api/status").json() == {"kiosk": None, "pending_sync_count": 0}


def test_panel_status_shows_snapshot(panel, store):
    store.save_status_snapshot({"device_id": "dev-1", "last_flag": "enabled"})
    store.log_activity("kiosk_mode_changed", "completed")

    body = panel.get("/api/status").json()

    assert body["kiosk"]["last_flag"] == "enabled"
    assert body["pending_sync_count"] == 1


def test_panel_activity_limit(panel, store):
    for i in range(3):
        store.log_activity("relaunch", "failed", str(i))

    logs = panel.get("/api/activity", params={"limit": 2}).json()["logs"]

    assert [log["details"] for log in logs] == ["2", "1"]


def test_panel_page_renders(panel, store):
    store.save_status_snapshot({"device_id": "dev-1", "last_flag": "enabled", "target": "url:https://a.example.com"})

    response = panel.get("/")

    assert response.status_code == 200
    assert "dev-1" in response.text
    assert "url:https://a.example.com" in response.text


# ==================== Setup Wizard ====================

@pytest.fixture
def wizard(store, tmp_path):
    wizard_module.app.state.secrets_path = tmp_path / "secrets.env"
    wizard_module.app.state.shutdown_enabled = False
    with patch.object(wizard_module, "get_local_store", return_value=store):
        yield TestClient(wizard_module.app)


def test_wizard_requires_api_key(wizard):
    response = wizard.post("/manual", json={"base_url": "https://kiosk.example.com/api/v1"})

    assert response.status_code == 400


def test_wizard_saves_verified_credentials(wizard, store, tmp_path):
    config = RemoteConfig(flag=KioskFlag.ENABLED, target=UrlTarget("https://board.example.com"))
    with patch.object(wizard_module.KioskApiClient, "fetch_config", return_value=config) as fetch:
        response = wizard.post("/manual", json={
            "base_url": "https://kiosk.example.com/api/v1",
            "api_key": "secret",
            "device_id": "front-desk"
        })

    assert response.status_code == 200
    assert response.json()["kiosk_mode"] == "enabled"
    fetch.assert_called_once_with("front-desk")
    secrets = (tmp_path / "secrets.env").read_text()
    assert "KIOSK_API_KEY=secret" in secrets
    assert "KIOSK_DEVICE_ID=front-desk" in secrets
    assert store.get_cached_target() == UrlTarget("https://board.example.com")


def test_wizard_rejects_bad_credentials(wizard, tmp_path):
    with patch.object(wizard_module.KioskApiClient, "fetch_config",
                      side_effect=ConfigFetchError("401 Unauthorized")):
        response = wizard.post("/manual", json={"api_key": "wrong", "device_id": "front-desk"})

    assert response.status_code == 502
    assert not (tmp_path / "secrets.env").exists()


def test_wizard_upload_requires_json_file(wizard):
    response = wizard.post("/upload", files={"file": ("creds.txt", b"api_key=x", "text/plain")})

    assert response.status_code == 400


def test_wizard_local_backend_skips_ssl_verification():
    assert wizard_module._should_verify_ssl("https://kiosk.example.com") is True
    assert wizard_module._should_verify_ssl("https://localhost:8443") is False


# ==================== Local WebSocket Bridge ====================

def test_bridge_answers_ping_and_status(store):
    store.save_status_snapshot({"last_flag": "disabled"})
    websocket = MagicMock()
    websocket.send = AsyncMock()

    asyncio.run(ws_local.handle_message(websocket, json.dumps({"type": "ping", "timestamp": 7}), store))
    asyncio.run(ws_local.handle_message(websocket, json.dumps({"type": "get_status"}), store))

    pong = json.loads(websocket.send.await_args_list[0][0][0])
    status = json.loads(websocket.send.await_args_list[1][0][0])
    assert pong == {"type": "pong", "timestamp": 7}
    assert status["data"]["kiosk"] == {"last_flag": "disabled"}


def test_bridge_recent_logs_and_errors(store):
    store.log_activity("relaunch", "completed")
    websocket = MagicMock()
    websocket.send = AsyncMock()

    asyncio.run(ws_local.handle_message(websocket, json.dumps({"type": "get_recent_logs", "limit": 5}), store))
    asyncio.run(ws_local.handle_message(websocket, "{not json", store))

    logs = json.loads(websocket.send.await_args_list[0][0][0])
    error = json.loads(websocket.send.await_args_list[1][0][0])
    assert logs["type"] == "recent_logs"
    assert logs["logs"][0]["event_type"] == "relaunch"
    assert error["type"] == "error"


def test_wizard_uses_form_target_when_server_has_none(wizard, store):
    config = RemoteConfig(flag=KioskFlag.DISABLED, target=None)
    with patch.object(wizard_module.KioskApiClient, "fetch_config", return_value=config):
        response = wizard.post("/manual", json={
            "api_key": "secret",
            "device_id": "front-desk",
            "target": "kiosk-app"
        })

    assert response.json()["target"] == "app:kiosk-app"
    assert store.get_cached_target() == AppTarget("kiosk-app")

import asyncio

import aiohttp
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from kioskwatch.services.sync_manager import SyncManager


def mock_session(status=200, body=None, post_error=None):
    response = MagicMock(status=status)
    response.json = AsyncMock(return_value=body or {})
    response.text = AsyncMock(return_value="server error")

    post_cm = MagicMock()
    post_cm.__aenter__ = AsyncMock(return_value=response)
    post_cm.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    if post_error:
        session.post.side_effect = post_error
    else:
        session.post.return_value = post_cm

    session_cm = MagicMock()
    session_cm.__aenter__ = AsyncMock(return_value=session)
    session_cm.__aexit__ = AsyncMock(return_value=False)
    return session_cm, session


@pytest.fixture
def manager(store):
    return SyncManager("https://kiosk.example.com/api/v1", "secret", "dev-1", store=store)


def run_sync(manager, session_cm):
    with patch("kioskwatch.services.sync_manager.aiohttp.ClientSession", return_value=session_cm), \
            patch("kioskwatch.services.sync_manager.aiohttp.TCPConnector"):
        return asyncio.run(manager.sync_activity_logs())


def test_nothing_pending_makes_no_request(manager):
    session_cm, session = mock_session()

    assert run_sync(manager, session_cm) == {"status": "success", "synced_count": 0}
    session.post.assert_not_called()


def test_pending_logs_uploaded_and_marked(manager, store):
    store.log_activity("kiosk_mode_changed", "completed", "unknown -> enabled")
    store.log_activity("relaunch", "failed", "app:kiosk-app")
    session_cm, session = mock_session(body={"synced_count": 2})

    result = run_sync(manager, session_cm)

    assert result == {"status": "success", "synced_count": 2}
    assert store.get_pending_count() == 0
    args, kwargs = session.post.call_args
    assert args[0] == "https://kiosk.example.com/api/v1/edge/activity-sync"
    assert kwargs["headers"]["X-KIOSK-API-KEY"] == "secret"
    assert kwargs["json"]["device_id"] == "dev-1"
    assert [log["event_type"] for log in kwargs["json"]["logs"]] == ["kiosk_mode_changed", "relaunch"]


def test_server_error_keeps_logs_pending(manager, store):
    store.log_activity("relaunch", "failed")
    session_cm, _ = mock_session(status=500)

    assert run_sync(manager, session_cm) == {"status": "error", "reason": "HTTP 500"}
    assert store.get_pending_count() == 1


def test_connection_error_keeps_logs_pending(manager, store):
    store.log_activity("relaunch", "failed")
    session_cm, _ = mock_session(post_error=aiohttp.ClientConnectionError("refused"))

    result = run_sync(manager, session_cm)

    assert result["status"] == "error"
    assert store.get_pending_count() == 1
    assert manager.is_syncing is False


def test_concurrent_sync_is_skipped(manager):
    manager.is_syncing = True

    assert asyncio.run(manager.sync_activity_logs()) == {"status": "skipped", "reason": "sync_in_progress"}

import pytest
import requests
from unittest.mock import MagicMock

from kioskwatch.services.api_client import KioskApiClient
from kioskwatch.services.errors import ConfigFetchError
from kioskwatch.services.models import AppTarget, KioskFlag, UrlTarget


def make_client(payload=None, get_error=None):
    session = MagicMock()
    session.headers = {}
    response = MagicMock()
    response.json.return_value = payload
    if get_error:
        session.get.side_effect = get_error
    else:
        session.get.return_value = response
    client = KioskApiClient("https://kiosk.example.com/api/v1/", "secret", session=session)
    return client, session, response


def success(**data):
    return {"status": "success", "data": data}


def test_request_shape():
    client, session, _ = make_client(success(kiosk_mode=True))

    client.fetch_config("dev-1")

    session.get.assert_called_once_with(
        "https://kiosk.example.com/api/v1/edge/devices/dev-1/kiosk", timeout=10
    )
    assert session.headers["X-KIOSK-API-KEY"] == "secret"


def test_enabled_with_url_target():
    client, _, _ = make_client(success(kiosk_mode=True, pwa_url="https://board.example.com"))

    config = client.fetch_config("dev-1")

    assert config.flag is KioskFlag.ENABLED
    assert config.target == UrlTarget("https://board.example.com")


def test_pwa_url_wins_over_package():
    client, _, _ = make_client(success(
        kiosk_mode=True, target_package="kiosk-app", pwa_url="https://board.example.com"
    ))

    assert client.fetch_target("dev-1") == UrlTarget("https://board.example.com")


def test_app_target_from_package():
    client, _, _ = make_client(success(kiosk_mode=False, target_package="kiosk-app", pwa_url=""))

    config = client.fetch_config("dev-1")

    assert config.flag is KioskFlag.DISABLED
    assert config.target == AppTarget("kiosk-app")


@pytest.mark.parametrize("kiosk_mode, expected", [
    (None, KioskFlag.DISABLED),
    (False, KioskFlag.DISABLED),
    (True, KioskFlag.ENABLED),
    ("true", KioskFlag.ENABLED),
])
def test_flag_parsing(kiosk_mode, expected):
    client, _, _ = make_client(success(kiosk_mode=kiosk_mode))

    assert client.fetch_flag("dev-1") is expected


def test_no_target_configured():
    client, _, _ = make_client(success(kiosk_mode=True, target_package=None, pwa_url=None))

    assert client.fetch_target("dev-1") is None


def test_network_error_raises():
    client, _, _ = make_client(get_error=requests.exceptions.ConnectionError("refused"))

    with pytest.raises(ConfigFetchError):
        client.fetch_config("dev-1")


def test_http_error_raises():
    client, _, response = make_client(success(kiosk_mode=True))
    response.raise_for_status.side_effect = requests.exceptions.HTTPError("401")

    with pytest.raises(ConfigFetchError):
        client.fetch_config("dev-1")


def test_invalid_json_raises():
    client, _, response = make_client()
    response.json.side_effect = ValueError("Expecting value")

    with pytest.raises(ConfigFetchError):
        client.fetch_config("dev-1")


def test_backend_error_status_raises():
    client, _, _ = make_client({"status": "error", "message": "Device not found"})

    with pytest.raises(ConfigFetchError, match="Device not found"):
        client.fetch_config("dev-1")


def test_heartbeat_reports_status():
    client, session, _ = make_client()

    assert client.heartbeat("dev-1", {"last_flag": "enabled"}) is True
    _, kwargs = session.post.call_args
    assert kwargs["json"]["device_id"] == "dev-1"
    assert kwargs["json"]["kiosk"] == {"last_flag": "enabled"}


def test_heartbeat_failure_returns_false():
    client, session, _ = make_client()
    session.post.side_effect = requests.exceptions.Timeout("slow")

    assert client.heartbeat("dev-1") is False

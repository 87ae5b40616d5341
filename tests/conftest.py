import pytest
from unittest.mock import MagicMock

from kioskwatch.services.local_store import LocalStore
from kioskwatch.services.models import AppTarget, UrlTarget


class SleepRecorder:
    """Stands in for time.sleep / Event.wait and remembers every delay."""

    def __init__(self, on_sleep=None):
        self.calls = []
        self.on_sleep = on_sleep

    def __call__(self, seconds):
        self.calls.append(seconds)
        if self.on_sleep:
            self.on_sleep(len(self.calls))


@pytest.fixture
def store(tmp_path):
    return LocalStore(tmp_path / "kiosk.db")


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def app_target():
    return AppTarget("kiosk-app")


@pytest.fixture
def url_target():
    return UrlTarget("https://kiosk.example.com/board")


@pytest.fixture
def probe():
    probe = MagicMock()
    probe.is_frontmost.return_value = True
    return probe


@pytest.fixture
def launcher():
    launcher = MagicMock()
    launcher.bring_to_front.return_value = True
    return launcher


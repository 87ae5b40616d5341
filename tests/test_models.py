import pytest

from kioskwatch.services.models import (
    AppTarget,
    EnforcementSession,
    KioskFlag,
    UrlTarget,
    parse_target,
    target_to_string,
)


@pytest.mark.parametrize("raw, expected", [
    ("https://kiosk.example.com/board", UrlTarget("https://kiosk.example.com/board")),
    ("http://10.0.0.5:8080", UrlTarget("http://10.0.0.5:8080")),
    ("  firefox  ", AppTarget("firefox")),
    ("org.example.Kiosk.desktop", AppTarget("org.example.Kiosk.desktop")),
    ("", None),
    ("   ", None),
    (None, None),
])
def test_parse_target(raw, expected):
    assert parse_target(raw) == expected


def test_target_string_form():
    assert target_to_string(UrlTarget("https://a.example.com")) == "https://a.example.com"
    assert target_to_string(AppTarget("kiosk-app")) == "kiosk-app"
    with pytest.raises(TypeError):
        target_to_string("kiosk-app")


def test_describe():
    assert AppTarget("kiosk-app").describe() == "app:kiosk-app"
    assert UrlTarget("https://a.example.com").describe() == "url:https://a.example.com"


def test_new_session_starts_unknown():
    session = EnforcementSession()

    assert session.last_flag is KioskFlag.UNKNOWN
    assert session.consecutive_errors == 0
    assert session.consecutive_relaunch_failures == 0

import pytest
from unittest.mock import MagicMock

from kioskwatch.services.bootstrap import BootResult, BootstrapSequencer
from kioskwatch.services.errors import ConfigFetchError


@pytest.fixture
def client():
    client = MagicMock()
    client.fetch_target.return_value = None
    return client


@pytest.fixture
def gate():
    gate = MagicMock()
    gate.is_reachable.return_value = True
    return gate


def make_sequencer(client, store, gate, launcher, sleeper, **kwargs):
    return BootstrapSequencer(
        client=client,
        device_id="dev-1",
        store=store,
        gate=gate,
        launcher=launcher,
        sleep=sleeper,
        **kwargs
    )


def test_launches_after_network_comes_up(client, store, gate, launcher, sleeper, url_target):
    store.save_cached_target(url_target)
    gate.is_reachable.side_effect = [False] * 10 + [True]
    sequencer = make_sequencer(client, store, gate, launcher, sleeper)

    result = sequencer.run()

    assert result is BootResult.LAUNCHED
    assert sequencer.attempts == 11
    launcher.bring_to_front.assert_called_once_with(url_target)
    # settle, ten retries, pre-launch pause, confirmation pause
    assert sleeper.calls == [15.0] + [10.0] * 10 + [0.5, 2.0]


def test_no_target_stops_before_retry_loop(client, store, gate, launcher, sleeper):
    sequencer = make_sequencer(client, store, gate, launcher, sleeper)

    assert sequencer.run() is BootResult.NO_TARGET
    gate.is_reachable.assert_not_called()
    launcher.bring_to_front.assert_not_called()
    assert sleeper.calls == [15.0]


def test_fetch_error_counts_as_no_target(client, store, gate, launcher, sleeper):
    client.fetch_target.side_effect = ConfigFetchError("offline")
    sequencer = make_sequencer(client, store, gate, launcher, sleeper)

    assert sequencer.run() is BootResult.NO_TARGET
    gate.is_reachable.assert_not_called()


def test_remote_target_is_cached(client, store, gate, launcher, sleeper, app_target):
    client.fetch_target.return_value = app_target
    sequencer = make_sequencer(client, store, gate, launcher, sleeper)

    assert sequencer.run() is BootResult.LAUNCHED
    assert store.get_cached_target() == app_target
    client.fetch_target.assert_called_once_with("dev-1")


def test_cached_target_skips_backend(client, store, gate, launcher, sleeper, app_target):
    store.save_cached_target(app_target)
    sequencer = make_sequencer(client, store, gate, launcher, sleeper)

    sequencer.run()

    client.fetch_target.assert_not_called()


def test_failed_launch_is_retried(client, store, gate, launcher, sleeper, app_target):
    store.save_cached_target(app_target)
    launcher.bring_to_front.side_effect = [False, False, True]
    sequencer = make_sequencer(client, store, gate, launcher, sleeper)

    assert sequencer.run() is BootResult.LAUNCHED
    assert sequencer.attempts == 3
    assert sleeper.calls.count(10.0) == 2


def test_gives_up_after_max_attempts(client, store, gate, launcher, sleeper, app_target):
    store.save_cached_target(app_target)
    gate.is_reachable.return_value = False
    sequencer = make_sequencer(client, store, gate, launcher, sleeper, max_attempts=4)

    assert sequencer.run() is BootResult.EXHAUSTED
    assert sequencer.attempts == 4
    launcher.bring_to_front.assert_not_called()
    assert [log["status"] for log in store.get_pending_logs()] == ["failed"]


def test_stop_event_ends_sequence(client, store, gate, launcher, sleeper, app_target):
    store.save_cached_target(app_target)
    gate.is_reachable.return_value = False
    sequencer = make_sequencer(client, store, gate, launcher, sleeper)
    sleeper.on_sleep = lambda count: sequencer.stop_event.set() if count == 3 else None

    assert sequencer.run() is BootResult.STOPPED
    assert sequencer.attempts == 2

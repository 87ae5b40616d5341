"""
enforcement.py - Kiosk Enforcement Engine

This module runs the supervisory loop that keeps the configured target in
the foreground while the remote kiosk_mode flag is on.

One cycle is: poll the backend, check/enforce the foreground, compute the
next delay, sleep. Poll failures never change the last known flag; the
engine keeps enforcing the last good value instead of dropping out of kiosk
mode on a flaky network.
"""

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional

from .errors import ConfigFetchError, OverlayStartFailure, ResolutionFailure
from .models import (
    AppTarget,
    EngineState,
    EnforcementSession,
    KioskFlag,
    Target,
    UrlTarget,
)

logger = logging.getLogger("Enforcement")

CHECK_INTERVAL = 0.5          # kiosk on: react fast to the target losing focus
BACKGROUND_INTERVAL = 3.0     # kiosk off: nothing to enforce
PENALTY_INTERVAL = 6.0        # after too many consecutive poll failures
MAX_CONSECUTIVE_ERRORS = 5
RELAUNCH_PAUSES = (0.3, 0.5)  # pauses between the launch attempts of one burst


class EnforcementEngine:
    """
    Polls the remote flag and enforces the target while it is ENABLED.

    Collaborators:
        client:   fetch_config(device_id) -> RemoteConfig, raises ConfigFetchError
        store:    get_cached_target(), save_cached_target(), log_activity(),
                  save_status_snapshot()
        probe:    is_frontmost(target) -> bool
        launcher: bring_to_front(target) -> bool
        overlay:  start(enabled), stop()   (optional)
    """

    def __init__(
        self,
        client,
        device_id: str,
        store,
        probe,
        launcher,
        overlay=None,
        check_interval: float = CHECK_INTERVAL,
        background_interval: float = BACKGROUND_INTERVAL,
        penalty_interval: float = PENALTY_INTERVAL,
        max_consecutive_errors: int = MAX_CONSECUTIVE_ERRORS,
        relaunch_pauses=RELAUNCH_PAUSES,
        sleep: Optional[Callable[[float], None]] = None,
        status_sink: Optional[Callable[[dict], None]] = None,
    ):
        if penalty_interval <= background_interval:
            raise ValueError("penalty_interval must be longer than background_interval")

        self.client = client
        self.device_id = device_id
        self.store = store
        self.probe = probe
        self.launcher = launcher
        self.overlay = overlay

        self.check_interval = check_interval
        self.background_interval = background_interval
        self.penalty_interval = penalty_interval
        self.max_consecutive_errors = max_consecutive_errors
        self.relaunch_pauses = tuple(relaunch_pauses)

        self._stop_event = threading.Event()
        self._sleep = sleep or self._wait
        self._status_sink = status_sink if status_sink is not None else store.save_status_snapshot
        self._thread: Optional[threading.Thread] = None
        self._on_state_change_callbacks: List[Callable] = []
        self._on_teardown_callbacks: List[Callable] = []

        self.session = EnforcementSession()

    # ==================== Lifecycle ====================

    def start(self) -> bool:
        """Runs the loop on a background thread. Returns False if already running."""
        if self.is_running():
            logger.info("Enforcement loop already running")
            return False
        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run, name="kiosk-enforcement", daemon=True)
        self._thread.start()
        return True

    def run(self):
        """Blocks running cycles until stop() is called."""
        self.session = EnforcementSession()
        self._set_state(EngineState.POLLING, "Loop started")
        logger.info(f"Enforcement loop started for device: {self.device_id}")

        while not self._stop_event.is_set():
            try:
                delay = self.run_cycle()
            except Exception as e:
                # Unexpected failures are handled like a failed poll
                self.session.consecutive_errors += 1
                logger.exception(
                    f"Enforcement cycle error "
                    f"({self.session.consecutive_errors}/{self.max_consecutive_errors}): {e}"
                )
                delay = self.next_delay()
            self._sleep(delay)

        self._set_state(EngineState.IDLE, "Loop stopped")
        logger.info("Enforcement loop stopped")

    def stop(self, timeout: Optional[float] = None):
        self._stop_event.set()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def teardown(self):
        """
        Called by the host when the process is going away. Stops the loop and
        hands the last known flag to the teardown callbacks (the watchdog
        decides whether a replacement must be started).
        """
        last_flag = self.session.last_flag
        logger.warning(f"Enforcement engine torn down (last flag: {last_flag.value})")
        self.stop(timeout=2)
        for callback in self._on_teardown_callbacks:
            try:
                callback(last_flag)
            except Exception as e:
                logger.error(f"Teardown callback error: {e}")

    # ==================== One Cycle ====================

    def run_cycle(self) -> float:
        """Poll, enforce, compute delay. Returns the delay before the next cycle."""
        session = self.session
        session.cycles += 1

        applied = self.poll()

        # apply_enforcement() already launched this cycle
        if session.last_flag is KioskFlag.ENABLED and not applied:
            self.enforce_once()

        delay = self.next_delay()
        self._publish_status(delay)
        return delay

    def poll(self) -> bool:
        """
        Polls the backend and fires transition actions.
        Returns True when apply-enforcement ran during this poll.
        """
        session = self.session
        try:
            config = self.client.fetch_config(self.device_id)
        except ConfigFetchError as e:
            session.consecutive_errors += 1
            session.last_observation = KioskFlag.UNKNOWN
            logger.warning(
                f"Kiosk mode poll failed "
                f"({session.consecutive_errors}/{self.max_consecutive_errors}), "
                f"keeping last flag {session.last_flag.value}: {e}"
            )
            return False

        session.consecutive_errors = 0
        session.last_observation = config.flag

        if config.target is not None:
            self._cache_target(config.target)

        if config.flag is session.last_flag:
            return False

        previous = session.last_flag
        logger.info(f"Kiosk mode changed: {previous.value} -> {config.flag.value}")
        self._log_activity("kiosk_mode_changed", "completed", f"{previous.value} -> {config.flag.value}")

        if config.flag is KioskFlag.ENABLED:
            self.apply_enforcement()
            session.last_flag = KioskFlag.ENABLED
            self._set_state(EngineState.ENFORCING_ON, "Kiosk mode enabled")
            return True

        self.remove_enforcement()
        session.last_flag = config.flag
        return False

    def next_delay(self) -> float:
        session = self.session
        if session.consecutive_errors >= self.max_consecutive_errors:
            logger.warning(
                f"{session.consecutive_errors} consecutive errors, "
                f"backing off for {self.penalty_interval}s"
            )
            session.consecutive_errors = 0
            return self.penalty_interval
        if session.last_flag is KioskFlag.ENABLED:
            return self.check_interval
        return self.background_interval

    # ==================== Transition Actions ====================

    def apply_enforcement(self):
        """Launches the target once and starts the gesture overlay."""
        try:
            target = self.resolve_target()
        except ResolutionFailure as e:
            logger.warning(f"Cannot apply kiosk mode: {e}")
            self._log_activity("kiosk_apply", "failed", str(e))
            return

        logger.info(f"Applying kiosk mode for: {target.describe()}")
        if isinstance(target, UrlTarget):
            launched = self.launcher.bring_to_front(target)
        elif isinstance(target, AppTarget):
            if self.probe.is_frontmost(target):
                logger.info("Target already in front")
                launched = True
            else:
                launched = self.launcher.bring_to_front(target)
        else:
            raise TypeError(f"Unsupported target type: {type(target).__name__}")

        if not launched:
            logger.warning(f"Initial launch of {target.describe()} failed; enforcement will retry")
        self._log_activity("kiosk_apply", "completed" if launched else "failed", target.describe())

        if self.overlay is not None:
            try:
                self.overlay.start(enabled=True)
            except OverlayStartFailure as e:
                logger.warning(f"Overlay not started: {e}")
            except Exception as e:
                logger.warning(f"Overlay not started (unexpected error): {e}")

    def remove_enforcement(self):
        """Stops the gesture overlay. The target is left as it is."""
        self._set_state(EngineState.DISABLING, "Kiosk mode disabled")
        if self.overlay is not None:
            try:
                self.overlay.stop()
            except Exception as e:
                logger.warning(f"Error removing overlay: {e}")
        self._log_activity("kiosk_remove", "completed")
        self._set_state(EngineState.POLLING, "Enforcement removed")

    # ==================== Foreground Enforcement ====================

    def enforce_once(self) -> bool:
        """
        Checks the target once and runs a relaunch burst if it is not in front.
        Returns True if the target is (or became) frontmost.
        """
        session = self.session
        try:
            target = self.resolve_target()
        except ResolutionFailure as e:
            logger.warning(f"Skipping enforcement check: {e}")
            return False

        if self.probe.is_frontmost(target):
            if session.consecutive_relaunch_failures:
                logger.info(
                    f"Target back in front after {session.consecutive_relaunch_failures} failed checks"
                )
            session.consecutive_relaunch_failures = 0
            return True

        session.consecutive_relaunch_failures += 1
        logger.warning(
            f"Target not in front, relaunching {target.describe()} "
            f"(failure {session.consecutive_relaunch_failures})"
        )
        return self._relaunch_burst(target)

    def _relaunch_burst(self, target: Target) -> bool:
        attempts = len(self.relaunch_pauses) + 1
        for attempt in range(1, attempts + 1):
            if not self.launcher.bring_to_front(target):
                logger.warning(f"Launch attempt {attempt}/{attempts} failed")
            if attempt == attempts:
                break

            self._sleep(self.relaunch_pauses[attempt - 1])
            if self._stop_event.is_set():
                break
            if self.probe.is_frontmost(target):
                logger.info(f"Target in front after attempt {attempt}")
                self.session.consecutive_relaunch_failures = 0
                self._log_activity("relaunch", "completed", f"{target.describe()} attempt {attempt}")
                return True

        self._log_activity("relaunch", "failed", target.describe())
        return False

    def resolve_target(self) -> Target:
        try:
            target = self.store.get_cached_target()
        except Exception as e:
            raise ResolutionFailure(f"Local config unreadable: {e}") from e
        if target is None:
            raise ResolutionFailure("No app or URL configured")
        return target

    # ==================== Status ====================

    def on_state_change(self, callback: Callable):
        """
        Register a callback for state changes.

        Callback signature: (old_state: EngineState, new_state: EngineState, reason: str)
        """
        self._on_state_change_callbacks.append(callback)

    def on_teardown(self, callback: Callable):
        """
        Register a callback run by teardown().

        Callback signature: (last_flag: KioskFlag)
        """
        self._on_teardown_callbacks.append(callback)

    def get_status(self, next_delay: Optional[float] = None) -> dict:
        session = self.session
        try:
            target = self.store.get_cached_target()
        except Exception:
            target = None
        return {
            "device_id": self.device_id,
            "state": session.state.value,
            "last_flag": session.last_flag.value,
            "last_observation": session.last_observation.value,
            "consecutive_errors": session.consecutive_errors,
            "consecutive_relaunch_failures": session.consecutive_relaunch_failures,
            "cycles": session.cycles,
            "target": target.describe() if target else None,
            "next_delay": next_delay,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }

    def _set_state(self, new_state: EngineState, reason: str = ""):
        old_state = self.session.state
        if new_state is old_state:
            return
        self.session.state = new_state
        logger.debug(f"State: {old_state.value} -> {new_state.value} | {reason}")
        for callback in self._on_state_change_callbacks:
            try:
                callback(old_state, new_state, reason)
            except Exception as e:
                logger.error(f"State change callback error: {e}")

    def _publish_status(self, delay: float):
        try:
            self._status_sink(self.get_status(next_delay=delay))
        except Exception as e:
            logger.debug(f"Status publish failed: {e}")

    def _cache_target(self, target: Target):
        try:
            self.store.save_cached_target(target)
        except Exception as e:
            logger.warning(f"Could not cache target {target.describe()}: {e}")

    def _log_activity(self, event_type, status, details=None):
        try:
            self.store.log_activity(event_type, status, details)
        except Exception as e:
            logger.debug(f"Activity log failed: {e}")

    def _wait(self, seconds: float):
        self._stop_event.wait(seconds)


def run_single_cycle(engine: EnforcementEngine) -> float:
    """Runs one cycle outside the loop (used by `main.py --once`)."""
    started = time.monotonic()
    delay = engine.run_cycle()
    logger.info(f"Cycle finished in {time.monotonic() - started:.2f}s, next delay {delay}s")
    return delay

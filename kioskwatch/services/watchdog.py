"""
watchdog.py - Restart contract for the enforcement loop

The loop has to come back after the hosting process is killed. Three
triggers re-evaluate it: the process being torn down, the agent package
being replaced or restarted, and a periodic wake-up from an external
scheduler. Every trigger re-polls the flag first; nothing is restarted
unless kiosk mode is currently ENABLED.
"""

import logging
import threading
from typing import Callable, List, Optional

from .errors import ConfigFetchError
from .models import KioskFlag

logger = logging.getLogger("Watchdog")

RESTART_DELAY = 2.0       # let the old process finish dying
PERIODIC_INTERVAL = 10.0

PACKAGE_EVENTS = ("replaced", "updated", "restarted", "installed")


class WatchdogSupervisor:
    """
    Args:
        fetch_flag:  device-bound callable returning KioskFlag, may raise
        start_loop:  starts (or spawns) the enforcement loop
        is_loop_running: True when a live loop already exists
    """

    def __init__(
        self,
        fetch_flag: Callable[[], KioskFlag],
        start_loop: Callable[[], object],
        is_loop_running: Callable[[], bool] = lambda: False,
        restart_delay: float = RESTART_DELAY,
        interval: float = PERIODIC_INTERVAL,
        sleep: Optional[Callable[[float], None]] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        self.fetch_flag = fetch_flag
        self.start_loop = start_loop
        self.is_loop_running = is_loop_running
        self.restart_delay = restart_delay
        self.interval = interval
        self.stop_event = stop_event or threading.Event()
        self._sleep = sleep or self.stop_event.wait
        self._on_wake_callbacks: List[Callable] = []
        self.restarts = 0

    # ==================== Triggers ====================

    def on_teardown(self, last_flag: KioskFlag) -> bool:
        """The hosting process is going away."""
        if last_flag is not KioskFlag.ENABLED:
            logger.info(f"Teardown with kiosk {last_flag.value}; no restart needed")
            return False
        logger.warning("Enforcement torn down while kiosk was enabled, re-checking...")
        self._sleep(self.restart_delay)
        return self._restart_if_enabled("teardown")

    def on_package_event(self, event: str) -> bool:
        """The agent package was replaced, updated or restarted."""
        logger.info(f"Package event '{event}', re-checking kiosk mode")
        self._sleep(self.restart_delay)
        return self._restart_if_enabled(f"package_{event}")

    def on_periodic_wake(self) -> bool:
        """Periodic check; only restarts when no loop is alive."""
        restarted = False
        try:
            if self.is_loop_running():
                logger.debug("Enforcement loop alive")
            else:
                restarted = self._restart_if_enabled("periodic")
        finally:
            for callback in self._on_wake_callbacks:
                try:
                    callback()
                except Exception as e:
                    logger.error(f"Wake callback error: {e}")
        return restarted

    # ==================== Scheduling ====================

    def run_periodic(self):
        """Blocks, waking every `interval` seconds until stop() is called."""
        logger.info(f"Watchdog started (every {self.interval}s)")
        while not self.stop_event.is_set():
            self._sleep(self.interval)
            if self.stop_event.is_set():
                break
            try:
                self.on_periodic_wake()
            except Exception as e:
                logger.error(f"Watchdog wake error: {e}")
        logger.info("Watchdog stopped")

    def start_periodic(self) -> threading.Thread:
        thread = threading.Thread(target=self.run_periodic, name="kiosk-watchdog", daemon=True)
        thread.start()
        return thread

    def stop(self):
        self.stop_event.set()

    def on_wake(self, callback: Callable):
        """
        Register extra work for each periodic wake (heartbeat, activity sync).

        Callback signature: ()
        """
        self._on_wake_callbacks.append(callback)

    # ==================== Internals ====================

    def _restart_if_enabled(self, reason: str) -> bool:
        try:
            flag = self.fetch_flag()
        except ConfigFetchError as e:
            logger.warning(f"Cannot verify kiosk mode ({reason}): {e}")
            return False
        except Exception as e:
            logger.error(f"Error checking kiosk mode ({reason}): {e}")
            return False

        if flag is not KioskFlag.ENABLED:
            logger.info(f"Kiosk mode not active ({reason}); not restarting")
            return False

        logger.info(f"Kiosk mode active, restarting enforcement ({reason})")
        try:
            self.start_loop()
        except Exception as e:
            logger.error(f"Failed to restart enforcement ({reason}): {e}")
            return False
        self.restarts += 1
        return True

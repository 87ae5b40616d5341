"""
bootstrap.py - Boot-time launch of the kiosk target

Runs once per process start: waits for the system to settle, resolves the
target and keeps trying to launch it until the network is up and the launch
succeeds, or the attempt ceiling is hit. Long-term enforcement is the job of
the EnforcementEngine, which is started independently.
"""

import logging
import threading
from enum import Enum
from typing import Callable, Optional

from .errors import ConfigFetchError, ResolutionFailure

logger = logging.getLogger("Bootstrap")

SETTLE_DELAY = 15.0       # lets Wi-Fi associate after power-on
RETRY_DELAY = 10.0
MAX_ATTEMPTS = 120        # 120 x 10s = 20 minutes
PRE_LAUNCH_PAUSE = 0.5
CONFIRM_PAUSE = 2.0


class BootResult(Enum):
    LAUNCHED = "launched"
    NO_TARGET = "no_target"
    EXHAUSTED = "exhausted"
    STOPPED = "stopped"


class BootstrapSequencer:

    def __init__(
        self,
        client,
        device_id: str,
        store,
        gate,
        launcher,
        settle_delay: float = SETTLE_DELAY,
        retry_delay: float = RETRY_DELAY,
        max_attempts: int = MAX_ATTEMPTS,
        pre_launch_pause: float = PRE_LAUNCH_PAUSE,
        confirm_pause: float = CONFIRM_PAUSE,
        sleep: Optional[Callable[[float], None]] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        self.client = client
        self.device_id = device_id
        self.store = store
        self.gate = gate
        self.launcher = launcher
        self.settle_delay = settle_delay
        self.retry_delay = retry_delay
        self.max_attempts = max_attempts
        self.pre_launch_pause = pre_launch_pause
        self.confirm_pause = confirm_pause
        self.stop_event = stop_event or threading.Event()
        self._sleep = sleep or self.stop_event.wait
        self.attempts = 0

    def run(self) -> BootResult:
        logger.info(f"Waiting {self.settle_delay}s after boot...")
        self._sleep(self.settle_delay)
        if self.stop_event.is_set():
            return BootResult.STOPPED

        try:
            target = self.resolve_target()
        except ResolutionFailure as e:
            logger.warning(f"{e}. Stopping boot sequence.")
            return BootResult.NO_TARGET

        return self._launch_with_retry(target)

    def resolve_target(self):
        """Local cache first, then the backend (cached on success)."""
        target = self.store.get_cached_target()
        if target is not None:
            logger.info(f"Using cached target: {target.describe()}")
            return target

        logger.info("No local configuration found. Fetching from server...")
        try:
            target = self.client.fetch_target(self.device_id)
        except ConfigFetchError as e:
            logger.error(f"Error fetching target from server: {e}")
            target = None

        if target is None:
            raise ResolutionFailure("No app or URL configured")

        self.store.save_cached_target(target)
        logger.info(f"Target from server: {target.describe()}")
        return target

    def _launch_with_retry(self, target) -> BootResult:
        self.attempts = 0
        while self.attempts < self.max_attempts:
            if self.stop_event.is_set():
                return BootResult.STOPPED

            self.attempts += 1
            logger.info(f"Attempt {self.attempts}/{self.max_attempts}: checking connectivity...")

            if self.gate.is_reachable():
                logger.info(f"Network available, opening {target.describe()}")
                self._sleep(self.pre_launch_pause)

                if self.launcher.bring_to_front(target):
                    logger.info("Target opened successfully")
                    self._sleep(self.confirm_pause)
                    self._log_activity("boot_launch", "completed", f"attempt {self.attempts}")
                    return BootResult.LAUNCHED

                logger.warning(f"Failed to open target. Retrying in {self.retry_delay}s...")
            else:
                logger.warning(f"Network not available. Retrying in {self.retry_delay}s...")

            self._sleep(self.retry_delay)

        logger.error("Maximum number of boot attempts reached. Giving up.")
        self._log_activity("boot_launch", "failed", f"{self.attempts} attempts")
        return BootResult.EXHAUSTED

    def _log_activity(self, event_type, status, details):
        try:
            self.store.log_activity(event_type, status, details)
        except Exception as e:
            logger.debug(f"Activity log failed: {e}")

import logging
import os
import shlex
import signal
import subprocess

from ..services.errors import OverlayStartFailure

logger = logging.getLogger("KioskOverlay")


class KioskOverlay:
    """
    Gesture/keyboard interception helper.

    The helper itself is an external program (overlay_command) that grabs
    input while kiosk mode is on. This class only starts and stops it.
    """

    def __init__(self, command=None):
        self.command = command
        self.process = None

    def is_active(self) -> bool:
        return self.process is not None and self.process.poll() is None

    def start(self, enabled=True):
        """Starts the helper when enabled, stops it otherwise. Raises OverlayStartFailure."""
        if not enabled:
            self.stop()
            return
        if self.is_active():
            return
        if not self.command:
            raise OverlayStartFailure("No overlay_command configured")

        try:
            self.process = subprocess.Popen(
                shlex.split(self.command),
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                preexec_fn=os.setsid
            )
        except (OSError, ValueError) as e:
            self.process = None
            raise OverlayStartFailure(f"Could not start overlay: {e}") from e
        logger.info(f"Overlay started (pid {self.process.pid})")

    def stop(self):
        if not self.is_active():
            self.process = None
            return
        try:
            os.killpg(os.getpgid(self.process.pid), signal.SIGTERM)
            logger.info("Overlay stopped")
        except (ProcessLookupError, PermissionError) as e:
            logger.warning(f"Error stopping overlay: {e}")
        finally:
            self.process = None

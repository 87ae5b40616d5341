import logging
import os
import shutil
import subprocess
from pathlib import Path
from urllib.parse import urlparse

from ..services.errors import LaunchFailure
from ..services.models import AppTarget, Target, UrlTarget
from ..utils.browser_manager import BrowserManager
from .foreground_probe import find_app_processes

logger = logging.getLogger("TargetLauncher")

DESKTOP_DIRS = [
    Path.home() / ".local" / "share" / "applications",
    Path("/usr/local/share/applications"),
    Path("/usr/share/applications"),
    Path("/var/lib/flatpak/exports/share/applications"),
]


class TargetLauncher:
    """
    Brings a Target to the foreground.

    bring_to_front() never raises: every failure is logged and reported as
    False so the caller can decide whether to retry.
    """

    def __init__(self, browser=None, display=None, timeout=5):
        self.browser = browser or BrowserManager()
        self.display = display
        self.timeout = timeout

    def bring_to_front(self, target: Target) -> bool:
        try:
            if isinstance(target, UrlTarget):
                return self.launch_url(target.uri)
            if isinstance(target, AppTarget):
                return self.launch_app(target.process_identifier)
            raise TypeError(f"Unsupported target type: {type(target).__name__}")
        except LaunchFailure as e:
            logger.error(f"Cannot bring {target.describe()} to front: {e}")
            return False
        except Exception as e:
            logger.error(f"Error bringing {target} to front: {e}")
            return False

    # ==================== URL ====================

    def launch_url(self, url) -> bool:
        """Always performs a fresh open of the URL in the kiosk browser. Raises LaunchFailure."""
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https"):
            raise LaunchFailure(f"Invalid URL: {url} (must start with http:// or https://)")
        if not parsed.netloc:
            raise LaunchFailure(f"Malformed URL, no host: {url}")
        return self.browser.launch_kiosk(url)

    # ==================== App ====================

    def launch_app(self, identifier) -> bool:
        """
        Activates the app's window if it is running, otherwise starts it.
        Raises LaunchFailure when there is no way to launch the identifier
        on this machine.
        """
        command = self.launch_command(identifier)
        if command is None:
            raise LaunchFailure(f"No launch capability for: {identifier}")

        running = find_app_processes(identifier)
        if running and self._activate_window(running[0].pid):
            logger.info(f"Raised running app: {identifier} (pid {running[0].pid})")
            return True

        try:
            subprocess.Popen(
                command,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                env=self._env(),
                preexec_fn=os.setsid
            )
        except OSError as e:
            raise LaunchFailure(f"Failed to start {identifier}: {e}") from e

        logger.info(f"App launched: {identifier}")
        return True

    def launch_command(self, identifier):
        """argv that starts the identifier, or None if it is not installed."""
        executable = shutil.which(identifier)
        if executable:
            return [executable]

        desktop_id = identifier if identifier.endswith(".desktop") else f"{identifier}.desktop"
        gtk_launch = shutil.which("gtk-launch")
        if gtk_launch and any((d / desktop_id).exists() for d in DESKTOP_DIRS):
            return [gtk_launch, desktop_id]
        return None

    def _activate_window(self, pid) -> bool:
        xdotool = shutil.which("xdotool")
        if not xdotool:
            return False
        try:
            result = subprocess.run(
                [xdotool, "search", "--onlyvisible", "--pid", str(pid), "windowactivate", "--sync"],
                capture_output=True, text=True, timeout=self.timeout, env=self._env()
            )
        except (subprocess.TimeoutExpired, OSError) as e:
            logger.debug(f"windowactivate failed for pid {pid}: {e}")
            return False
        return result.returncode == 0

    def _env(self):
        env = os.environ.copy()
        if self.display:
            env["DISPLAY"] = self.display
        return env

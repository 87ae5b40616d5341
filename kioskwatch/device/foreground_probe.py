"""
foreground_probe.py - Is the target the window the user is looking at?

The active window is read from the X server with xdotool; process state
comes from psutil. A target that is running but not under the active window
does not count as frontmost.
"""

import logging
import os
import shutil
import subprocess
from typing import Optional

import psutil

from ..services.models import AppTarget, Target, UrlTarget

logger = logging.getLogger("ForegroundProbe")


class ForegroundProbe:

    def __init__(self, display=None, timeout=2):
        self.display = display
        self.timeout = timeout

    def is_frontmost(self, target: Target) -> bool:
        try:
            if isinstance(target, AppTarget):
                return self._app_is_frontmost(target)
            if isinstance(target, UrlTarget):
                return self._url_is_frontmost(target)
            raise TypeError(f"Unsupported target type: {type(target).__name__}")
        except Exception as e:
            logger.error(f"Error checking foreground for {target}: {e}")
            return False

    def is_running(self, target: AppTarget) -> bool:
        return bool(find_app_processes(target.process_identifier))

    # ==================== Per-kind checks ====================

    def _app_is_frontmost(self, target: AppTarget) -> bool:
        running = find_app_processes(target.process_identifier)
        if not running:
            logger.debug(f"{target.process_identifier} is not running")
            return False

        active_pid = self.active_window_pid()
        if active_pid is None:
            return False

        running_pids = {p.pid for p in running}
        return any(pid in running_pids for pid in _pid_and_ancestors(active_pid))

    def _url_is_frontmost(self, target: UrlTarget) -> bool:
        active_pid = self.active_window_pid()
        if active_pid is None:
            return False

        # Browsers hand windows to child processes, so walk up to the kiosk launch
        for pid in _pid_and_ancestors(active_pid):
            try:
                cmdline = psutil.Process(pid).cmdline()
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
            if any(target.uri in arg for arg in cmdline):
                return True
        return False

    # ==================== X11 ====================

    def active_window_pid(self) -> Optional[int]:
        """PID owning the active X11 window, or None if it cannot be determined."""
        xdotool = shutil.which("xdotool")
        if not xdotool:
            logger.warning("xdotool not installed; cannot determine active window")
            return None

        env = os.environ.copy()
        if self.display:
            env["DISPLAY"] = self.display

        try:
            result = subprocess.run(
                [xdotool, "getactivewindow", "getwindowpid"],
                capture_output=True, text=True, timeout=self.timeout, env=env
            )
        except (subprocess.TimeoutExpired, OSError) as e:
            logger.debug(f"xdotool failed: {e}")
            return None

        if result.returncode != 0:
            return None
        try:
            return int(result.stdout.strip().splitlines()[-1])
        except (ValueError, IndexError):
            return None


def find_app_processes(identifier: str):
    """Processes whose name, executable basename or argv[0] matches the identifier."""
    wanted = os.path.basename(identifier)
    if wanted.endswith(".desktop"):
        wanted = wanted[:-len(".desktop")]

    matches = []
    for proc in psutil.process_iter(['pid', 'name', 'exe', 'cmdline']):
        info = proc.info
        exe = info.get('exe') or ""
        cmdline = info.get('cmdline') or []
        argv0 = os.path.basename(cmdline[0]) if cmdline else ""
        if wanted in (info.get('name'), os.path.basename(exe), argv0) or identifier == exe:
            matches.append(proc)
    return matches


def _pid_and_ancestors(pid: int):
    pids = [pid]
    try:
        pids.extend(p.pid for p in psutil.Process(pid).parents())
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        pass
    return pids

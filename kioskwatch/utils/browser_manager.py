import subprocess
import os
import shlex
import shutil
import signal
import logging
import threading
import time

logger = logging.getLogger("BrowserManager")

# Browser binaries tried in order, with the flags that give a chromeless window
KIOSK_BROWSERS = [
    ("chromium", ["--kiosk", "--noerrdialogs", "--disable-infobars", "--no-first-run"]),
    ("chromium-browser", ["--kiosk", "--noerrdialogs", "--disable-infobars", "--no-first-run"]),
    ("google-chrome", ["--kiosk", "--noerrdialogs", "--disable-infobars", "--no-first-run"]),
    ("firefox", ["--kiosk"]),
]

# Cold starts on small boards take several seconds before a window maps
STARTUP_GRACE = 10.0


class BrowserManager:
    """
    Manages the lifecycle of the kiosk browser.

    Safe to share between threads. A browser we started for the same URL is
    left alone while it is alive and younger than startup_grace; after that a
    launch replaces it with a fresh window.
    """

    def __init__(self, browser_command=None, startup_grace=STARTUP_GRACE, clock=time.monotonic):
        self.browser_command = browser_command
        self.startup_grace = startup_grace
        self.clock = clock
        self.process = None
        self.url = None
        self.started_at = None
        self._lock = threading.RLock()

    def resolve_command(self, url):
        """Builds the argv that opens url, or None if no browser is installed."""
        if self.browser_command:
            parts = shlex.split(self.browser_command)
            if not shutil.which(parts[0]):
                logger.error(f"Configured browser not found: {parts[0]}")
                return None
            return parts + [url]

        for binary, flags in KIOSK_BROWSERS:
            path = shutil.which(binary)
            if path:
                return [path] + flags + [url]
        logger.error("No kiosk-capable browser found (chromium, google-chrome, firefox)")
        return None

    def is_starting(self, url):
        """True while our browser for url is alive and still inside its startup grace."""
        with self._lock:
            if self.process is None or self.url != url or self.started_at is None:
                return False
            if self.process.poll() is not None:
                return False
            return self.clock() - self.started_at < self.startup_grace

    def launch_kiosk(self, url):
        """Opens url in a fresh kiosk browser, replacing any window we opened before."""
        with self._lock:
            if self.is_starting(url):
                logger.debug(f"Kiosk browser still starting for {url}, not relaunching")
                return True

            cmd = self.resolve_command(url)
            if cmd is None:
                return False

            self.close_kiosk()
            try:
                logger.info(f"Launching Kiosk Browser at: {url}")
                # Use setsid so browser doesn't die when main app restarts
                self.process = subprocess.Popen(
                    cmd,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                    preexec_fn=os.setsid
                )
            except Exception as e:
                logger.error(f"Failed to launch browser: {e}")
                return False
            self.url = url
            self.started_at = self.clock()
            return True

    def close_kiosk(self):
        """Force close the browser process if needed."""
        with self._lock:
            if not self.process:
                return False
            process, self.process = self.process, None
            self.url = None
            self.started_at = None
            if process.poll() is not None:
                return True
            try:
                os.killpg(os.getpgid(process.pid), signal.SIGTERM)
                return True
            except Exception as e:
                logger.error(f"Failed to stop browser: {e}")
                return False

import logging
import os
from pathlib import Path
from typing import Optional

import psutil

logger = logging.getLogger("ProcessLock")


class ProcessLock:
    """
    PID file marking the live agent process.

    A PID that no longer exists, or that belongs to a process whose command
    line does not contain the signature, counts as stale.
    """

    def __init__(self, path, signature="main.py"):
        self.path = Path(path)
        self.signature = signature

    def read_pid(self) -> Optional[int]:
        try:
            return int(self.path.read_text().strip())
        except (OSError, ValueError):
            return None

    def holder_alive(self) -> bool:
        pid = self.read_pid()
        if pid is None:
            return False
        if pid == os.getpid():
            return True
        try:
            proc = psutil.Process(pid)
            if not proc.is_running() or proc.status() == psutil.STATUS_ZOMBIE:
                return False
            return any(self.signature in arg for arg in proc.cmdline())
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return False

    def acquire(self) -> bool:
        """Writes our PID unless another live agent holds the lock."""
        if self.holder_alive() and self.read_pid() != os.getpid():
            logger.warning(f"Agent already running (pid {self.read_pid()})")
            return False
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(str(os.getpid()))
        return True

    def release(self):
        if self.read_pid() == os.getpid():
            try:
                self.path.unlink()
            except OSError as e:
                logger.debug(f"Could not remove {self.path}: {e}")

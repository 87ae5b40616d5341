"""
device_identity.py - Stable device identifier

The identifier must survive reinstalls of the agent, so it is derived from
the machine id when one is available and otherwise generated once and kept
in the local store.
"""

import hashlib
import logging
import os
import platform
import uuid
from typing import Optional

from .local_store import LocalStore

logger = logging.getLogger("DeviceIdentity")

KEY_DEVICE_ID = "device_id"
KEY_HARDWARE_ID = "hardware_id_backup"

MACHINE_ID_PATHS = ("/etc/machine-id", "/var/lib/dbus/machine-id")
# Placeholder ids shipped by some images before first boot finishes
INVALID_HARDWARE_IDS = {"", "uninitialized", "0" * 32}


def read_hardware_id() -> str:
    """Reads the systemd/dbus machine id, or '' when none is available."""
    for path in MACHINE_ID_PATHS:
        try:
            if os.path.exists(path):
                with open(path, "r") as f:
                    value = f.read().strip()
                if value:
                    return value
        except OSError as e:
            logger.debug(f"Cannot read {path}: {e}")
    return ""


class DeviceIdManager:
    """Resolves the identifier the backend knows this device by."""

    def __init__(self, store: LocalStore, override: Optional[str] = None, hardware_id_reader=read_hardware_id):
        self.store = store
        self.override = override
        self._read_hardware_id = hardware_id_reader

    def get_device_id(self) -> str:
        """
        Returns the device id, creating and persisting one on first run.

        Order of preference:
        1. saved id, when the machine id it was derived from is unchanged
        2. the current machine id
        3. the saved id, even though the machine id changed or disappeared
        4. a freshly generated id
        """
        if self.override:
            return self.override

        current_hw = self._read_hardware_id()
        saved_id = self.store.get_setting(KEY_DEVICE_ID)
        saved_hw = self.store.get_setting(KEY_HARDWARE_ID)
        hw_valid = current_hw not in INVALID_HARDWARE_IDS

        if saved_id and hw_valid and saved_hw == current_hw:
            logger.debug(f"Device ID from cache: {saved_id}")
            return saved_id

        if hw_valid and not saved_id:
            logger.info(f"Using machine id as Device ID: {current_hw}")
            self._save(current_hw, current_hw)
            return current_hw

        if saved_id:
            logger.warning(
                f"Machine id changed (was: {saved_hw}, now: {current_hw or 'none'}). "
                f"Keeping saved Device ID: {saved_id}"
            )
            return saved_id

        new_id = generate_device_id()
        logger.info(f"Generated new Device ID: {new_id}")
        self._save(new_id, current_hw)
        return new_id

    def reset_device_id(self):
        """Forgets the stored identity; the next get_device_id() derives a new one."""
        self.store.delete_setting(KEY_DEVICE_ID)
        self.store.delete_setting(KEY_HARDWARE_ID)
        logger.info("Device ID reset")

    def _save(self, device_id, hardware_id):
        self.store.set_setting(KEY_DEVICE_ID, device_id)
        self.store.set_setting(KEY_HARDWARE_ID, hardware_id)


def generate_device_id() -> str:
    """Hash of platform facts plus a node-derived UUID, limited to 32 chars."""
    device_info = "".join([
        platform.node(),
        platform.machine(),
        platform.system(),
        platform.release(),
        hex(uuid.getnode()),
    ])
    digest = hashlib.sha1(device_info.encode()).hexdigest()[:8]
    unique = uuid.uuid5(uuid.NAMESPACE_DNS, device_info + uuid.uuid4().hex).hex
    return f"{digest}_{unique}"[:32]

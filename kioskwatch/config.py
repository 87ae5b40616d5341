"""
config.py - Agent settings

Settings come from config/secrets.env (written by the setup wizard), an
optional config/settings.json with overrides, and finally the process
environment.
"""

import json
import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

logger = logging.getLogger("Config")

BASE_DIR = Path(__file__).resolve().parent.parent
CONFIG_DIR = BASE_DIR / "config"
SECRETS_PATH = CONFIG_DIR / "secrets.env"
SETTINGS_PATH = CONFIG_DIR / "settings.json"
DATA_DIR = BASE_DIR / "data"

DEFAULT_BASE_URL = "https://kiosk.example.invalid/api/v1"
DEFAULT_CONNECTIVITY_URL = "http://connectivitycheck.gstatic.com/generate_204"


def load_env_file(path):
    """Loads KEY=value lines into os.environ. Comments and blank lines are skipped."""
    if not os.path.exists(path):
        return
    with open(path, 'r') as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith('#') or '=' not in line:
                continue
            key, val = line.split('=', 1)
            os.environ[key.strip()] = val.strip()


def _env_bool(name, default):
    val = os.getenv(name)
    if val is None:
        return default
    return val.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name, default):
    val = os.getenv(name)
    if val is None or val == "":
        return default
    try:
        return float(val)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={val!r}, using {default}")
        return default


def _env_int(name, default):
    return int(_env_float(name, default))


def _coerce(current, value):
    """Casts a settings.json value to the type of the field's current value."""
    if value is None or current is None:
        return value
    if isinstance(current, bool):
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    if isinstance(current, int):
        return int(float(value))
    if isinstance(current, float):
        return float(value)
    if isinstance(current, Path):
        return Path(value)
    if isinstance(current, str):
        return str(value)
    return value


@dataclass
class KioskSettings:
    base_url: str = DEFAULT_BASE_URL
    api_key: Optional[str] = None
    device_id: Optional[str] = None
    ssl_verify: bool = True
    request_timeout: float = 10.0
    data_dir: Path = DATA_DIR

    # Enforcement cadence
    check_interval: float = 0.5
    background_interval: float = 3.0
    penalty_interval: float = 6.0
    max_consecutive_errors: int = 5

    # Boot sequence
    boot_settle_delay: float = 15.0
    boot_retry_delay: float = 10.0
    boot_max_attempts: int = 120

    # Watchdog
    watchdog_interval: float = 10.0
    restart_delay: float = 2.0

    connectivity_check_url: str = DEFAULT_CONNECTIVITY_URL
    browser_command: Optional[str] = None
    browser_startup_grace: float = 10.0
    overlay_command: Optional[str] = None

    # Activity log housekeeping
    activity_retention_days: float = 7.0
    max_pending_logs: int = 5000

    status_port: int = 8001
    bridge_port: int = 8002
    wizard_port: int = 8080

    @property
    def is_provisioned(self) -> bool:
        return bool(self.api_key)

    @property
    def db_path(self) -> Path:
        return Path(self.data_dir) / "kiosk.db"

    @property
    def pid_path(self) -> Path:
        return Path(self.data_dir) / "kioskwatch.pid"

    @classmethod
    def from_env(cls) -> "KioskSettings":
        """Builds settings from os.environ (call load_settings() to read files first)."""
        return cls(
            base_url=os.getenv("KIOSK_BASE_URL", DEFAULT_BASE_URL),
            api_key=os.getenv("KIOSK_API_KEY") or None,
            device_id=os.getenv("KIOSK_DEVICE_ID") or None,
            ssl_verify=_env_bool("SSL_VERIFY", True),
            request_timeout=_env_float("KIOSK_REQUEST_TIMEOUT", 10.0),
            data_dir=Path(os.getenv("KIOSK_DATA_DIR", str(DATA_DIR))),
            check_interval=_env_float("KIOSK_CHECK_INTERVAL", 0.5),
            background_interval=_env_float("KIOSK_BACKGROUND_INTERVAL", 3.0),
            penalty_interval=_env_float("KIOSK_PENALTY_INTERVAL", 6.0),
            max_consecutive_errors=_env_int("KIOSK_MAX_ERRORS", 5),
            boot_settle_delay=_env_float("KIOSK_BOOT_SETTLE_DELAY", 15.0),
            boot_retry_delay=_env_float("KIOSK_BOOT_RETRY_DELAY", 10.0),
            boot_max_attempts=_env_int("KIOSK_BOOT_MAX_ATTEMPTS", 120),
            watchdog_interval=_env_float("KIOSK_WATCHDOG_INTERVAL", 10.0),
            restart_delay=_env_float("KIOSK_RESTART_DELAY", 2.0),
            connectivity_check_url=os.getenv("KIOSK_CONNECTIVITY_URL", DEFAULT_CONNECTIVITY_URL),
            browser_command=os.getenv("KIOSK_BROWSER") or None,
            browser_startup_grace=_env_float("KIOSK_BROWSER_STARTUP_GRACE", 10.0),
            activity_retention_days=_env_float("KIOSK_ACTIVITY_RETENTION_DAYS", 7.0),
            max_pending_logs=_env_int("KIOSK_MAX_PENDING_LOGS", 5000),
            overlay_command=os.getenv("KIOSK_OVERLAY_COMMAND") or None,
            status_port=_env_int("KIOSK_STATUS_PORT", 8001),
            bridge_port=_env_int("KIOSK_BRIDGE_PORT", 8002),
            wizard_port=_env_int("KIOSK_WIZARD_PORT", 8080),
        )

    def apply_overrides(self, overrides: dict):
        """
        Applies known keys from a settings.json dict. Values are cast to the
        field's type; unknown keys and values that do not cast are logged and
        skipped.
        """
        known = {f.name for f in fields(self)}
        for key, value in overrides.items():
            if key not in known:
                logger.warning(f"Unknown setting in settings.json: {key}")
                continue
            try:
                value = _coerce(getattr(self, key), value)
            except (TypeError, ValueError):
                logger.warning(f"Ignoring invalid {key}={value!r} in settings.json")
                continue
            setattr(self, key, value)

    def validate(self):
        if self.penalty_interval <= self.background_interval:
            raise ValueError(
                f"penalty_interval ({self.penalty_interval}) must be longer than "
                f"background_interval ({self.background_interval})"
            )
        if self.max_consecutive_errors < 1:
            raise ValueError("max_consecutive_errors must be at least 1")
        if self.boot_max_attempts < 1:
            raise ValueError("boot_max_attempts must be at least 1")


def load_settings(secrets_path=SECRETS_PATH, settings_path=SETTINGS_PATH) -> KioskSettings:
    """Reads secrets.env into the environment, then layers settings.json on top."""
    load_env_file(secrets_path)
    settings = KioskSettings.from_env()

    if os.path.exists(settings_path):
        try:
            with open(settings_path, 'r') as f:
                settings.apply_overrides(json.load(f))
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load {settings_path}: {e}")

    settings.validate()
    return settings


def save_secrets(data: dict, path=SECRETS_PATH):
    """Writes provisioning data in the KEY=value format load_env_file() reads."""
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        f.write(f"KIOSK_BASE_URL={data['base_url']}\n")
        f.write(f"KIOSK_API_KEY={data['api_key']}\n")
        if data.get('device_id'):
            f.write(f"KIOSK_DEVICE_ID={data['device_id']}\n")
        f.write(f"SSL_VERIFY={'true' if data.get('ssl_verify', True) else 'false'}\n")

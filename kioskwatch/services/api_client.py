import json
import logging
import platform

import requests

from .errors import ConfigFetchError
from .models import KioskFlag, RemoteConfig, parse_target

logger = logging.getLogger("ApiClient")


class KioskApiClient:
    """
    Narrow client for the device-management backend.

    Only two things are read from the server: whether kiosk mode is on for
    this device, and which target it should keep in front.
    """

    def __init__(self, base_url, api_key, timeout=10, ssl_verify=True, name=None, session=None):
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout
        self.name = name or platform.node()
        self.session = session or requests.Session()
        self.session.verify = ssl_verify
        self.session.headers.update({
            'X-KIOSK-API-KEY': self.api_key,
            'Accept': 'application/json'
        })

    def fetch_config(self, device_id) -> RemoteConfig:
        """
        Fetches kiosk_mode and the configured target in one request.
        Raises ConfigFetchError on any network, HTTP or payload problem.
        """
        endpoint = f"{self.base_url}/edge/devices/{device_id}/kiosk"
        try:
            response = self.session.get(endpoint, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            raise ConfigFetchError(f"Network error fetching kiosk config: {e}") from e
        except ValueError as e:
            raise ConfigFetchError(f"Invalid JSON from {endpoint}: {e}") from e

        if not isinstance(data, dict) or data.get('status') != 'success':
            message = data.get('message') if isinstance(data, dict) else data
            raise ConfigFetchError(f"Backend rejected kiosk config request: {message}")

        payload = data.get('data') or {}
        if not isinstance(payload, dict):
            raise ConfigFetchError(f"Unexpected kiosk config payload: {payload!r}")

        return RemoteConfig(flag=_parse_flag(payload), target=_parse_payload_target(payload))

    def fetch_flag(self, device_id) -> KioskFlag:
        """ENABLED or DISABLED; raises ConfigFetchError instead of answering UNKNOWN."""
        return self.fetch_config(device_id).flag

    def fetch_target(self, device_id):
        """Configured Target, or None when the device has none."""
        return self.fetch_config(device_id).target

    def heartbeat(self, device_id, status=None):
        """
        Reports the current enforcement status. Best effort: returns False
        on failure instead of raising.
        """
        endpoint = f"{self.base_url}/edge/heartbeat"
        payload = {
            "device_id": device_id,
            "name": self.name,
            "status": "online",
            "kiosk": status or {},
        }
        try:
            response = self.session.post(endpoint, json=payload, timeout=5)
            response.raise_for_status()
            return True
        except requests.exceptions.RequestException as e:
            logger.warning(f"Heartbeat Error: {e}")
            return False


def _parse_flag(payload):
    kiosk_mode = payload.get('kiosk_mode')
    if isinstance(kiosk_mode, str):
        kiosk_mode = kiosk_mode.strip().lower() in ("true", "1", "yes", "on")
    # null means the device row has never been switched on
    return KioskFlag.ENABLED if kiosk_mode is True else KioskFlag.DISABLED


def _parse_payload_target(payload):
    # The PWA URL wins when both are configured
    for key in ('pwa_url', 'target_package'):
        target = parse_target(payload.get(key))
        if target is not None:
            return target
    return None


if __name__ == "__main__":
    import os
    import sys

    client = KioskApiClient(os.getenv("KIOSK_BASE_URL", ""), os.getenv("KIOSK_API_KEY", ""))
    config = client.fetch_config(sys.argv[1])
    print(json.dumps({"flag": config.flag.value,
                      "target": config.target.describe() if config.target else None}, indent=2))

import logging
import shutil
import socket
import subprocess

import psutil
import requests

logger = logging.getLogger("Connectivity")

DEFAULT_CHECK_URL = "http://connectivitycheck.gstatic.com/generate_204"


class ConnectivityGate:
    """
    Answers "is the network usable right now?".

    Usable means both an active interface (up, non-loopback, with an address)
    and a validated connection: NetworkManager reports full connectivity, or,
    where NetworkManager is not available, the captive-portal style probe URL
    answers 204.
    """

    def __init__(self, check_url=DEFAULT_CHECK_URL, timeout=5):
        self.check_url = check_url
        self.timeout = timeout

    def is_reachable(self) -> bool:
        try:
            if not self.has_active_network():
                logger.debug("No active network interface")
                return False
            return self.is_validated()
        except Exception as e:
            logger.warning(f"Connectivity check failed: {e}")
            return False

    def has_active_network(self) -> bool:
        """True if some non-loopback interface is up and has an IP address."""
        stats = psutil.net_if_stats()
        addrs = psutil.net_if_addrs()
        for name, st in stats.items():
            if not st.isup or name == "lo" or name.startswith("lo:"):
                continue
            for addr in addrs.get(name, []):
                if addr.family in (socket.AF_INET, socket.AF_INET6) and not _is_link_local(addr.address):
                    return True
        return False

    def is_validated(self) -> bool:
        nm_state = self._networkmanager_state()
        if nm_state is not None:
            logger.debug(f"NetworkManager connectivity: {nm_state}")
            return nm_state == "full"
        return self._http_probe()

    def _networkmanager_state(self):
        """'full', 'limited', 'portal', 'none', 'unknown', or None without nmcli."""
        nmcli = shutil.which("nmcli")
        if not nmcli:
            return None
        try:
            result = subprocess.run(
                [nmcli, "networking", "connectivity", "check"],
                capture_output=True, text=True, timeout=self.timeout
            )
        except (subprocess.TimeoutExpired, OSError) as e:
            logger.debug(f"nmcli failed: {e}")
            return None
        if result.returncode != 0:
            return None
        state = result.stdout.strip().lower()
        # NetworkManager without a configured check URL always answers 'unknown'
        if state == "unknown":
            return None
        return state

    def _http_probe(self) -> bool:
        try:
            response = requests.get(self.check_url, timeout=self.timeout, allow_redirects=False)
            return response.status_code == 204
        except requests.exceptions.RequestException as e:
            logger.debug(f"Connectivity probe failed: {e}")
            return False


def _is_link_local(address: str) -> bool:
    return address.startswith("169.254.") or address.lower().startswith("fe80")

"""
sync_manager.py - Store-and-Forward Activity Sync

Kiosk activity (mode changes, relaunches, boot launches) is written to the
local SQLite store first and uploaded in bulk whenever the backend is
reachable. Entries are only marked synced after the server accepts them.
"""

import asyncio
import aiohttp
import logging
from typing import Optional, Dict

from .local_store import get_local_store

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("SyncManager")

BATCH_SIZE = 200


class SyncManager:
    """
    Uploads pending activity logs to the server.

    Sync results are reported through the logger only; writing them back to
    the activity table would queue them for the next upload.
    """

    def __init__(self, server_url: str, api_key: str, device_id: str,
                 store=None, ssl_verify: bool = True, batch_size: int = BATCH_SIZE):
        self.server_url = server_url.rstrip('/')
        self.api_key = api_key
        self.device_id = device_id
        self.store = store
        self.ssl_verify = ssl_verify
        self.batch_size = batch_size
        self.sync_endpoint = f"{self.server_url}/edge/activity-sync"
        self.is_syncing = False

        logger.info(f"SyncManager initialized with endpoint: {self.sync_endpoint}")

    def _get_store(self):
        return self.store if self.store is not None else get_local_store()

    async def sync_activity_logs(self) -> Dict:
        """
        Sync pending activity logs to the server.

        Returns:
            Dict with sync results
        """
        if self.is_syncing:
            logger.warning("Sync already in progress, skipping")
            return {"status": "skipped", "reason": "sync_in_progress"}

        self.is_syncing = True
        store = self._get_store()

        try:
            pending = store.get_pending_logs(self.batch_size)

            if not pending:
                logger.debug("No pending activity logs to sync")
                return {"status": "success", "synced_count": 0}

            logger.info(f"Syncing {len(pending)} activity logs...")

            payload = {
                "device_id": self.device_id,
                "logs": [
                    {
                        "event_type": entry['event_type'],
                        "status": entry['status'],
                        "details": entry['details'],
                        "timestamp": entry['created_at']
                    }
                    for entry in pending
                ]
            }

            headers = {
                "Content-Type": "application/json",
                "X-KIOSK-API-KEY": self.api_key
            }
            connector = aiohttp.TCPConnector(ssl=self.ssl_verify)

            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.post(
                    self.sync_endpoint,
                    json=payload,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=30)
                ) as response:

                    if response.status == 200:
                        result = await response.json()
                        synced_count = result.get('synced_count', len(pending))

                        store.mark_logs_synced([entry['id'] for entry in pending])

                        logger.info(f"Sync complete: {synced_count} activity logs synced")
                        return {"status": "success", "synced_count": synced_count}

                    error_text = await response.text()
                    logger.error(f"Sync failed with status {response.status}: {error_text}")
                    return {"status": "error", "reason": f"HTTP {response.status}"}

        except asyncio.TimeoutError:
            logger.error("Sync timed out")
            return {"status": "error", "reason": "timeout"}

        except aiohttp.ClientError as e:
            logger.error(f"Sync connection error: {e}")
            return {"status": "error", "reason": str(e)}

        finally:
            self.is_syncing = False

    def sync_now(self) -> Dict:
        """Blocking wrapper for callers outside an event loop (watchdog wake)."""
        return asyncio.run(self.sync_activity_logs())

    async def get_sync_status(self) -> Dict:
        """Get current sync status."""
        store = self._get_store()
        return {
            "is_syncing": self.is_syncing,
            "pending_count": store.get_pending_count(),
            "last_sync_logs": store.get_recent_logs(5)
        }


# Singleton instance
_sync_manager_instance: Optional[SyncManager] = None

def init_sync_manager(server_url: str, api_key: str, device_id: str, **kwargs) -> SyncManager:
    """Initialize the singleton SyncManager with server credentials."""
    global _sync_manager_instance
    _sync_manager_instance = SyncManager(server_url, api_key, device_id, **kwargs)
    return _sync_manager_instance

def get_sync_manager() -> Optional[SyncManager]:
    """Get the singleton SyncManager instance."""
    return _sync_manager_instance

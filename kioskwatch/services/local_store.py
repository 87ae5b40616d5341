"""
local_store.py - SQLite Store for Kiosk Settings and Activity

This module keeps the device's locally cached configuration (target,
device identity, last status snapshot) and an activity log that is
forwarded to the server when connectivity allows.
"""

import json
import logging
import os
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional

from .models import Target, parse_target, target_to_string

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("LocalStore")

BASE_DIR = Path(__file__).parent.parent.parent
DATA_DIR = Path(os.getenv("KIOSK_DATA_DIR", str(BASE_DIR / "data")))
DB_PATH = DATA_DIR / "kiosk.db"

KEY_TARGET = "target"
KEY_STATUS = "status_snapshot"

ACTIVITY_RETENTION_DAYS = 7
MAX_PENDING_LOGS = 5000


class LocalStore:
    """SQLite-backed key/value settings plus the edge activity log."""

    def __init__(self, db_path=None, retention_days=ACTIVITY_RETENTION_DAYS, max_pending=MAX_PENDING_LOGS):
        self.db_path = str(db_path or DB_PATH)
        self.retention_days = retention_days
        self.max_pending = max_pending
        self._ensure_data_dir()
        self._init_db()

    def _ensure_data_dir(self):
        """Create data directory if it doesn't exist."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(self.db_path, timeout=5)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self):
        """Initialize database schema if tables don't exist."""
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS kiosk_settings (
                key TEXT PRIMARY KEY,
                value TEXT,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS edge_activity_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                event_type TEXT NOT NULL,
                status TEXT DEFAULT 'pending',
                details TEXT,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                synced_at TEXT DEFAULT NULL
            )
        ''')

        conn.commit()
        conn.close()
        logger.debug(f"SQLite store initialized at: {self.db_path}")

    # ==================== Settings ====================

    def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        conn = self._get_connection()
        try:
            row = conn.execute(
                "SELECT value FROM kiosk_settings WHERE key = ?", (key,)
            ).fetchone()
        finally:
            conn.close()
        if row is None or row['value'] is None:
            return default
        return row['value']

    def set_setting(self, key: str, value: str):
        conn = self._get_connection()
        try:
            conn.execute('''
                INSERT INTO kiosk_settings (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                                               updated_at = excluded.updated_at
            ''', (key, value, _utc_now()))
            conn.commit()
        finally:
            conn.close()

    def delete_setting(self, key: str):
        conn = self._get_connection()
        try:
            conn.execute("DELETE FROM kiosk_settings WHERE key = ?", (key,))
            conn.commit()
        finally:
            conn.close()

    # ==================== Target Cache ====================

    def get_cached_target(self) -> Optional[Target]:
        """Returns the locally cached target, if any."""
        return parse_target(self.get_setting(KEY_TARGET))

    def save_cached_target(self, target: Target):
        """Caches the target so offline boots can still launch it."""
        value = target_to_string(target)
        if self.get_setting(KEY_TARGET) != value:
            self.set_setting(KEY_TARGET, value)
            logger.info(f"Cached target updated: {target.describe()}")

    def clear_cached_target(self):
        self.delete_setting(KEY_TARGET)

    # ==================== Status Snapshot ====================

    def save_status_snapshot(self, status: Dict):
        self.set_setting(KEY_STATUS, json.dumps(status))

    def get_status_snapshot(self) -> Optional[Dict]:
        raw = self.get_setting(KEY_STATUS)
        if not raw:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding corrupt status snapshot")
            return None

    # ==================== Activity Logging ====================

    def log_activity(self, event_type: str, status: str = 'pending', details: str = None):
        """Log an edge activity event. Only the newest max_pending unsynced entries are kept."""
        conn = self._get_connection()
        try:
            conn.execute('''
                INSERT INTO edge_activity_logs (event_type, status, details, created_at)
                VALUES (?, ?, ?, ?)
            ''', (event_type, status, details, _utc_now()))
            dropped = conn.execute('''
                DELETE FROM edge_activity_logs
                WHERE synced_at IS NULL AND id <= (
                    SELECT id FROM edge_activity_logs
                    WHERE synced_at IS NULL
                    ORDER BY id DESC
                    LIMIT 1 OFFSET ?
                )
            ''', (self.max_pending,)).rowcount
            conn.commit()
        finally:
            conn.close()
        if dropped > 0:
            logger.warning(f"Pending activity log full, dropped {dropped} oldest entries")

    def get_pending_logs(self, limit: int = 500) -> List[Dict]:
        """Activity entries not yet uploaded, oldest first."""
        conn = self._get_connection()
        try:
            rows = conn.execute('''
                SELECT id, event_type, status, details, created_at
                FROM edge_activity_logs
                WHERE synced_at IS NULL
                ORDER BY id ASC
                LIMIT ?
            ''', (limit,)).fetchall()
        finally:
            conn.close()
        return [dict(row) for row in rows]

    def mark_logs_synced(self, log_ids: List[int]):
        """Mark activity entries as uploaded."""
        if not log_ids:
            return

        placeholders = ','.join('?' * len(log_ids))
        conn = self._get_connection()
        try:
            conn.execute(f'''
                UPDATE edge_activity_logs
                SET synced_at = ?
                WHERE id IN ({placeholders})
            ''', [_utc_now()] + list(log_ids))
            conn.commit()
        finally:
            conn.close()
        logger.info(f"Marked {len(log_ids)} activity entries as synced")
        self.prune_synced_logs()

    def prune_synced_logs(self, cutoff: Optional[str] = None) -> int:
        """Deletes uploaded entries synced before cutoff (default: retention_days ago)."""
        if cutoff is None:
            cutoff = _utc_iso(datetime.now(timezone.utc) - timedelta(days=self.retention_days))
        conn = self._get_connection()
        try:
            deleted = conn.execute('''
                DELETE FROM edge_activity_logs
                WHERE synced_at IS NOT NULL AND synced_at < ?
            ''', (cutoff,)).rowcount
            conn.commit()
        finally:
            conn.close()
        if deleted:
            logger.info(f"Pruned {deleted} synced activity entries")
        return deleted

    def get_pending_count(self) -> int:
        conn = self._get_connection()
        try:
            count = conn.execute(
                "SELECT COUNT(*) FROM edge_activity_logs WHERE synced_at IS NULL"
            ).fetchone()[0]
        finally:
            conn.close()
        return count

    def get_recent_logs(self, limit: int = 50) -> List[Dict]:
        """Get recent activity logs."""
        conn = self._get_connection()
        try:
            rows = conn.execute('''
                SELECT * FROM edge_activity_logs
                ORDER BY id DESC
                LIMIT ?
            ''', (limit,)).fetchall()
        finally:
            conn.close()
        return [dict(row) for row in rows]


def _utc_iso(moment: datetime) -> str:
    return moment.isoformat(timespec="microseconds").replace("+00:00", "Z")


def _utc_now() -> str:
    return _utc_iso(datetime.now(timezone.utc))


# Singleton instance
_store_instance: Optional[LocalStore] = None

def get_local_store(db_path=None, **options) -> LocalStore:
    """Get or create the singleton LocalStore instance."""
    global _store_instance
    if _store_instance is None:
        _store_instance = LocalStore(db_path, **options)
    return _store_instance

"""
local_db.py - SQLite Queue Store for Offline Dispatch/Receive

This module persists dispatch and receive operations submitted while the
shop device is offline, so they survive a restart and can be replayed
against the remote database once the connection comes back.
"""

import sqlite3
import json
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Dict, Optional
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("LocalDB")

# Database path
BASE_DIR = Path(__file__).parent.parent.parent
DATA_DIR = Path(os.getenv("GOODS_TRACKER_DATA_DIR", BASE_DIR / "data"))
DB_FILENAME = "goods_tracker.db"

DISPATCH_QUEUE = "dispatch_queue"
RECEIVE_QUEUE = "receive_queue"


class LocalStoreError(Exception):
    """Base class for local queue storage failures."""


class StorageUnavailable(LocalStoreError):
    """The SQLite file could not be opened or its schema created."""


class QueueWriteFailure(LocalStoreError):
    """An enqueue or mark-synced write did not reach the disk."""


class StorageReadFailure(LocalStoreError):
    """Listing pending items failed."""


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class QueuedDispatch:
    local_id: int
    seq: int
    payload: Dict
    queued_at: str
    synced: bool = False


@dataclass
class QueuedReceive:
    local_id: int
    seq: int
    movement_id: str
    receive_payload: Dict
    queued_at: str
    synced: bool = False


class LocalDatabase:
    """SQLite queue store for offline dispatch and receive operations."""

    def __init__(self, data_dir: Optional[Path] = None):
        self.data_dir = Path(data_dir) if data_dir else DATA_DIR
        self.db_path = str(self.data_dir / DB_FILENAME)
        self._initialized = False

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def initialize(self):
        """
        Open the database file and create the queue tables if missing.

        Safe to call repeatedly. Raises StorageUnavailable when the data
        directory or the database file cannot be used.
        """
        if self._initialized:
            return

        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            conn = self._get_connection()
        except (OSError, sqlite3.Error) as e:
            logger.error(f"Failed to open local database at {self.db_path}: {e}")
            raise StorageUnavailable(str(e)) from e

        try:
            cursor = conn.cursor()

            # Outgoing dispatches
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS dispatch_queue (
                    local_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    seq INTEGER NOT NULL,
                    payload TEXT NOT NULL,
                    queued_at TEXT NOT NULL,
                    synced INTEGER NOT NULL DEFAULT 0,
                    synced_at TEXT DEFAULT NULL
                )
            ''')

            # Outgoing receipts
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS receive_queue (
                    local_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    seq INTEGER NOT NULL,
                    movement_id TEXT NOT NULL,
                    receive_payload TEXT NOT NULL,
                    queued_at TEXT NOT NULL,
                    synced INTEGER NOT NULL DEFAULT 0,
                    synced_at TEXT DEFAULT NULL
                )
            ''')

            # Sync Activity Logs Table
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS sync_activity_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_type TEXT NOT NULL,
                    status TEXT DEFAULT 'pending',
                    details TEXT,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
            ''')

            cursor.execute('CREATE INDEX IF NOT EXISTS idx_dq_pending ON dispatch_queue(synced, seq)')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_rq_pending ON receive_queue(synced, seq)')

            conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Failed to create queue schema: {e}")
            raise StorageUnavailable(str(e)) from e
        finally:
            conn.close()

        self._initialized = True
        logger.info(f"SQLite queue store initialized at: {self.db_path}")

    # ==================== Enqueue ====================

    def enqueue_dispatch(self, payload: Dict) -> int:
        """
        Queue a dispatch for later replay.

        Args:
            payload: Full dispatch record as it should be created remotely

        Returns:
            local_id of the new queue row

        Raises:
            QueueWriteFailure: the row was not stored
        """
        self.initialize()
        try:
            conn = self._get_connection()
        except sqlite3.Error as e:
            raise QueueWriteFailure(str(e)) from e

        try:
            # seq is taken in the same statement so two writers never share one
            cursor = conn.execute('''
                INSERT INTO dispatch_queue (seq, payload, queued_at, synced)
                SELECT COALESCE(MAX(seq), 0) + 1, ?, ?, 0 FROM dispatch_queue
            ''', (json.dumps(payload), utc_now_iso()))
            local_id = cursor.lastrowid
            conn.commit()
        except (sqlite3.Error, TypeError, ValueError) as e:
            conn.rollback()
            logger.error(f"Failed to queue dispatch: {e}")
            raise QueueWriteFailure(f"Dispatch was not saved offline: {e}") from e
        finally:
            conn.close()

        logger.info(f"Dispatch queued for offline sync: {local_id}")
        self.record_activity('dispatch_queued', 'completed', f"local_id={local_id}")
        return local_id

    def enqueue_receive(self, movement_id: str, receive_payload: Dict) -> int:
        """Queue a receipt for an existing remote movement. Same contract as enqueue_dispatch."""
        self.initialize()
        try:
            conn = self._get_connection()
        except sqlite3.Error as e:
            raise QueueWriteFailure(str(e)) from e

        try:
            cursor = conn.execute('''
                INSERT INTO receive_queue (seq, movement_id, receive_payload, queued_at, synced)
                SELECT COALESCE(MAX(seq), 0) + 1, ?, ?, ?, 0 FROM receive_queue
            ''', (str(movement_id), json.dumps(receive_payload), utc_now_iso()))
            local_id = cursor.lastrowid
            conn.commit()
        except (sqlite3.Error, TypeError, ValueError) as e:
            conn.rollback()
            logger.error(f"Failed to queue receive: {e}")
            raise QueueWriteFailure(f"Receipt was not saved offline: {e}") from e
        finally:
            conn.close()

        logger.info(f"Receive queued for offline sync: {local_id} (movement {movement_id})")
        self.record_activity('receive_queued', 'completed', f"local_id={local_id} movement={movement_id}")
        return local_id

    # ==================== Pending Items ====================

    def _fetch_pending(self, table: str) -> List[sqlite3.Row]:
        self.initialize()
        try:
            conn = self._get_connection()
            try:
                cursor = conn.execute(
                    f"SELECT * FROM {table} WHERE synced = 0 ORDER BY seq ASC, local_id ASC"
                )
                return cursor.fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.error(f"Failed to read pending items from {table}: {e}")
            raise StorageReadFailure(str(e)) from e

    @staticmethod
    def _decode(table: str, row, column: str):
        try:
            return json.loads(row[column])
        except (TypeError, ValueError) as e:
            logger.error(f"Corrupt {column} in {table} row {row['local_id']}: {e}")
            raise StorageReadFailure(f"Corrupt {column} in {table} row {row['local_id']}") from e

    def list_pending_dispatches(self) -> List[QueuedDispatch]:
        """Get all unsynced dispatches in insertion order."""
        return [
            QueuedDispatch(
                local_id=row['local_id'],
                seq=row['seq'],
                payload=self._decode(DISPATCH_QUEUE, row, "payload"),
                queued_at=row['queued_at'],
                synced=bool(row['synced']),
            )
            for row in self._fetch_pending(DISPATCH_QUEUE)
        ]

    def list_pending_receives(self) -> List[QueuedReceive]:
        """Get all unsynced receipts in insertion order."""
        return [
            QueuedReceive(
                local_id=row['local_id'],
                seq=row['seq'],
                movement_id=row['movement_id'],
                receive_payload=self._decode(RECEIVE_QUEUE, row, "receive_payload"),
                queued_at=row['queued_at'],
                synced=bool(row['synced']),
            )
            for row in self._fetch_pending(RECEIVE_QUEUE)
        ]

    def _mark_synced(self, table: str, local_id: int):
        self.initialize()
        try:
            conn = self._get_connection()
            try:
                # A row already removed by cleanup simply matches nothing
                conn.execute(
                    f"UPDATE {table} SET synced = 1, synced_at = ? WHERE local_id = ?",
                    (utc_now_iso(), local_id)
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.error(f"Failed to mark {table} item {local_id} as synced: {e}")
            raise QueueWriteFailure(str(e)) from e

    def mark_dispatch_synced(self, local_id: int):
        """Flag one dispatch as accepted by the remote store."""
        self._mark_synced(DISPATCH_QUEUE, local_id)

    def mark_receive_synced(self, local_id: int):
        """Flag one receipt as accepted by the remote store."""
        self._mark_synced(RECEIVE_QUEUE, local_id)

    def clear_synced_items(self) -> int:
        """
        Delete synced rows from both queues.

        Housekeeping only: failures are logged and reported as 0 deleted.

        Returns:
            Number of rows deleted
        """
        try:
            self.initialize()
            conn = self._get_connection()
            try:
                deleted = conn.execute("DELETE FROM dispatch_queue WHERE synced = 1").rowcount
                deleted += conn.execute("DELETE FROM receive_queue WHERE synced = 1").rowcount
                conn.commit()
            finally:
                conn.close()
        except LocalStoreError as e:
            logger.error(f"Cleanup skipped, store unavailable: {e}")
            return 0
        except sqlite3.Error as e:
            logger.error(f"Failed to clear synced items: {e}")
            self.record_activity('cleanup_failed', 'failed', str(e))
            return 0

        if deleted:
            logger.info(f"Cleared {deleted} synced items from queue")
        return deleted

    def get_pending_count(self) -> Dict[str, int]:
        """Get count of pending dispatches and receives."""
        self.initialize()
        try:
            conn = self._get_connection()
            try:
                dispatches = conn.execute(
                    "SELECT COUNT(*) FROM dispatch_queue WHERE synced = 0"
                ).fetchone()[0]
                receives = conn.execute(
                    "SELECT COUNT(*) FROM receive_queue WHERE synced = 0"
                ).fetchone()[0]
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StorageReadFailure(str(e)) from e
        return {"dispatches": dispatches, "receives": receives}

    # ==================== Activity Logging ====================

    def log_activity(self, event_type: str, status: str = 'pending', details: str = None):
        """Log a sync activity event."""
        conn = self._get_connection()
        try:
            conn.execute('''
                INSERT INTO sync_activity_logs (event_type, status, details)
                VALUES (?, ?, ?)
            ''', (event_type, status, details))
            conn.commit()
        finally:
            conn.close()

    def record_activity(self, event_type: str, status: str, details: str = None):
        # Activity rows are diagnostics; a failure here must not undo a queue write
        try:
            self.log_activity(event_type, status, details)
        except sqlite3.Error as e:
            logger.warning(f"Could not record activity '{event_type}': {e}")

    def get_recent_logs(self, limit: int = 50) -> List[Dict]:
        """Get recent activity logs, newest first."""
        self.initialize()
        conn = self._get_connection()
        try:
            cursor = conn.execute('''
                SELECT * FROM sync_activity_logs
                ORDER BY id DESC
                LIMIT ?
            ''', (limit,))
            return [dict(row) for row in cursor.fetchall()]
        finally:
            conn.close()

"""
sync_manager.py - Store-and-Forward Sync Manager

This module replays queued offline dispatches and receipts against the
remote database when the connection is back.
"""

import logging
from typing import Dict

from .api_client import MOVEMENTS_TABLE
from .local_db import LocalDatabase, LocalStoreError, utc_now_iso

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("SyncManager")

# Copied only when the key was set locally; omitted otherwise
CORE_FIELDS = (
    'dispatch_date', 'bundles_count', 'item', 'destination',
    'sent_by', 'fare_payment', 'accompanying_person', 'auto_name',
)
# Copied to the insert only when set locally (not None)
COUNT_FIELDS = ('shirt_bundles', 'pant_bundles')
# Copied only when non-empty
DISPLAY_FIELDS = ('fare_display_msg', 'fare_payee_tag', 'item_summary_display')


def build_dispatch_insert(data: Dict) -> Dict:
    """Translate a queued dispatch payload into a goods_movements insert row."""
    insert_data = {field: data[field] for field in CORE_FIELDS if field in data}
    insert_data["movement_type"] = data.get('movement_type') or 'bundles'
    insert_data["source"] = data.get('source') or 'godown'
    insert_data["status"] = data.get('status') or 'dispatched'

    for field in COUNT_FIELDS:
        if data.get(field) is not None:
            insert_data[field] = data[field]
    for field in DISPLAY_FIELDS:
        if data.get(field):
            insert_data[field] = data[field]
    if data.get('condition_notes'):
        insert_data['condition_notes'] = data['condition_notes']
        insert_data['dispatch_notes'] = data['condition_notes']

    return insert_data


def build_receive_patch(receive_data: Dict) -> Dict:
    """Translate a queued receipt into the goods_movements update patch."""
    return {
        "received_at": receive_data.get('received_at'),
        "received_by": receive_data.get('received_by'),
        "receive_notes": receive_data.get('condition_notes') or None,
        "status": "received",
        "updated_at": utc_now_iso(),
    }


class SyncManager:
    """
    Drains the offline queues against the remote store.

    Dispatches are replayed before receipts, each table in insertion
    order, one item at a time. A failed item is logged and left pending
    for the next drain; it never stops the rest of the batch.
    """

    def __init__(self, db: LocalDatabase, remote):
        self.db = db
        self.remote = remote
        self.is_syncing = False

    async def drain_queues(self) -> Dict:
        """
        Replay all pending queue items once.

        Returns:
            Dict with sync results
        """
        # Checked and set before the first await: a second caller sees it
        if self.is_syncing:
            logger.warning("Sync already in progress, skipping")
            return {"status": "skipped", "reason": "sync_in_progress"}

        self.is_syncing = True
        try:
            return await self._drain()
        finally:
            self.is_syncing = False

    async def _drain(self) -> Dict:
        result = {
            "status": "success",
            "dispatches_synced": 0,
            "receives_synced": 0,
            "dispatches_failed": 0,
            "receives_failed": 0,
            "cleaned_up": 0,
        }

        try:
            pending_dispatches = self.db.list_pending_dispatches()
        except LocalStoreError as e:
            return self._batch_failed(e)

        if pending_dispatches:
            logger.info(f"Syncing {len(pending_dispatches)} pending dispatches...")
            self.db.record_activity('sync_start', 'pending', f"{len(pending_dispatches)} dispatches")

        for item in pending_dispatches:
            ok, response = await self._replay(
                self.remote.insert, MOVEMENTS_TABLE, build_dispatch_insert(item.payload)
            )
            if ok and self._mark(self.db.mark_dispatch_synced, item.local_id):
                result["dispatches_synced"] += 1
            else:
                logger.error(f"Failed to sync dispatch {item.local_id}: {response}")
                result["dispatches_failed"] += 1

        try:
            pending_receives = self.db.list_pending_receives()
        except LocalStoreError as e:
            self.db.clear_synced_items()
            return self._batch_failed(e, result)

        if pending_receives:
            logger.info(f"Syncing {len(pending_receives)} pending receives...")
            self.db.record_activity('sync_start', 'pending', f"{len(pending_receives)} receives")

        for item in pending_receives:
            ok, response = await self._replay(
                self.remote.update, MOVEMENTS_TABLE, item.movement_id, build_receive_patch(item.receive_payload)
            )
            if ok and self._mark(self.db.mark_receive_synced, item.local_id):
                result["receives_synced"] += 1
            else:
                logger.error(f"Failed to sync receive {item.local_id} (movement {item.movement_id}): {response}")
                result["receives_failed"] += 1

        result["cleaned_up"] = self.db.clear_synced_items()

        if pending_dispatches or pending_receives:
            self.db.record_activity(
                'sync_complete',
                'completed' if not (result["dispatches_failed"] or result["receives_failed"]) else 'partial',
                f"dispatches {result['dispatches_synced']}/{len(pending_dispatches)}, "
                f"receives {result['receives_synced']}/{len(pending_receives)}"
            )
            logger.info(
                f"Sync complete: {result['dispatches_synced']} dispatches, "
                f"{result['receives_synced']} receives synced"
            )
        else:
            logger.info("No pending items to sync")

        return result

    async def _replay(self, call, *args):
        try:
            return await call(*args)
        except Exception as e:
            # Network drops surface here; the item stays pending
            return False, str(e) or type(e).__name__

    def _mark(self, mark_synced, local_id: int) -> bool:
        # The remote write landed; if the flag cannot be stored the item is
        # replayed next time, which is the at-least-once contract.
        try:
            mark_synced(local_id)
            return True
        except LocalStoreError as e:
            logger.error(f"Remote write for {local_id} succeeded but marking failed: {e}")
            return False

    def _batch_failed(self, error: Exception, partial: Dict = None) -> Dict:
        logger.error(f"Sync failed, could not read queue: {error}")
        self.db.record_activity('sync_failed', 'pending', str(error))
        result = dict(partial or {})
        result.update({"status": "error", "reason": str(error)})
        return result

    def get_sync_status(self) -> Dict:
        """Get current sync status."""
        return {
            "is_syncing": self.is_syncing,
            "pending_count": self.db.get_pending_count(),
            "last_sync_logs": self.db.get_recent_logs(5)
        }

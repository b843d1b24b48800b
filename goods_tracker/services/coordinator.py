"""
coordinator.py - Offline Sync Coordinator

The single object the UI layer talks to. It decides whether a dispatch or
receipt has to be queued, keeps the pending counts and sync flags the UI
shows as badges, and joins the read cache with optimistic shadow rows
for display.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Set

from .api_client import MOVEMENTS_SELECT, MOVEMENTS_TABLE, STAFF_TABLE
from .local_db import LocalDatabase, LocalStoreError, StorageUnavailable, utc_now_iso
from .offline_mode import ConnectivityObserver
from .read_cache import ReadCache
from .sync_manager import SyncManager

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("SyncCoordinator")

SHADOW_PREFIX = "local-"


class InvalidSubmission(ValueError):
    """A submission that could never be replayed against the server."""


class ShadowReferenceError(InvalidSubmission):
    """A receipt referenced the synthetic id of a not-yet-synced dispatch."""


def dispatch_shadow_id(local_id: int) -> str:
    return f"{SHADOW_PREFIX}dispatch-{local_id}"


def is_shadow_id(movement_id) -> bool:
    return str(movement_id).startswith(SHADOW_PREFIX)


def flatten_movement(row: Dict) -> Dict:
    """Turn the embedded staff joins into sent_by_name/received_by_name."""
    movement = dict(row)
    sent_by_staff = movement.pop('sent_by_staff', None) or {}
    received_by_staff = movement.pop('received_by_staff', None) or {}
    movement['sent_by_name'] = sent_by_staff.get('name')
    movement['received_by_name'] = received_by_staff.get('name')
    return movement


class SyncCoordinator:
    """
    Facade over the queue store, read cache, connectivity observer and sync manager.

    Online writes are not performed here: when the device is online the
    submit methods answer ``queued=False`` and the caller writes directly.
    """

    def __init__(self, db: LocalDatabase, cache: ReadCache, observer: ConnectivityObserver,
                 remote, sync_manager: Optional[SyncManager] = None):
        self.db = db
        self.cache = cache
        self.observer = observer
        self.remote = remote
        self.sync_manager = sync_manager or SyncManager(db, remote)

        self.pending_count: Dict[str, int] = {"dispatches": 0, "receives": 0}
        self.last_sync_error: Optional[str] = None
        self.storage_error: Optional[str] = None

        # Optimistic rows keyed by queue local_id, memory only
        self._shadow_dispatches: Dict[int, Dict] = {}
        self._shadow_receives: Dict[int, Dict] = {}

        self._state_callbacks: List[Callable] = []
        self._notice_callbacks: List[Callable] = []
        self._tasks: Set[asyncio.Task] = set()

        self._unsubscribe = [
            observer.on_reconnect(self._handle_reconnect),
            observer.on_disconnect(self._handle_disconnect),
        ]

    # ==================== Lifecycle ====================

    def start(self):
        """Open the queue store and load the pending counts."""
        try:
            self.db.initialize()
        except StorageUnavailable as e:
            # Keep running: reads still work, every offline submit will raise
            self.storage_error = str(e)
            logger.error(f"Offline queue unavailable: {e}")
            self._notify("error", "Offline storage is unavailable. Offline changes cannot be saved.")
            return
        self._update_pending_count()
        self._emit_state()

    def close(self):
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []
        self.observer.close()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        self._state_callbacks.clear()
        self._notice_callbacks.clear()

    # ==================== Reactive State ====================

    @property
    def is_offline(self) -> bool:
        return not self.observer.is_online()

    @property
    def is_syncing(self) -> bool:
        return self.sync_manager.is_syncing

    def get_status(self) -> Dict:
        return {
            "is_offline": self.is_offline,
            "pending_count": dict(self.pending_count),
            "is_syncing": self.is_syncing,
            "last_sync_error": self.last_sync_error,
            "storage_error": self.storage_error,
            "last_sync_time": self.cache.get_last_sync_time(),
            "connectivity": self.observer.get_status(),
        }

    def on_state_change(self, callback: Callable[[Dict], None]) -> Callable[[], None]:
        """Callback signature: (status: dict). Returns an unsubscribe callable."""
        return self._subscribe(self._state_callbacks, callback)

    def on_notice(self, callback: Callable[[str, str], None]) -> Callable[[], None]:
        """Callback signature: (level: str, message: str). Advisory messages for toasts."""
        return self._subscribe(self._notice_callbacks, callback)

    @staticmethod
    def _subscribe(callbacks: List[Callable], callback: Callable) -> Callable[[], None]:
        callbacks.append(callback)

        def unsubscribe():
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def _emit_state(self):
        status = self.get_status()
        for callback in list(self._state_callbacks):
            try:
                callback(status)
            except Exception as e:
                logger.error(f"State callback error: {e}")

    def _notify(self, level: str, message: str):
        logger.info(f"[{level}] {message}")
        for callback in list(self._notice_callbacks):
            try:
                callback(level, message)
            except Exception as e:
                logger.error(f"Notice callback error: {e}")

    def _update_pending_count(self):
        try:
            self.pending_count = self.db.get_pending_count()
        except LocalStoreError as e:
            logger.error(f"Failed to get pending count: {e}")

    # ==================== Submissions ====================

    def submit_dispatch(self, movement_draft: Dict) -> Dict:
        """
        Queue a dispatch if the device is offline.

        Returns:
            {"queued": False} when online (caller writes to the server itself),
            otherwise {"queued": True, "local_id": ..., "shadow": {...}}

        Raises:
            QueueWriteFailure / StorageUnavailable: the dispatch was NOT saved
        """
        if not isinstance(movement_draft, dict):
            raise InvalidSubmission("Dispatch must be an object")
        if self.observer.is_online():
            return {"queued": False}

        payload = {"status": "dispatched", **movement_draft}
        local_id = self.db.enqueue_dispatch(payload)

        shadow = {
            **payload,
            "id": dispatch_shadow_id(local_id),
            "created_at": utc_now_iso(),
            "is_shadow": True,
        }
        self._shadow_dispatches[local_id] = shadow

        self._update_pending_count()
        self._notify("info", "Dispatch saved offline. Will sync when connected.")
        self._emit_state()
        return {"queued": True, "local_id": local_id, "shadow": shadow}

    def submit_receive(self, movement_id: str, receive_draft: Dict) -> Dict:
        """Queue a receipt if the device is offline. Same contract as submit_dispatch."""
        if movement_id is None or not str(movement_id).strip():
            raise InvalidSubmission("Receipt is missing movement_id")
        if not isinstance(receive_draft, dict):
            raise InvalidSubmission("Receipt must be an object")
        if is_shadow_id(movement_id):
            raise ShadowReferenceError(
                f"Movement {movement_id} has not reached the server yet; receive it after it syncs"
            )

        if self.observer.is_online():
            return {"queued": False}

        local_id = self.db.enqueue_receive(movement_id, receive_draft)
        self._shadow_receives[local_id] = {"movement_id": str(movement_id), **receive_draft}

        self._update_pending_count()
        self._notify("info", "Receipt saved offline. Will sync when connected.")
        self._emit_state()
        return {"queued": True, "local_id": local_id}

    # ==================== Sync ====================

    async def sync_now(self) -> Dict:
        """Drain the queues once if online; a call during a running drain is skipped."""
        if not self.observer.is_online():
            return {"status": "skipped", "reason": "offline"}
        if self.sync_manager.is_syncing:
            return {"status": "skipped", "reason": "sync_in_progress"}

        self.last_sync_error = None
        result = await self.sync_manager.drain_queues()

        if result["status"] == "error":
            self.last_sync_error = result.get("reason") or "Sync failed"
            self._notify("error", "Failed to sync some changes. Will retry.")
        elif result["status"] == "success":
            dispatches = result["dispatches_synced"]
            receives = result["receives_synced"]
            still_pending = result["dispatches_failed"] + result["receives_failed"]
            if dispatches or receives:
                self._notify("success", f"Synced {dispatches} dispatches and {receives} receives")
            if still_pending:
                self._notify("info", f"{still_pending} changes still pending. Will retry.")

        self._update_pending_count()
        self._emit_state()
        return result

    # ==================== Read Path ====================

    def refresh_cache(self, movements: List[Dict], staff: List[Dict]):
        """Overwrite the cached snapshot after a successful full remote load."""
        self.cache.cache_movements(movements)
        self.cache.cache_staff(staff)
        self._drop_superseded_shadows()

    def get_cached_data(self) -> Dict:
        return {
            "movements": self.cache.get_cached_movements(),
            "staff": self.cache.get_cached_staff(),
        }

    async def load_remote(self) -> Dict:
        """
        Full load of staff and movements.

        Refreshes the cache on success; falls back to the cached snapshot
        when offline or when either query fails.
        """
        if self.observer.is_online():
            ok_staff, staff = await self.remote.select_all(STAFF_TABLE, order="created_at.desc")
            ok_movements, rows = await self.remote.select_all(
                MOVEMENTS_TABLE, select=MOVEMENTS_SELECT, order="dispatch_date.desc"
            )
            if ok_staff and ok_movements:
                movements = [flatten_movement(row) for row in rows]
                self.refresh_cache(movements, staff)
                self._emit_state()
                return {"source": "remote", "movements": movements, "staff": staff}

            logger.error(f"Remote load failed: staff={staff if not ok_staff else 'ok'}, "
                         f"movements={rows if not ok_movements else 'ok'}")
            self._notify("warning", "Failed to load data. Showing last saved copy.")

        return {"source": "cache", **self.get_cached_data()}

    def view_movements(self, movements: Optional[List[Dict]]) -> List[Dict]:
        """
        Authoritative rows with pending shadows applied on top.

        Pending receipts overlay the row they refer to; pending dispatches
        are listed first, newest first.
        """
        receives_by_movement = {}
        for local_id in sorted(self._shadow_receives):
            shadow = self._shadow_receives[local_id]
            receives_by_movement[shadow["movement_id"]] = shadow

        merged = []
        for movement in movements or []:
            shadow = receives_by_movement.get(str(movement.get('id')))
            if shadow:
                movement = {
                    **movement,
                    "status": "received",
                    "received_at": shadow.get("received_at"),
                    "received_by": shadow.get("received_by"),
                    "received_by_name": shadow.get("received_by_name"),
                    "receive_notes": shadow.get("condition_notes"),
                    "is_shadow": True,
                }
            merged.append(movement)

        pending = [self._shadow_dispatches[k] for k in sorted(self._shadow_dispatches, reverse=True)]
        return pending + merged

    def _drop_superseded_shadows(self):
        # The reload is authoritative: only rows still waiting in the queue stay shadowed
        try:
            pending_dispatches = {item.local_id for item in self.db.list_pending_dispatches()}
            pending_receives = {item.local_id for item in self.db.list_pending_receives()}
        except LocalStoreError as e:
            logger.error(f"Could not reconcile shadows: {e}")
            return

        for local_id in list(self._shadow_dispatches):
            if local_id not in pending_dispatches:
                del self._shadow_dispatches[local_id]
        for local_id in list(self._shadow_receives):
            if local_id not in pending_receives:
                del self._shadow_receives[local_id]

    # ==================== Connectivity Transitions ====================

    def _handle_reconnect(self):
        self._notify("success", "Back online! Syncing pending changes...")
        self._spawn(self._catch_up())

    def _handle_disconnect(self):
        self._notify("warning", "You are offline. Changes will be synced when connected.")
        self._emit_state()

    async def _catch_up(self):
        await self.sync_now()
        await self.load_remote()

    def _spawn(self, coro):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.warning("No running event loop; reconnect sync not scheduled")
            return None
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

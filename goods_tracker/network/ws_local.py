"""
ws_local.py - Local WebSocket Bridge for the Shop UI

The UI connects here to submit dispatches/receipts and to receive live
status (offline flag, pending counts, sync state) and advisory notices.
Submissions made while offline are stored in the local queue.
"""

import asyncio
import json
import logging
from typing import Dict, Optional

import websockets

from ..services.coordinator import SyncCoordinator, InvalidSubmission
from ..services.local_db import LocalStoreError

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("LocalBridge")


class LocalBridge:
    """WebSocket front for one SyncCoordinator."""

    def __init__(self, coordinator: SyncCoordinator):
        self.coordinator = coordinator
        self.clients = set()
        self._tasks = set()
        self._unsubscribe = [
            coordinator.on_state_change(lambda status: self._schedule({"type": "status", "data": status})),
            coordinator.on_notice(lambda level, message: self._schedule(
                {"type": "notice", "level": level, "message": message}
            )),
        ]

    def _schedule(self, message: Dict):
        if not self.clients:
            return
        try:
            task = asyncio.get_running_loop().create_task(self.broadcast(message))
        except RuntimeError:
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def broadcast(self, message: Dict):
        """Send one message to all connected clients."""
        if not self.clients:
            return

        payload = json.dumps(message, default=str)
        await asyncio.gather(
            *[client.send(payload) for client in list(self.clients)],
            return_exceptions=True
        )

    async def handle_message(self, data: Dict) -> Optional[Dict]:
        """
        Handle one decoded UI message and build the reply.

        Supports:
        - dispatch / receive (queued when offline)
        - sync_now
        - get_status / get_pending / get_cached
        - ping
        """
        msg_type = data.get("type")
        logger.info(f"Received: {msg_type}")

        # ==================== Dispatch / Receive ====================
        if msg_type in ("dispatch", "receive"):
            try:
                if msg_type == "dispatch":
                    result = self.coordinator.submit_dispatch(data.get("movement", {}))
                else:
                    result = self.coordinator.submit_receive(
                        data.get("movement_id"), data.get("receive", {})
                    )
            except InvalidSubmission as e:
                return {"type": "queue_error", "error": str(e), "code": "INVALID_REFERENCE"}
            except LocalStoreError as e:
                return {
                    "type": "queue_error",
                    "error": f"Not saved offline: {e}",
                    "code": "STORAGE_FAILED"
                }

            if not result["queued"]:
                return {
                    "type": f"{msg_type}_ack",
                    "status": "use_server",
                    "message": "Device is online - write to the server directly"
                }
            return {
                "type": f"{msg_type}_ack",
                "status": "stored_locally",
                "local_id": result["local_id"],
                "shadow": result.get("shadow"),
                "message": "Saved. Will sync when online."
            }

        # ==================== Sync ====================
        elif msg_type == "sync_now":
            return {"type": "sync_result", "data": await self.coordinator.sync_now()}

        # ==================== Status / Cache ====================
        elif msg_type == "get_status":
            return {"type": "status", "data": self.coordinator.get_status()}

        elif msg_type == "get_pending":
            return {"type": "pending_info", "count": self.coordinator.pending_count}

        elif msg_type == "get_cached":
            cached = self.coordinator.get_cached_data()
            cached["movements"] = self.coordinator.view_movements(cached["movements"])
            return {"type": "cached_data", "data": cached}

        # ==================== Ping/Pong ====================
        elif msg_type == "ping":
            return {"type": "pong", "timestamp": data.get("timestamp")}

        logger.warning(f"Unknown message type: {msg_type}")
        return {"type": "error", "error": f"Unknown message type: {msg_type}"}

    async def handler(self, websocket):
        """Serve one UI connection."""
        logger.info(f"Client connected: {websocket.remote_address}")
        self.clients.add(websocket)

        try:
            await websocket.send(json.dumps(
                {"type": "status", "data": self.coordinator.get_status()}, default=str
            ))

            async for message in websocket:
                try:
                    data = json.loads(message)
                except json.JSONDecodeError:
                    logger.error("Invalid JSON received")
                    await websocket.send(json.dumps({
                        "type": "error",
                        "error": "Invalid JSON format"
                    }))
                    continue

                reply = await self.handle_message(data)
                if reply is not None:
                    await websocket.send(json.dumps(reply, default=str))

        except websockets.exceptions.ConnectionClosed:
            logger.info("Client disconnected")
        finally:
            self.clients.discard(websocket)

    async def serve(self, host: str = "0.0.0.0", port: int = 8002):
        """
        Start the Local WebSocket Bridge server and run until cancelled.

        Args:
            port: Port to listen on (default: 8002)
        """
        async with websockets.serve(self.handler, host, port):
            logger.info(f"Local WebSocket Bridge started on ws://{host}:{port}")
            await asyncio.Future()

    def close(self):
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []

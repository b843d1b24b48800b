"""
Offline Kiosk App - Local HTTP API for the Shop UI

This FastAPI application lets the shop screen keep working while the
device is offline. It provides:
- Connectivity / pending queue status
- Cached movements and staff (with pending offline changes overlaid)
- Offline dispatch and receive submission
- A manual "sync now" trigger

Serve on port 8001 (different from setup wizard on 8080)
"""

from fastapi import FastAPI, HTTPException
import logging

from ..services.coordinator import SyncCoordinator, InvalidSubmission
from ..services.local_db import LocalStoreError

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("OfflineKiosk")


def create_app(coordinator: SyncCoordinator) -> FastAPI:
    """Build the kiosk API bound to one coordinator."""
    app = FastAPI(title="Goods Tracker Offline Kiosk")

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "ok", "mode": "offline" if coordinator.is_offline else "online"}

    @app.get("/api/status")
    async def get_status():
        """Get current offline/sync status."""
        return coordinator.get_status()

    @app.get("/api/cached")
    async def get_cached():
        return coordinator.get_cached_data()

    @app.get("/api/movements")
    async def get_movements():
        """Last loaded movements with pending offline changes applied."""
        cached = coordinator.get_cached_data()
        return {
            "movements": coordinator.view_movements(cached["movements"]),
            "staff": cached["staff"],
            "last_sync_time": coordinator.cache.get_last_sync_time(),
        }

    @app.post("/api/dispatch")
    async def submit_dispatch(data: dict):
        try:
            return coordinator.submit_dispatch(data)
        except LocalStoreError as e:
            logger.error(f"Dispatch not saved: {e}")
            raise HTTPException(status_code=503, detail=f"Not saved offline: {e}")

    @app.post("/api/receive/{movement_id}")
    async def submit_receive(movement_id: str, data: dict):
        try:
            return coordinator.submit_receive(movement_id, data)
        except InvalidSubmission as e:
            raise HTTPException(status_code=400, detail=str(e))
        except LocalStoreError as e:
            logger.error(f"Receive not saved: {e}")
            raise HTTPException(status_code=503, detail=f"Not saved offline: {e}")

    @app.post("/api/sync")
    async def sync_now():
        return await coordinator.sync_now()

    return app


async def start_offline_kiosk(coordinator: SyncCoordinator, port: int = 8001):
    """Serve the kiosk API on the running event loop."""
    import uvicorn
    logger.info(f"Starting Offline Kiosk on http://0.0.0.0:{port}")
    config = uvicorn.Config(create_app(coordinator), host="0.0.0.0", port=port, log_level="info")
    await uvicorn.Server(config).serve()

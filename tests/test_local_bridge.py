"""Tests for the WebSocket bridge message handling."""

import asyncio
from unittest.mock import patch

from goods_tracker.network.ws_local import LocalBridge
from goods_tracker.services.local_db import QueueWriteFailure
from goods_tracker.services.offline_mode import ConnectionMode

from conftest import make_dispatch, make_receive


def handle(bridge, message):
    return asyncio.run(bridge.handle_message(message))


def test_offline_dispatch_is_stored_locally(coordinator):
    bridge = LocalBridge(coordinator)
    reply = handle(bridge, {"type": "dispatch", "movement": make_dispatch()})
    assert reply["type"] == "dispatch_ack"
    assert reply["status"] == "stored_locally"
    assert reply["shadow"]["id"].startswith("local-")


def test_online_dispatch_goes_to_server(coordinator, observer):
    observer.current_mode = ConnectionMode.ONLINE
    bridge = LocalBridge(coordinator)
    reply = handle(bridge, {"type": "receive", "movement_id": "m1", "receive": make_receive()})
    assert reply["status"] == "use_server"


def test_storage_failure_reply(coordinator, db):
    bridge = LocalBridge(coordinator)
    with patch.object(db, "enqueue_dispatch", side_effect=QueueWriteFailure("disk full")):
        reply = handle(bridge, {"type": "dispatch", "movement": make_dispatch()})
    assert reply["type"] == "queue_error"
    assert reply["code"] == "STORAGE_FAILED"


def test_shadow_reference_reply(coordinator):
    bridge = LocalBridge(coordinator)
    reply = handle(bridge, {"type": "receive", "movement_id": "local-dispatch-1", "receive": make_receive()})
    assert reply["code"] == "INVALID_REFERENCE"


def test_receive_without_movement_id_reply(coordinator, db):
    bridge = LocalBridge(coordinator)
    reply = handle(bridge, {"type": "receive", "receive": {}})
    assert reply["type"] == "queue_error"
    assert reply["code"] == "INVALID_REFERENCE"
    assert db.list_pending_receives() == []

    reply = handle(bridge, {"type": "dispatch", "movement": "bad"})
    assert reply["code"] == "INVALID_REFERENCE"
    assert db.get_pending_count() == {"dispatches": 0, "receives": 0}


def test_status_pending_and_cached(coordinator):
    bridge = LocalBridge(coordinator)
    handle(bridge, {"type": "dispatch", "movement": make_dispatch()})

    assert handle(bridge, {"type": "get_pending"})["count"] == {"dispatches": 1, "receives": 0}
    assert handle(bridge, {"type": "get_status"})["data"]["is_offline"] is True
    cached = handle(bridge, {"type": "get_cached"})["data"]
    assert len(cached["movements"]) == 1
    assert cached["staff"] is None


def test_sync_now_offline(coordinator):
    bridge = LocalBridge(coordinator)
    reply = handle(bridge, {"type": "sync_now"})
    assert reply == {"type": "sync_result", "data": {"status": "skipped", "reason": "offline"}}


def test_ping_and_unknown(coordinator):
    bridge = LocalBridge(coordinator)
    assert handle(bridge, {"type": "ping", "timestamp": 5}) == {"type": "pong", "timestamp": 5}
    assert handle(bridge, {"type": "nope"})["type"] == "error"


def test_notices_are_broadcast(coordinator):
    bridge = LocalBridge(coordinator)
    sent = []

    class FakeClient:
        async def send(self, payload):
            sent.append(payload)

    async def scenario():
        bridge.clients.add(FakeClient())
        coordinator.submit_dispatch(make_dispatch())
        await asyncio.gather(*bridge._tasks)

    asyncio.run(scenario())
    assert any('"notice"' in payload for payload in sent)
    assert any('"status"' in payload for payload in sent)

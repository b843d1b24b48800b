"""Shared pytest fixtures."""

import asyncio
import itertools

import pytest

from goods_tracker.services.coordinator import SyncCoordinator
from goods_tracker.services.local_db import LocalDatabase
from goods_tracker.services.offline_mode import ConnectivityObserver
from goods_tracker.services.read_cache import ReadCache


class FakeRemote:
    """In-memory stand-in for SupabaseStore that records every call."""

    def __init__(self):
        self.calls = []
        self.fail_when = lambda op, table, data: False
        self.gate = None
        self.tables = {"staff": [], "goods_movements": []}
        self.select_fails = False
        self._ids = itertools.count(1)

    async def insert(self, table, record):
        self.calls.append(("insert", table, record))
        if self.gate is not None:
            await self.gate.wait()
        await asyncio.sleep(0)
        if self.fail_when("insert", table, record):
            return False, "HTTP 500: simulated"
        row = {**record, "id": f"remote-{next(self._ids)}"}
        self.tables.setdefault(table, []).append(row)
        return True, row

    async def update(self, table, row_id, patch):
        self.calls.append(("update", table, row_id, patch))
        await asyncio.sleep(0)
        if self.fail_when("update", table, patch):
            return False, "HTTP 500: simulated"
        return True, None

    async def select_all(self, table, select="*", order=None):
        self.calls.append(("select", table))
        if self.select_fails:
            return False, "HTTP 503: simulated"
        return True, list(self.tables.get(table, []))

    async def ping(self):
        return True

    def writes(self):
        return [call for call in self.calls if call[0] in ("insert", "update")]


def make_dispatch(**overrides):
    draft = {
        "dispatch_date": "2026-10-16",
        "bundles_count": 5,
        "item": "shirt",
        "destination": "big_shop",
        "sent_by": "staff-1",
        "fare_payment": "paid_by_sender",
        "accompanying_person": "Ravi",
        "auto_name": "Auto 12",
    }
    draft.update(overrides)
    return draft


def make_receive(**overrides):
    draft = {
        "received_at": "2026-10-16T10:00:00Z",
        "received_by": "staff-2",
        "received_by_name": "Meena",
    }
    draft.update(overrides)
    return draft


@pytest.fixture
def db(tmp_path):
    return LocalDatabase(data_dir=tmp_path)


@pytest.fixture
def cache(tmp_path):
    return ReadCache(data_dir=tmp_path)


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def observer():
    return ConnectivityObserver(initially_online=False)


@pytest.fixture
def coordinator(db, cache, observer, remote):
    coord = SyncCoordinator(db, cache, observer, remote)
    coord.start()
    yield coord
    coord.close()

"""Tests for the SQLite queue store."""

import sqlite3

import pytest

from goods_tracker.services.local_db import (
    LocalDatabase,
    QueueWriteFailure,
    StorageReadFailure,
    StorageUnavailable,
)

from conftest import make_dispatch, make_receive


class TestQueueStore:

    def test_initialize_is_idempotent(self, db):
        db.initialize()
        db.initialize()
        assert db.get_pending_count() == {"dispatches": 0, "receives": 0}

    def test_enqueue_dispatch_is_pending(self, db):
        local_id = db.enqueue_dispatch(make_dispatch())
        pending = db.list_pending_dispatches()
        assert len(pending) == 1
        assert pending[0].local_id == local_id
        assert pending[0].synced is False
        assert pending[0].payload["destination"] == "big_shop"
        assert pending[0].queued_at.endswith("Z")

    def test_queue_survives_reopen(self, db, tmp_path):
        db.enqueue_dispatch(make_dispatch())
        db.enqueue_receive("mov-1", make_receive())

        reopened = LocalDatabase(data_dir=tmp_path)
        assert len(reopened.list_pending_dispatches()) == 1
        assert reopened.list_pending_receives()[0].movement_id == "mov-1"

    def test_pending_in_insertion_order(self, db):
        first = db.enqueue_dispatch(make_dispatch(bundles_count=1))
        second = db.enqueue_dispatch(make_dispatch(bundles_count=2))
        third = db.enqueue_dispatch(make_dispatch(bundles_count=3))

        pending = db.list_pending_dispatches()
        assert [p.local_id for p in pending] == [first, second, third]
        assert [p.seq for p in pending] == sorted(p.seq for p in pending)

    def test_order_follows_seq_column(self, db):
        a = db.enqueue_dispatch(make_dispatch(bundles_count=1))
        b = db.enqueue_dispatch(make_dispatch(bundles_count=2))

        # Rewrite the sequence so replay order no longer matches key order
        conn = sqlite3.connect(db.db_path)
        conn.execute("UPDATE dispatch_queue SET seq = 10 WHERE local_id = ?", (a,))
        conn.commit()
        conn.close()

        assert [p.local_id for p in db.list_pending_dispatches()] == [b, a]

    def test_queues_are_independent(self, db):
        db.enqueue_dispatch(make_dispatch())
        db.enqueue_receive("mov-1", make_receive())
        db.enqueue_receive("mov-2", make_receive())
        assert db.get_pending_count() == {"dispatches": 1, "receives": 2}

    def test_mark_synced_removes_from_pending(self, db):
        keep = db.enqueue_dispatch(make_dispatch())
        done = db.enqueue_dispatch(make_dispatch())
        db.mark_dispatch_synced(done)
        assert [p.local_id for p in db.list_pending_dispatches()] == [keep]

    def test_mark_missing_row_is_noop(self, db):
        db.mark_dispatch_synced(999)
        db.mark_receive_synced(999)
        assert db.get_pending_count() == {"dispatches": 0, "receives": 0}

    def test_clear_synced_items(self, db):
        d = db.enqueue_dispatch(make_dispatch())
        db.enqueue_dispatch(make_dispatch())
        r = db.enqueue_receive("mov-1", make_receive())
        db.mark_dispatch_synced(d)
        db.mark_receive_synced(r)

        assert db.clear_synced_items() == 2

        conn = sqlite3.connect(db.db_path)
        total = conn.execute("SELECT COUNT(*) FROM dispatch_queue").fetchone()[0]
        total += conn.execute("SELECT COUNT(*) FROM receive_queue").fetchone()[0]
        conn.close()
        assert total == 1

    def test_new_items_after_cleanup_stay_after_pending(self, db):
        done = db.enqueue_dispatch(make_dispatch(bundles_count=1))
        waiting = db.enqueue_dispatch(make_dispatch(bundles_count=2))
        db.mark_dispatch_synced(done)
        db.clear_synced_items()
        newer = db.enqueue_dispatch(make_dispatch(bundles_count=3))

        assert [p.local_id for p in db.list_pending_dispatches()] == [waiting, newer]

    def test_activity_log_records_enqueue(self, db):
        db.enqueue_dispatch(make_dispatch())
        events = [row["event_type"] for row in db.get_recent_logs()]
        assert "dispatch_queued" in events


class TestQueueStoreFailures:

    def test_unusable_directory_raises_storage_unavailable(self, tmp_path):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("file")
        db = LocalDatabase(data_dir=blocker)
        with pytest.raises(StorageUnavailable):
            db.initialize()

    def test_enqueue_surfaces_storage_unavailable(self, tmp_path):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("file")
        db = LocalDatabase(data_dir=blocker)
        with pytest.raises(StorageUnavailable):
            db.enqueue_dispatch(make_dispatch())

    def test_unserializable_payload_is_write_failure(self, db):
        with pytest.raises(QueueWriteFailure):
            db.enqueue_dispatch({"dispatch_date": object()})
        assert db.get_pending_count()["dispatches"] == 0

    def test_corrupt_row_is_read_failure(self, db):
        local_id = db.enqueue_dispatch(make_dispatch())
        conn = sqlite3.connect(db.db_path)
        conn.execute("UPDATE dispatch_queue SET payload = '{trunc' WHERE local_id = ?", (local_id,))
        conn.commit()
        conn.close()

        with pytest.raises(StorageReadFailure):
            db.list_pending_dispatches()

    def test_read_failure_raises(self, db):
        db.initialize()
        conn = sqlite3.connect(db.db_path)
        conn.execute("DROP TABLE dispatch_queue")
        conn.commit()
        conn.close()
        with pytest.raises(StorageReadFailure):
            db.list_pending_dispatches()

    def test_cleanup_failure_is_swallowed(self, db):
        db.initialize()
        conn = sqlite3.connect(db.db_path)
        conn.execute("DROP TABLE receive_queue")
        conn.commit()
        conn.close()
        assert db.clear_synced_items() == 0

"""
Tests for the migration ledger, its audit history and the lock record.
"""

from datetime import timedelta

import pytest
from sqlalchemy import delete, insert, update

from eoty_db.database import introspection
from eoty_db.database.migrations.ledger import Ledger, utcnow
from eoty_db.database.migrations.lock import SEEDER_LOCK, MigrationLock, lock_table
from eoty_db.exceptions import LockUnavailableError


@pytest.fixture
def ledger(db):
    ledger = Ledger(db)
    ledger.ensure_tables()
    return ledger


class TestLedger:
    """Ledger rows and history records."""

    def test_missing_tables_read_as_empty(self, db):
        ledger = Ledger(db)

        assert ledger.entries() == []
        assert ledger.history() == []
        assert ledger.next_batch() == 1
        assert not ledger.is_applied("001_anything")

    def test_ensure_tables_is_idempotent(self, db):
        ledger = Ledger(db)
        ledger.ensure_tables()
        ledger.ensure_tables()

        assert introspection.has_table(db, "schema_migrations")
        assert introspection.has_table(db, "schema_migrations_history")

    def test_entries_in_application_order(self, ledger, db):
        ledger.record_applied(db, "002_second", 1, checksum="b")
        ledger.record_applied(db, "001_first", 1, checksum="a")

        entries = ledger.entries()

        assert [e.id for e in entries] == ["002_second", "001_first"]
        assert entries[0].applied_at < entries[1].applied_at
        assert entries[0].applied_at.tzinfo is not None

    def test_next_batch(self, ledger, db):
        assert ledger.next_batch() == 1
        ledger.record_applied(db, "001_first", 1)
        ledger.record_applied(db, "002_second", 3)

        assert ledger.next_batch() == 4

    def test_record_inside_rolled_back_transaction(self, ledger, db):
        with pytest.raises(RuntimeError):
            with db.transaction() as tx:
                ledger.record_applied(tx, "001_first", 1)
                raise RuntimeError("unit failed")

        assert ledger.entries() == []

    def test_record_reverted(self, ledger, db):
        ledger.record_applied(db, "001_first", 1)

        assert ledger.record_reverted(db, "001_first") is True
        assert ledger.record_reverted(db, "001_first") is False
        assert not ledger.is_applied("001_first")

    def test_mark_applied_and_forget(self, ledger, db):
        assert ledger.mark_applied(db, "001_first", 1, checksum="abc") is True
        assert ledger.mark_applied(db, "001_first", 2, checksum="abc") is False
        assert ledger.get("001_first").batch == 1

        assert ledger.forget(db, "001_first") is True
        assert ledger.forget(db, "001_first") is False

    def test_restamp(self, ledger, db):
        ledger.record_applied(db, "001_first", 1, checksum="old")

        assert ledger.restamp(db, "001_first", "new") is True
        assert ledger.get("001_first").checksum == "new"
        assert ledger.restamp(db, "999_missing", "new") is False

    def test_history_is_newest_first(self, ledger, db):
        started = utcnow()
        ledger.record_history(db, "001_first", "up", started, True, batch=1)
        ledger.record_history(db, "002_second", "up", started, False, batch=1, error_message="boom")
        ledger.record_history(db, "002_second", "script", started, True)

        history = ledger.history()

        assert [(h.migration_id, h.direction, h.success) for h in history] == [
            ("002_second", "script", True),
            ("002_second", "up", False),
            ("001_first", "up", True),
        ]
        assert history[1].error_message == "boom"
        assert len(ledger.history(limit=1)) == 1


class TestMigrationLock:
    """Exclusive named lock rows."""

    def test_acquire_and_release(self, db):
        lock = MigrationLock(db, timeout=0.1, poll_interval=0.01)

        lock.acquire()
        assert lock.held
        assert lock.holder() == lock.owner

        lock.release()
        assert not lock.held
        assert lock.holder() is None

    def test_snapshot_runs_inside_acquiring_transaction(self, db):
        lock = MigrationLock(db, timeout=0.1, poll_interval=0.01)

        in_transaction = lock.acquire(snapshot=lambda tx: tx.in_transaction)
        lock.release()

        assert in_transaction is True

    def test_second_holder_times_out(self, db):
        first = MigrationLock(db, owner="runner-a", timeout=0.1, poll_interval=0.01)
        second = MigrationLock(db, owner="runner-b", timeout=0.05, poll_interval=0.01)

        with first:
            with pytest.raises(LockUnavailableError) as exc_info:
                second.acquire()

        assert exc_info.value.holder == "runner-a"
        assert exc_info.value.lock_name == "schema_migrations"
        assert not second.held

    def test_lock_is_free_after_context_exit(self, db):
        first = MigrationLock(db, owner="runner-a", timeout=0.1, poll_interval=0.01)
        second = MigrationLock(db, owner="runner-b", timeout=0.1, poll_interval=0.01)

        with first:
            pass
        with second:
            assert second.holder() == "runner-b"

    def test_names_are_independent(self, db):
        runner_lock = MigrationLock(db, timeout=0.05, poll_interval=0.01)
        seeder_lock = MigrationLock(db, name=SEEDER_LOCK, timeout=0.05, poll_interval=0.01)

        with runner_lock:
            with seeder_lock:
                assert seeder_lock.held

    def test_reacquire_by_same_owner_is_rejected(self, db):
        lock = MigrationLock(db, timeout=0.05, poll_interval=0.01)

        with lock:
            with pytest.raises(LockUnavailableError):
                lock.acquire()

    def test_stale_lock_is_reclaimed(self, db):
        lock = MigrationLock(db, owner="fresh", timeout=0.05, poll_interval=0.01, stale_after=60)
        lock.ensure_table()
        db.execute(
            insert(lock_table).values(
                name="schema_migrations",
                owner="crashed-runner",
                acquired_at=utcnow() - timedelta(hours=2),
            )
        )

        with lock:
            assert lock.holder() == "fresh"

    def test_refreshed_lock_is_not_reclaimed(self, db):
        holder = MigrationLock(db, owner="long-run", timeout=0.05, poll_interval=0.01, stale_after=60)
        waiter = MigrationLock(db, owner="newcomer", timeout=0.05, poll_interval=0.01, stale_after=60)
        holder.acquire()
        db.execute(update(lock_table).values(acquired_at=utcnow() - timedelta(hours=2)))

        holder.refresh()

        with pytest.raises(LockUnavailableError):
            waiter.acquire()
        assert holder.holder() == "long-run"
        holder.release()

    def test_refresh_after_losing_the_row(self, db):
        lock = MigrationLock(db, owner="runner-a", timeout=0.05, poll_interval=0.01)
        lock.acquire()
        db.execute(delete(lock_table))

        with pytest.raises(LockUnavailableError) as exc_info:
            lock.refresh()

        assert exc_info.value.holder is None
        assert not lock.held

    def test_refresh_requires_holding(self, db):
        with pytest.raises(LockUnavailableError):
            MigrationLock(db).refresh()

    def test_release_only_deletes_own_row(self, db):
        owner = MigrationLock(db, owner="runner-a", timeout=0.05, poll_interval=0.01)
        impostor = MigrationLock(db, owner="runner-b", timeout=0.05, poll_interval=0.01)

        owner.acquire()
        # Simulate a confused client that believes it holds the lock.
        impostor._held = True
        impostor.release()

        assert owner.holder() == "runner-a"
        owner.release()

    def test_timeout_uses_injected_clock(self, db):
        """The wait loop consults the clock, not wall time."""
        ticks = iter([0.0, 0.0, 5.0, 10.0, 15.0])
        sleeps = []
        holder = MigrationLock(db, owner="runner-a", timeout=1.0, poll_interval=0.01)
        waiter = MigrationLock(
            db,
            owner="runner-b",
            timeout=10.0,
            poll_interval=2.5,
            clock=lambda: next(ticks),
            sleep=sleeps.append,
        )

        with holder:
            with pytest.raises(LockUnavailableError):
                waiter.acquire()

        assert sleeps == [2.5, 2.5]

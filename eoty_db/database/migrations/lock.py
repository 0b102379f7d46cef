"""
Migration Lock

Exclusive lock record kept in the same database as the ledger. A runner
inserts its row and reads the ledger in the same transaction, so the
snapshot it plans against is consistent with holding the lock.
"""

import logging
import os
import socket
import time
import uuid
from collections.abc import Callable
from datetime import timedelta
from typing import Any, TypeVar

from sqlalchemy import Column, DateTime, MetaData, String, Table, delete, insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import DBAPIError

from eoty_db.database import introspection
from eoty_db.database.errors import translate_error
from eoty_db.exceptions import LockUnavailableError, SqlError

from .ledger import utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

LOCK_TABLE = "schema_migrations_lock"
RUNNER_LOCK = "schema_migrations"
SEEDER_LOCK = "schema_seeds"

metadata = MetaData()

lock_table = Table(
    LOCK_TABLE,
    metadata,
    Column("name", String(64), primary_key=True),
    Column("owner", String(255), nullable=False),
    Column("acquired_at", DateTime(timezone=True), nullable=False),
)


def default_owner() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class MigrationLock:
    """
    Named exclusive lock backed by a primary-key row.

    Usage:
        lock = MigrationLock(db, timeout=30)
        applied = lock.acquire(snapshot=ledger.applied_ids)
        try:
            ...
        finally:
            lock.release()
    """

    def __init__(
        self,
        db_connection: Any,
        name: str = RUNNER_LOCK,
        timeout: float = 30.0,
        poll_interval: float = 0.25,
        stale_after: float = 3600.0,
        owner: str | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """
        Initialize the lock.

        Args:
            db_connection: Plain (non-transactional) adapter
            name: Lock name; the runner and seeder use different names
            timeout: Seconds to keep retrying before giving up
            poll_interval: Seconds between attempts
            stale_after: Age in seconds after which a held row is reclaimed
            owner: Holder identity (defaults to host:pid:random)
        """
        self.db = db_connection
        self.name = name
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.stale_after = stale_after
        self.owner = owner or default_owner()
        self._clock = clock
        self._sleep = sleep
        self._held = False

    @classmethod
    def from_settings(cls, db_connection: Any, settings: Any, name: str = RUNNER_LOCK) -> "MigrationLock":
        return cls(
            db_connection,
            name=name,
            timeout=settings.lock_timeout,
            poll_interval=settings.lock_poll_interval,
            stale_after=settings.lock_stale_after,
        )

    @property
    def held(self) -> bool:
        return self._held

    def ensure_table(self) -> None:
        with self.db.sa_connection() as conn:
            try:
                metadata.create_all(conn, checkfirst=True)
            except DBAPIError as e:
                if not introspection.has_table(self.db, LOCK_TABLE):
                    raise translate_error(e, f"CREATE TABLE {LOCK_TABLE}") from e

    def _insert_statement(self, tx: Any) -> Any:
        values = {"name": self.name, "owner": self.owner, "acquired_at": utcnow()}
        if tx.is_postgres:
            return postgresql.insert(lock_table).values(**values).on_conflict_do_nothing(
                index_elements=["name"]
            )
        if tx.is_sqlite:
            return sqlite.insert(lock_table).values(**values).on_conflict_do_nothing()
        return insert(lock_table).values(**values)

    def _reclaim_stale(self, tx: Any) -> None:
        cutoff = utcnow() - timedelta(seconds=self.stale_after)
        result = tx.execute(
            delete(lock_table).where(
                lock_table.c.name == self.name, lock_table.c.acquired_at < cutoff
            )
        )
        if result.affected:
            logger.warning(f"Reclaimed stale lock {self.name} older than {self.stale_after}s")

    def holder(self) -> str | None:
        """Owner string of the current holder, if any."""
        return self.db.scalar(
            select(lock_table.c.owner).where(lock_table.c.name == self.name)
        )

    def _holder_for_log(self) -> str | None:
        try:
            return self.holder()
        except SqlError as e:
            if not e.retryable:
                raise
            return None

    def acquire(self, snapshot: Callable[[Any], T] | None = None) -> T | None:
        """
        Take the lock, waiting up to `timeout` seconds.

        Args:
            snapshot: Called with the transaction-bound adapter inside the
                acquiring transaction; its result is returned

        Returns:
            Result of `snapshot`, or None

        Raises:
            LockUnavailableError: Still held by someone else after `timeout`
        """
        if self._held:
            raise LockUnavailableError(
                f"Lock {self.name} is already held by this owner", lock_name=self.name
            )

        self.ensure_table()
        deadline = self._clock() + self.timeout
        attempts = 0

        while True:
            attempts += 1
            acquired = False
            result = None
            try:
                with self.db.transaction() as tx:
                    self._reclaim_stale(tx)
                    if tx.execute(self._insert_statement(tx)).affected == 1:
                        acquired = True
                        if snapshot is not None:
                            result = snapshot(tx)
            except SqlError as e:
                if not e.retryable:
                    raise
                acquired = False

            if acquired:
                self._held = True
                logger.info(f"Acquired lock {self.name} as {self.owner} after {attempts} attempt(s)")
                return result

            if self._clock() >= deadline:
                holder = self._holder_for_log()
                raise LockUnavailableError(
                    f"Lock {self.name} is held by {holder or 'another runner'}; "
                    f"gave up after {self.timeout:.1f}s",
                    lock_name=self.name,
                    holder=holder,
                )

            if attempts == 1:
                logger.info(f"Waiting for lock {self.name} held by {self._holder_for_log()}")
            self._sleep(self.poll_interval)

    def refresh(self) -> None:
        """
        Move this owner's `acquired_at` to now so a long run is never
        reclaimed as stale while it is still working.

        Raises:
            LockUnavailableError: The row is gone or owned by someone else
        """
        if not self._held:
            raise LockUnavailableError(f"Lock {self.name} is not held", lock_name=self.name)
        result = self.db.execute(
            update(lock_table)
            .where(lock_table.c.name == self.name, lock_table.c.owner == self.owner)
            .values(acquired_at=utcnow())
        )
        if result.affected != 1:
            self._held = False
            raise LockUnavailableError(
                f"Lock {self.name} was lost by {self.owner}",
                lock_name=self.name,
                holder=self._holder_for_log(),
            )
        logger.debug(f"Refreshed lock {self.name}")

    def release(self) -> None:
        """Delete this owner's lock row. A no-op if not held."""
        if not self._held:
            return
        try:
            self.db.execute(
                delete(lock_table).where(
                    lock_table.c.name == self.name, lock_table.c.owner == self.owner
                )
            )
            logger.info(f"Released lock {self.name}")
        finally:
            self._held = False

    def __enter__(self) -> "MigrationLock":
        self.acquire()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.release()

"""
Migration Ledger

Persistent record of applied migration units plus an append-only audit
history of every step outcome (success or failure).

The ledger projection ordered by (applied_at, id) is the order units were
actually applied; the runner reverts in the opposite order.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    delete,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.exc import DBAPIError

from eoty_db.database import introspection
from eoty_db.database.errors import translate_error

logger = logging.getLogger(__name__)

LEDGER_TABLE = "schema_migrations"
HISTORY_TABLE = "schema_migrations_history"

metadata = MetaData()

ledger_table = Table(
    LEDGER_TABLE,
    metadata,
    Column("id", String(255), primary_key=True),
    Column("batch", Integer, nullable=False),
    Column("applied_at", DateTime(timezone=True), nullable=False),
    Column("checksum", String(64)),
    Column("description", Text),
    Column("execution_time_ms", Float),
)

history_table = Table(
    HISTORY_TABLE,
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("migration_id", String(255), nullable=False),
    Column("direction", String(16), nullable=False),
    Column("batch", Integer),
    Column("started_at", DateTime(timezone=True), nullable=False),
    Column("finished_at", DateTime(timezone=True)),
    Column("success", Boolean, nullable=False),
    Column("error_message", Text),
    Index("ix_schema_migrations_history_migration_id", "migration_id"),
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; the ledger always writes UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class LedgerEntry:
    id: str
    batch: int
    applied_at: datetime
    checksum: str | None = None
    description: str | None = None
    execution_time_ms: float | None = None


@dataclass(frozen=True)
class HistoryEntry:
    id: int
    migration_id: str
    direction: str
    batch: int | None
    started_at: datetime
    finished_at: datetime | None
    success: bool
    error_message: str | None = None


class Ledger:
    """
    Reads and writes the ledger tables.

    Every method accepts an optional adapter so writes can join the caller's
    transaction; it defaults to the adapter the ledger was built with.
    """

    def __init__(self, db_connection: Any) -> None:
        """
        Initialize the ledger.

        Args:
            db_connection: Database adapter
        """
        self.db = db_connection

    def ensure_tables(self, db: Any = None) -> None:
        """Create the ledger and history tables if they do not exist."""
        db = db or self.db
        with db.sa_connection() as conn:
            try:
                metadata.create_all(conn, checkfirst=True)
            except DBAPIError as e:
                # A concurrent runner may have created them first.
                if not all(introspection.has_table(db, t) for t in metadata.tables):
                    raise translate_error(e, "CREATE TABLE schema_migrations") from e
        logger.debug("Ledger tables initialized")

    def exists(self, db: Any = None) -> bool:
        return introspection.has_table(db or self.db, LEDGER_TABLE)

    # Reads ---------------------------------------------------------------
    def entries(self, db: Any = None) -> list[LedgerEntry]:
        """All ledger entries ordered by (applied_at, id)."""
        db = db or self.db
        if not self.exists(db):
            return []
        rows = db.fetch_all(
            select(ledger_table).order_by(ledger_table.c.applied_at, ledger_table.c.id)
        )
        return [
            LedgerEntry(
                id=row["id"],
                batch=row["batch"],
                applied_at=as_utc(row["applied_at"]),
                checksum=row["checksum"],
                description=row["description"],
                execution_time_ms=row["execution_time_ms"],
            )
            for row in rows
        ]

    def applied_ids(self, db: Any = None) -> list[str]:
        return [entry.id for entry in self.entries(db)]

    def get(self, unit_id: str, db: Any = None) -> LedgerEntry | None:
        for entry in self.entries(db):
            if entry.id == unit_id:
                return entry
        return None

    def is_applied(self, unit_id: str, db: Any = None) -> bool:
        db = db or self.db
        if not self.exists(db):
            return False
        row = db.fetch_one(
            select(ledger_table.c.id).where(ledger_table.c.id == unit_id)
        )
        return row is not None

    def next_batch(self, db: Any = None) -> int:
        db = db or self.db
        if not self.exists(db):
            return 1
        current = db.scalar(select(func.max(ledger_table.c.batch)))
        return (current or 0) + 1

    def _next_applied_at(self, db: Any) -> datetime:
        """Wall clock, nudged forward so entries never share a timestamp."""
        now = utcnow()
        latest = as_utc(db.scalar(select(func.max(ledger_table.c.applied_at))))
        if latest is not None and latest >= now:
            return latest + timedelta(microseconds=1)
        return now

    # Writes --------------------------------------------------------------
    def record_applied(
        self,
        db: Any,
        unit_id: str,
        batch: int,
        checksum: str | None = None,
        description: str | None = None,
        execution_time_ms: float | None = None,
    ) -> LedgerEntry:
        """
        Insert the ledger row for a committed apply.

        Args:
            db: Adapter (transaction-bound for `wrap` units)
            unit_id: Migration unit id
            batch: Batch number of this runner invocation
            checksum: Source checksum at record time
            description: Unit description
            execution_time_ms: Apply duration

        Returns:
            The recorded entry
        """
        entry = LedgerEntry(
            id=unit_id,
            batch=batch,
            applied_at=self._next_applied_at(db),
            checksum=checksum,
            description=description,
            execution_time_ms=execution_time_ms,
        )
        db.execute(insert(ledger_table).values(**asdict(entry)))
        logger.debug(f"Recorded migration {unit_id} in batch {batch}")
        return entry

    def record_reverted(self, db: Any, unit_id: str) -> bool:
        result = db.execute(delete(ledger_table).where(ledger_table.c.id == unit_id))
        logger.debug(f"Removed ledger entry for {unit_id}")
        return result.affected > 0

    def record_history(
        self,
        db: Any,
        migration_id: str,
        direction: str,
        started_at: datetime,
        success: bool,
        batch: int | None = None,
        error_message: str | None = None,
    ) -> None:
        """Append one step outcome to the audit history."""
        db.execute(
            insert(history_table).values(
                migration_id=migration_id,
                direction=direction,
                batch=batch,
                started_at=started_at,
                finished_at=utcnow(),
                success=success,
                error_message=error_message[:2000] if error_message else None,
            )
        )

    def history(self, limit: int = 50, db: Any = None) -> list[HistoryEntry]:
        """Most recent history rows first."""
        db = db or self.db
        if not introspection.has_table(db, HISTORY_TABLE):
            return []
        rows = db.fetch_all(
            select(history_table).order_by(history_table.c.id.desc()).limit(limit)
        )
        return [
            HistoryEntry(
                id=row["id"],
                migration_id=row["migration_id"],
                direction=row["direction"],
                batch=row["batch"],
                started_at=as_utc(row["started_at"]),
                finished_at=as_utc(row["finished_at"]),
                success=bool(row["success"]),
                error_message=row["error_message"],
            )
            for row in rows
        ]

    # Repair primitives ---------------------------------------------------
    def mark_applied(
        self,
        db: Any,
        unit_id: str,
        batch: int,
        checksum: str | None = None,
        description: str | None = None,
    ) -> bool:
        """Record a unit as applied without running it. False if already recorded."""
        if self.is_applied(unit_id, db):
            return False
        self.record_applied(db, unit_id, batch, checksum=checksum, description=description)
        return True

    def forget(self, db: Any, unit_id: str) -> bool:
        """Drop a ledger row without reverting. False if it was not there."""
        return self.record_reverted(db, unit_id)

    def restamp(self, db: Any, unit_id: str, checksum: str | None) -> bool:
        """Overwrite the stored checksum for a unit."""
        result = db.execute(
            update(ledger_table)
            .where(ledger_table.c.id == unit_id)
            .values(checksum=checksum)
        )
        return result.affected > 0

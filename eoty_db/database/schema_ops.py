"""
Guarded Schema Operations

Idempotent DDL and data helpers used by migration units, repair scripts
and seeds. Every helper checks the live catalog first, so re-running a
unit against a partially or fully advanced schema is a no-op.

Helpers return True when they changed something and False when the guard
short-circuited.
"""

import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any

from sqlalchemy import Column, DateTime, Integer, MetaData, Table, func, text
from sqlalchemy.schema import CreateColumn, CreateIndex, CreateTable, SchemaItem
from sqlalchemy.types import TypeEngine

from . import introspection

logger = logging.getLogger(__name__)


@contextmanager
def atomic(db: Any) -> Iterator[Any]:
    """Reuse the caller's transaction, or open one for the block."""
    if db.in_transaction:
        yield db
    else:
        with db.transaction() as tx:
            yield tx


def _referenced_tables(table: Table) -> set[str]:
    names = set()
    for fk in table.foreign_keys:
        referred = fk.target_fullname.rsplit(".", 1)[0]
        if referred != table.name:
            names.add(referred)
    return names


def create_table_if_not_exists(
    db: Any, name: str, *items: SchemaItem, **table_kwargs: Any
) -> bool:
    """
    Create a table (and its declared indexes) unless it already exists.

    Foreign keys may name tables created by earlier units; they are
    reflected from the live catalog so the DDL can be rendered.

    Args:
        db: Adapter
        name: Table name
        *items: Columns, constraints and Index objects
        **table_kwargs: Passed through to sqlalchemy.Table
    """
    if introspection.has_table(db, name):
        logger.debug(f"Table {name} already exists")
        return False
    if introspection.has_view(db, name):
        logger.debug(f"{name} exists as a view; not creating a table over it")
        return False

    metadata = MetaData()
    table = Table(name, metadata, *items, **table_kwargs)
    referenced = _referenced_tables(table)
    if referenced:
        with db.sa_connection() as conn:
            metadata.reflect(bind=conn, only=sorted(referenced))

    with atomic(db) as tx:
        tx.execute(CreateTable(table))
        for index in sorted(table.indexes, key=lambda i: i.name or ""):
            tx.execute(CreateIndex(index))

    logger.info(f"Created table: {name}")
    return True


def drop_table_if_exists(db: Any, name: str, cascade: bool = False) -> bool:
    if not introspection.has_table(db, name):
        logger.debug(f"Table {name} does not exist")
        return False
    suffix = " CASCADE" if cascade and db.is_postgres else ""
    db.execute(f"DROP TABLE {db.quote(name)}{suffix}")
    logger.info(f"Dropped table: {name}")
    return True


def rename_table_if_exists(db: Any, old_name: str, new_name: str) -> bool:
    if not introspection.has_table(db, old_name):
        logger.debug(f"Table {old_name} does not exist; nothing to rename")
        return False
    if introspection.has_relation(db, new_name):
        logger.debug(f"{new_name} already exists; not renaming {old_name}")
        return False
    db.execute(f"ALTER TABLE {db.quote(old_name)} RENAME TO {db.quote(new_name)}")
    logger.info(f"Renamed table {old_name} to {new_name}")
    return True


def column_ddl(db: Any, table: str, column: Column) -> str:
    """Render a column definition (with inline REFERENCES) for ALTER TABLE."""
    Table(table, MetaData(), column)
    ddl = str(CreateColumn(column).compile(dialect=db.engine.dialect)).strip()
    for fk in column.foreign_keys:
        referred_table, referred_column = fk.target_fullname.rsplit(".", 1)
        ddl += f" REFERENCES {db.quote(referred_table)} ({db.quote(referred_column)})"
        if fk.ondelete:
            ddl += f" ON DELETE {fk.ondelete}"
    return ddl


def add_column_if_not_exists(db: Any, table: str, column: Column) -> bool:
    if introspection.has_column(db, table, column.name):
        logger.debug(f"Column {table}.{column.name} already exists")
        return False
    db.execute(f"ALTER TABLE {db.quote(table)} ADD COLUMN {column_ddl(db, table, column)}")
    logger.info(f"Added column {table}.{column.name}")
    return True


def drop_column_if_exists(db: Any, table: str, column: str) -> bool:
    if not introspection.has_column(db, table, column):
        logger.debug(f"Column {table}.{column} does not exist")
        return False
    db.execute(f"ALTER TABLE {db.quote(table)} DROP COLUMN {db.quote(column)}")
    logger.info(f"Dropped column {table}.{column}")
    return True


def create_index_if_not_exists(
    db: Any,
    name: str,
    table: str,
    columns: Sequence[str],
    unique: bool = False,
    concurrently: bool = False,
    where: str | None = None,
) -> bool:
    """
    Create an index unless one with the same name exists.

    `concurrently` only applies on PostgreSQL, where it must run outside
    a transaction (units using it declare the `none` mode). `where` makes
    a partial index; both supported dialects accept the clause.
    """
    if introspection.has_index(db, table, name):
        logger.debug(f"Index {name} already exists")
        return False
    if not introspection.has_table(db, table):
        logger.warning(f"Cannot create index {name}: table {table} does not exist")
        return False

    unique_sql = "UNIQUE " if unique else ""
    concurrent_sql = "CONCURRENTLY " if concurrently and db.is_postgres else ""
    column_sql = ", ".join(db.quote(c) for c in columns)
    db.execute(
        f"CREATE {unique_sql}INDEX {concurrent_sql}{db.quote(name)} "
        f"ON {db.quote(table)} ({column_sql})"
        + (f" WHERE {where}" if where else "")
    )
    logger.info(f"Created index: {name}")
    return True


def drop_index_if_exists(db: Any, name: str, table: str) -> bool:
    if not introspection.has_index(db, table, name):
        logger.debug(f"Index {name} does not exist")
        return False
    db.execute(f"DROP INDEX {db.quote(name)}")
    logger.info(f"Dropped index: {name}")
    return True


def create_view_if_not_exists(db: Any, name: str, select_sql: str) -> bool:
    if introspection.has_relation(db, name):
        logger.debug(f"Relation {name} already exists")
        return False
    db.execute(f"CREATE VIEW {db.quote(name)} AS {select_sql}")
    logger.info(f"Created view: {name}")
    return True


def drop_view_if_exists(db: Any, name: str) -> bool:
    if not introspection.has_view(db, name):
        logger.debug(f"View {name} does not exist")
        return False
    db.execute(f"DROP VIEW {db.quote(name)}")
    logger.info(f"Dropped view: {name}")
    return True


# Constraints -----------------------------------------------------------------
# SQLite cannot add or drop constraints on an existing table; there these
# helpers log and return False.
def add_foreign_key_if_missing(
    db: Any,
    table: str,
    name: str,
    column: str,
    referred_table: str,
    referred_column: str = "id",
    ondelete: str | None = None,
) -> bool:
    if not db.is_postgres:
        logger.debug(f"Skipping foreign key {name}: not supported on {db.dialect}")
        return False
    if introspection.has_constraint(db, table, name):
        logger.debug(f"Constraint {name} already exists")
        return False
    if not introspection.has_column(db, table, column):
        logger.warning(f"Cannot add foreign key {name}: {table}.{column} does not exist")
        return False

    q = db.quote
    ondelete_sql = f" ON DELETE {ondelete}" if ondelete else ""
    db.execute(
        f"ALTER TABLE {q(table)} ADD CONSTRAINT {q(name)} FOREIGN KEY ({q(column)}) "
        f"REFERENCES {q(referred_table)} ({q(referred_column)}){ondelete_sql}"
    )
    logger.info(f"Added foreign key {name} on {table}.{column}")
    return True


def add_check_constraint_if_missing(db: Any, table: str, name: str, condition: str) -> bool:
    if not db.is_postgres:
        logger.debug(f"Skipping check constraint {name}: not supported on {db.dialect}")
        return False
    if introspection.has_constraint(db, table, name):
        logger.debug(f"Constraint {name} already exists")
        return False
    if not introspection.has_table(db, table):
        logger.warning(f"Cannot add check constraint {name}: table {table} does not exist")
        return False
    db.execute(f"ALTER TABLE {db.quote(table)} ADD CONSTRAINT {db.quote(name)} CHECK ({condition})")
    logger.info(f"Added check constraint {name} on {table}")
    return True


def drop_constraint_if_exists(db: Any, table: str, name: str) -> bool:
    if not db.is_postgres:
        logger.debug(f"Skipping constraint drop {name}: not supported on {db.dialect}")
        return False
    if not introspection.has_constraint(db, table, name):
        logger.debug(f"Constraint {name} does not exist")
        return False
    db.execute(f"ALTER TABLE {db.quote(table)} DROP CONSTRAINT {db.quote(name)}")
    logger.info(f"Dropped constraint {name} on {table}")
    return True


# Column factories ------------------------------------------------------------
def id_column() -> Column:
    return Column("id", Integer, primary_key=True, autoincrement=True)


def timestamps() -> list[Column]:
    """created_at / updated_at, both defaulting to the database clock."""
    return [
        Column("created_at", DateTime(timezone=True), server_default=func.now(), nullable=False),
        Column("updated_at", DateTime(timezone=True), server_default=func.now(), nullable=False),
    ]


# Column type reconciliation ----------------------------------------------
def alter_column_type(
    db: Any,
    table: str,
    column: str,
    new_type: TypeEngine,
    using: str | None = None,
) -> None:
    """
    Change a column's type, converting existing values.

    PostgreSQL uses ALTER COLUMN ... TYPE ... USING. SQLite cannot alter
    column types, so the table is rebuilt: rows are copied with a CAST,
    the old table dropped and the copy renamed. Indexes and triggers on the
    table are recreated from their original DDL.

    Args:
        db: Adapter
        table: Table name
        column: Column to convert
        new_type: Target SQLAlchemy type
        using: Conversion expression (PostgreSQL); defaults to a cast
    """
    type_sql = new_type.compile(dialect=db.engine.dialect)
    if db.is_postgres:
        expression = using or f"{db.quote(column)}::{type_sql}"
        db.execute(
            f"ALTER TABLE {db.quote(table)} ALTER COLUMN {db.quote(column)} "
            f"TYPE {type_sql} USING {expression}"
        )
    elif db.is_sqlite:
        with atomic(db) as tx:
            _sqlite_rebuild_with_type(tx, table, column, new_type, type_sql)
    else:
        raise NotImplementedError(f"Column type changes not supported for {db.dialect}")
    logger.info(f"Converted {table}.{column} to {type_sql}")


def _sqlite_rebuild_with_type(
    tx: Any, table: str, column: str, new_type: TypeEngine, type_sql: str
) -> None:
    q = tx.quote
    tmp_name = f"_{table}_rebuild"

    with tx.sa_connection() as conn:
        # Dropped along with the table; autoindexes have no stored SQL.
        dependents = conn.execute(
            text(
                "SELECT name, sql FROM sqlite_master "
                "WHERE tbl_name = :table AND type IN ('index', 'trigger') AND sql IS NOT NULL"
            ),
            {"table": table},
        ).all()
        metadata = MetaData()
        old = Table(table, metadata, autoload_with=conn)
        new = old.to_metadata(metadata, name=tmp_name)
        for index in list(new.indexes):
            new.indexes.discard(index)
        new.c[column].type = new_type

        column_names = [c.name for c in old.columns]
        select_sql = ", ".join(
            f"CAST({q(c)} AS {type_sql})" if c == column else q(c) for c in column_names
        )
        insert_sql = ", ".join(q(c) for c in column_names)

        conn.execute(CreateTable(new))
        conn.execute(text(
            f"INSERT INTO {q(tmp_name)} ({insert_sql}) SELECT {select_sql} FROM {q(table)}"
        ))
        conn.execute(text(f"DROP TABLE {q(table)}"))
        conn.exec_driver_sql("PRAGMA legacy_alter_table = ON")
        conn.execute(text(f"ALTER TABLE {q(tmp_name)} RENAME TO {q(table)}"))
        conn.exec_driver_sql("PRAGMA legacy_alter_table = OFF")

        for name, sql in dependents:
            conn.exec_driver_sql(sql)
            logger.debug(f"Recreated {name} on {table}")


def reconcile_column_type(
    db: Any,
    table: str,
    column: str,
    new_type: TypeEngine,
    using: str | None = None,
) -> bool:
    """
    Convert a column only if its live type differs in kind from `new_type`.

    Kinds are compared by SQLAlchemy type family (text vs integer), so
    VARCHAR and TEXT are treated as already matching.
    """
    current = introspection.column_type(db, table, column)
    if current is None:
        logger.debug(f"Column {table}.{column} does not exist; nothing to reconcile")
        return False
    if introspection.same_type_family(current, new_type):
        logger.debug(f"Column {table}.{column} already has type {current}")
        return False
    alter_column_type(db, table, column, new_type, using=using)
    return True


# Data helpers --------------------------------------------------------------
def _where(db: Any, keys: dict[str, Any]) -> tuple[str, dict[str, Any]]:
    clauses = []
    params = {}
    for i, (name, value) in enumerate(keys.items()):
        if value is None:
            clauses.append(f"{db.quote(name)} IS NULL")
        else:
            clauses.append(f"{db.quote(name)} = :k{i}")
            params[f"k{i}"] = value
    return " AND ".join(clauses), params


def _insert(db: Any, table: str, row: dict[str, Any]) -> None:
    names = list(row)
    columns = ", ".join(db.quote(n) for n in names)
    placeholders = ", ".join(f":v{i}" for i in range(len(names)))
    db.execute(
        f"INSERT INTO {db.quote(table)} ({columns}) VALUES ({placeholders})",
        {f"v{i}": row[n] for i, n in enumerate(names)},
    )


def upsert(
    db: Any, table: str, keys: dict[str, Any], values: dict[str, Any] | None = None
) -> str:
    """
    Insert a row identified by `keys`, or update its other columns.

    Returns:
        "inserted", "updated" or "unchanged"
    """
    values = values or {}
    where_sql, params = _where(db, keys)
    existing = db.fetch_one(f"SELECT * FROM {db.quote(table)} WHERE {where_sql}", params)

    if existing is None:
        _insert(db, table, {**keys, **values})
        return "inserted"

    changed = {k: v for k, v in values.items() if existing.get(k) != v}
    if not changed:
        return "unchanged"

    set_sql = ", ".join(f"{db.quote(k)} = :s{i}" for i, k in enumerate(changed))
    set_params = {f"s{i}": v for i, v in enumerate(changed.values())}
    db.execute(
        f"UPDATE {db.quote(table)} SET {set_sql} WHERE {where_sql}",
        {**params, **set_params},
    )
    return "updated"


def insert_if_missing(
    db: Any, table: str, keys: dict[str, Any], values: dict[str, Any] | None = None
) -> bool:
    """Insert a row identified by `keys` unless one exists; never updates."""
    where_sql, params = _where(db, keys)
    if db.fetch_one(f"SELECT 1 AS present FROM {db.quote(table)} WHERE {where_sql}", params):
        return False
    _insert(db, table, {**keys, **(values or {})})
    return True


def lookup_id(db: Any, table: str, key_column: str, key: Any) -> Any:
    """Resolve a row id by a natural key instead of a hard-coded offset."""
    return db.scalar(
        f"SELECT id FROM {db.quote(table)} WHERE {db.quote(key_column)} = :key",
        {"key": key},
    )

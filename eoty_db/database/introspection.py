"""
Catalog Introspection Helpers

Predicates over the live catalog used as idempotence guards by migration
units and as safety gates by the runner. Every call builds a fresh
SQLAlchemy inspector: an earlier statement in the same unit may have
created the object a later check asks about.

All functions accept either adapter flavour (plain or transaction-bound).
"""

import logging
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from sqlalchemy import inspect, text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import DBAPIError, NoSuchTableError
from sqlalchemy.types import Integer, String, TypeEngine

from .errors import translate_error

logger = logging.getLogger(__name__)


@contextmanager
def catalog(db: Any, label: str = "catalog query") -> Iterator[Connection]:
    """Connection for catalog reads; driver errors surface as adapter errors."""
    try:
        with db.sa_connection() as conn:
            yield conn
    except DBAPIError as e:
        raise translate_error(e, label) from e


def list_tables(db: Any) -> list[str]:
    with catalog(db) as conn:
        return inspect(conn).get_table_names()


def list_views(db: Any) -> list[str]:
    with catalog(db) as conn:
        return inspect(conn).get_view_names()


def has_table(db: Any, name: str) -> bool:
    """True if a base table (not a view) named `name` exists."""
    return name in list_tables(db)


def has_view(db: Any, name: str) -> bool:
    return name in list_views(db)


def has_relation(db: Any, name: str) -> bool:
    """True if `name` resolves to either a table or a view."""
    with catalog(db) as conn:
        insp = inspect(conn)
        return name in insp.get_table_names() or name in insp.get_view_names()


def list_columns(db: Any, table: str) -> list[dict[str, Any]]:
    """Reflected column dicts for a table or view; empty if it does not exist."""
    with catalog(db) as conn:
        try:
            return inspect(conn).get_columns(table)
        except NoSuchTableError:
            return []


def has_column(db: Any, table: str, column: str) -> bool:
    return any(col["name"] == column for col in list_columns(db, table))


def column_type(db: Any, table: str, column: str) -> TypeEngine | None:
    """Reflected SQLAlchemy type of a column, or None if it does not exist."""
    for col in list_columns(db, table):
        if col["name"] == column:
            return col["type"]
    return None


def column_type_name(db: Any, table: str, column: str) -> str | None:
    """Upper-case type class name such as INTEGER, TEXT or VARCHAR."""
    col_type = column_type(db, table, column)
    if col_type is None:
        return None
    return type(col_type).__name__.upper()


def is_text_type(col_type: TypeEngine | None) -> bool:
    return isinstance(col_type, String)


def is_integer_type(col_type: TypeEngine | None) -> bool:
    return isinstance(col_type, Integer)


def same_type_family(current: TypeEngine | None, wanted: TypeEngine) -> bool:
    """Compare types by family: any string type matches any other, likewise integers."""
    if current is None:
        return False
    for family in (String, Integer):
        if isinstance(wanted, family):
            return isinstance(current, family)
    return type(current).__name__.upper() == type(wanted).__name__.upper()


def has_index(
    db: Any, table: str, columns_or_name: str | Sequence[str]
) -> bool:
    """
    Check for an index on `table`.

    Args:
        db: Adapter
        table: Table name
        columns_or_name: Index name, or the exact ordered column list.
            A unique constraint over the same columns also counts.
    """
    with catalog(db) as conn:
        insp = inspect(conn)
        try:
            indexes = insp.get_indexes(table)
        except NoSuchTableError:
            return False

        if isinstance(columns_or_name, str):
            return any(idx["name"] == columns_or_name for idx in indexes)

        wanted = list(columns_or_name)
        if any(list(idx["column_names"]) == wanted for idx in indexes):
            return True
        return any(
            list(uc["column_names"]) == wanted
            for uc in insp.get_unique_constraints(table)
        )


def _constraint_names(insp: Any, table: str) -> set[str]:
    names: set[str] = set()
    pk = insp.get_pk_constraint(table)
    if pk and pk.get("name"):
        names.add(pk["name"])
    for group in (
        insp.get_foreign_keys(table),
        insp.get_unique_constraints(table),
        insp.get_check_constraints(table),
    ):
        names.update(item["name"] for item in group if item.get("name"))
    return names


def has_constraint(db: Any, table: str, name: str) -> bool:
    """True if `table` carries a primary key, foreign key, unique or check constraint named `name`."""
    with catalog(db) as conn:
        try:
            return name in _constraint_names(inspect(conn), table)
        except NoSuchTableError:
            return False


def has_trigger(db: Any, name: str) -> bool:
    if db.is_sqlite:
        sql = "SELECT 1 FROM sqlite_master WHERE type = 'trigger' AND name = :name"
    elif db.is_postgres:
        sql = "SELECT 1 FROM pg_trigger WHERE tgname = :name AND NOT tgisinternal"
    else:
        raise NotImplementedError(f"Trigger introspection not supported for {db.dialect}")
    with catalog(db) as conn:
        return conn.execute(text(sql), {"name": name}).first() is not None


def foreign_keys_referencing(db: Any, referred_table: str) -> list[tuple[str, dict[str, Any]]]:
    """All (table, foreign key) pairs whose foreign key points at `referred_table`."""
    found: list[tuple[str, dict[str, Any]]] = []
    with catalog(db) as conn:
        insp = inspect(conn)
        for table in insp.get_table_names():
            for fk in insp.get_foreign_keys(table):
                if fk.get("referred_table") == referred_table:
                    found.append((table, fk))
    return found


@dataclass(frozen=True)
class SchemaSnapshot:
    """Set-based view of the catalog, comparable for observational equality."""

    tables: frozenset[str]
    views: frozenset[str]
    columns: frozenset[tuple[str, str]]
    indexes: frozenset[tuple[str, str]]
    constraints: frozenset[tuple[str, str, str]]

    def diff(self, other: "SchemaSnapshot") -> dict[str, tuple[set, set]]:
        """Per category: (only in self, only in other). Empty when equal."""
        result = {}
        for name in ("tables", "views", "columns", "indexes", "constraints"):
            mine, theirs = getattr(self, name), getattr(other, name)
            if mine != theirs:
                result[name] = (set(mine - theirs), set(theirs - mine))
        return result


def schema_snapshot(db: Any, exclude: Iterable[str] = ()) -> SchemaSnapshot:
    """Capture tables, views, columns, indexes and constraints."""
    excluded = set(exclude)
    columns: set[tuple[str, str]] = set()
    indexes: set[tuple[str, str]] = set()
    constraints: set[tuple[str, str, str]] = set()

    with catalog(db) as conn:
        insp = inspect(conn)
        tables = [t for t in insp.get_table_names() if t not in excluded]
        views = [v for v in insp.get_view_names() if v not in excluded]

        for table in tables:
            columns.update((table, col["name"]) for col in insp.get_columns(table))
            indexes.update(
                (table, idx["name"] or ",".join(idx["column_names"]))
                for idx in insp.get_indexes(table)
            )
            pk = insp.get_pk_constraint(table)
            if pk and pk.get("constrained_columns"):
                constraints.add((table, "pk", ",".join(pk["constrained_columns"])))
            for fk in insp.get_foreign_keys(table):
                constraints.add((
                    table,
                    "fk",
                    f"{','.join(fk['constrained_columns'])}->{fk['referred_table']}",
                ))
            for uc in insp.get_unique_constraints(table):
                constraints.add((table, "unique", ",".join(uc["column_names"])))
        for view in views:
            columns.update((view, col["name"]) for col in insp.get_columns(view))

    return SchemaSnapshot(
        tables=frozenset(tables),
        views=frozenset(views),
        columns=frozenset(columns),
        indexes=frozenset(indexes),
        constraints=frozenset(constraints),
    )

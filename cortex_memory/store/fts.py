"""
Full-text shadow index maintenance.

Base tables are never indexed by triggers.  Every write that touches an
indexed column calls one of the helpers below on the same connection, so
the base row and its shadow row commit or roll back together.

Shadow rows share the base row's rowid.  Updates delete and re-insert
the shadow row instead of editing it in place.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field

from .schema import FTS_TABLES, FtsTable

logger = logging.getLogger(__name__)


@dataclass
class IndexDrift:
    """Rowids present on one side of a base/shadow pair but not the other."""
    missing: list[int] = field(default_factory=list)
    orphaned: list[int] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return not self.missing and not self.orphaned


def _table_def(table: str) -> FtsTable:
    try:
        return FTS_TABLES[table]
    except KeyError:
        raise ValueError(f"{table!r} has no full-text index") from None


def index_row(conn: sqlite3.Connection, table: str, rowid: int) -> None:
    """(Re)build the shadow row for *rowid* from the current base row."""
    tdef = _table_def(table)
    cols = ", ".join(tdef.columns)
    row = conn.execute(
        f"SELECT {cols} FROM {tdef.base} WHERE rowid = ?", (rowid,)
    ).fetchone()
    conn.execute(f"DELETE FROM {tdef.shadow} WHERE rowid = ?", (rowid,))
    if row is None:
        return
    placeholders = ", ".join("?" for _ in tdef.columns)
    conn.execute(
        f"INSERT INTO {tdef.shadow} (rowid, {cols}) VALUES (?, {placeholders})",
        (rowid, *tuple(row)),
    )


def remove_row(conn: sqlite3.Connection, table: str, rowid: int) -> None:
    """Drop the shadow row for a base row that is being deleted."""
    tdef = _table_def(table)
    conn.execute(f"DELETE FROM {tdef.shadow} WHERE rowid = ?", (rowid,))


def rebuild(conn: sqlite3.Connection, table: str) -> int:
    """Repopulate one shadow table from its base table.  Returns row count."""
    tdef = _table_def(table)
    cols = ", ".join(tdef.columns)
    conn.execute(f"DELETE FROM {tdef.shadow}")
    conn.execute(
        f"INSERT INTO {tdef.shadow} (rowid, {cols}) "
        f"SELECT rowid, {cols} FROM {tdef.base}"
    )
    return conn.execute(f"SELECT COUNT(*) FROM {tdef.shadow}").fetchone()[0]


def drift(conn: sqlite3.Connection, table: str) -> IndexDrift:
    """Compare base and shadow rowids for *table*."""
    tdef = _table_def(table)
    base_ids = {r[0] for r in conn.execute(f"SELECT rowid FROM {tdef.base}")}
    shadow_ids = {r[0] for r in conn.execute(f"SELECT rowid FROM {tdef.shadow}")}
    return IndexDrift(
        missing=sorted(base_ids - shadow_ids),
        orphaned=sorted(shadow_ids - base_ids),
    )


def match_query(text: str) -> str:
    """Quote each word so user input cannot trip FTS5 query syntax."""
    words = [w.replace('"', '""') for w in (text or "").split()]
    return " ".join(f'"{w}"' for w in words if w)

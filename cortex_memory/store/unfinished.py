"""Work left open at the end of a session."""

from __future__ import annotations

from typing import Optional

from . import fts
from .db import Database, utcnow
from .models import UnfinishedItem
from .search import fetch_ranked, ranked_rowids

PRIORITIES = ("high", "medium", "low")

_PRIORITY_ORDER = "CASE priority WHEN 'high' THEN 0 WHEN 'medium' THEN 1 ELSE 2 END"


class UnfinishedStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    def add(
        self,
        description: str,
        context: Optional[str] = None,
        priority: str = "medium",
        session_id: Optional[str] = None,
        blocked_by: Optional[str] = None,
    ) -> UnfinishedItem:
        if priority not in PRIORITIES:
            priority = "medium"
        with self._db.connect() as conn:
            cur = conn.execute(
                "INSERT INTO unfinished (session_id, created_at, description, "
                "context, priority, blocked_by) VALUES (?, ?, ?, ?, ?, ?)",
                (session_id, utcnow(), description, context, priority, blocked_by),
            )
            item_id = cur.lastrowid
            fts.index_row(conn, "unfinished", item_id)
            row = conn.execute("SELECT * FROM unfinished WHERE id = ?", (item_id,)).fetchone()
        return UnfinishedItem.from_row(row)

    def get(self, item_id: int) -> Optional[UnfinishedItem]:
        with self._db.connect() as conn:
            row = conn.execute("SELECT * FROM unfinished WHERE id = ?", (item_id,)).fetchone()
        return UnfinishedItem.from_row(row) if row else None

    def list(self, include_resolved: bool = False, limit: int = 50) -> list[UnfinishedItem]:
        where = "" if include_resolved else "WHERE resolved_at IS NULL"
        with self._db.connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM unfinished {where} "
                f"ORDER BY {_PRIORITY_ORDER}, created_at DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [UnfinishedItem.from_row(r) for r in rows]

    def resolve(self, item_id: int, session_id: Optional[str] = None) -> bool:
        with self._db.connect() as conn:
            cur = conn.execute(
                "UPDATE unfinished SET resolved_at = ?, resolved_session = ? "
                "WHERE id = ? AND resolved_at IS NULL",
                (utcnow(), session_id, item_id),
            )
        return cur.rowcount > 0

    def open_count(self) -> int:
        with self._db.connect() as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM unfinished WHERE resolved_at IS NULL"
            ).fetchone()[0]

    def search(self, query: str, limit: int = 10) -> list[UnfinishedItem]:
        with self._db.connect() as conn:
            rows = fetch_ranked(conn, "unfinished", ranked_rowids(conn, "unfinished", query, limit))
        return [UnfinishedItem.from_row(r) for r in rows]

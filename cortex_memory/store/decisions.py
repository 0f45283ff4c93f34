"""Architecture and design decisions taken during sessions."""

from __future__ import annotations

from typing import Optional

from . import fts
from .db import Database, archive, touch, utcnow
from .models import Decision, dump_list
from .search import fetch_ranked, ranked_rowids

CATEGORIES = ("architecture", "convention", "bugfix", "feature", "config", "other")


class DecisionStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    def add(
        self,
        title: str,
        reasoning: str = "",
        category: str = "architecture",
        session_id: Optional[str] = None,
        alternatives: Optional[list[str]] = None,
        files_affected: Optional[list[str]] = None,
        confidence: str = "high",
    ) -> Decision:
        with self._db.connect() as conn:
            cur = conn.execute(
                "INSERT INTO decisions (session_id, created_at, category, title, "
                "reasoning, alternatives, files_affected, confidence) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    session_id, utcnow(), category, title, reasoning,
                    dump_list(alternatives), dump_list(files_affected), confidence,
                ),
            )
            decision_id = cur.lastrowid
            fts.index_row(conn, "decisions", decision_id)
            row = conn.execute(
                "SELECT * FROM decisions WHERE id = ?", (decision_id,)
            ).fetchone()
        return Decision.from_row(row)

    def get(self, decision_id: int) -> Optional[Decision]:
        """Fetch one decision and count the read."""
        with self._db.connect() as conn:
            touch(conn, "decisions", decision_id)
            row = conn.execute(
                "SELECT * FROM decisions WHERE id = ?", (decision_id,)
            ).fetchone()
        return Decision.from_row(row) if row else None

    def list(
        self,
        category: Optional[str] = None,
        include_superseded: bool = False,
        limit: int = 50,
    ) -> list[Decision]:
        clauses = ["archived_at IS NULL"]
        params: list = []
        if not include_superseded:
            clauses.append("superseded_by IS NULL")
        if category:
            clauses.append("category = ?")
            params.append(category)
        with self._db.connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM decisions WHERE {' AND '.join(clauses)} "
                f"ORDER BY created_at DESC LIMIT ?",
                (*params, limit),
            ).fetchall()
        return [Decision.from_row(r) for r in rows]

    def search(self, query: str, limit: int = 10) -> list[Decision]:
        with self._db.connect() as conn:
            rows = fetch_ranked(conn, "decisions", ranked_rowids(conn, "decisions", query, limit))
        return [Decision.from_row(r) for r in rows]

    def supersede(self, old_id: int, new_id: int) -> bool:
        """Mark *old_id* as replaced by *new_id*."""
        with self._db.connect() as conn:
            cur = conn.execute(
                "UPDATE decisions SET superseded_by = ? WHERE id = ?", (new_id, old_id)
            )
        return cur.rowcount > 0

    def for_file(self, path: str, limit: int = 10) -> list[Decision]:
        """Live decisions whose affected files mention *path*."""
        with self._db.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM decisions WHERE files_affected LIKE ? "
                "AND archived_at IS NULL AND superseded_by IS NULL "
                "ORDER BY created_at DESC LIMIT ?",
                (f"%{path}%", limit),
            ).fetchall()
        return [Decision.from_row(r) for r in rows]

    def archive(self, decision_id: int) -> bool:
        with self._db.connect() as conn:
            return archive(conn, "decisions", decision_id)

"""Session records: one row per coding session."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from . import fts
from .db import Database, age_days, parse_ts, utcnow
from .models import Session, dump_list
from .schema import FTS_TABLES
from .search import fetch_ranked, ranked_rowids

logger = logging.getLogger(__name__)

_UPDATABLE = frozenset({
    "ended_at", "duration_seconds", "summary", "key_changes",
    "chain_id", "chain_label", "status", "tags",
})
_LIST_COLUMNS = frozenset({"key_changes", "tags"})
_INDEXED = frozenset(FTS_TABLES["sessions"].columns)

# A session continues a chain when it starts this soon after the last one
# ended and touches at least one of the same files.
_CHAIN_WINDOW = timedelta(hours=24)


class SessionStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    def create(self, session_id: str, started_at: Optional[str] = None) -> Session:
        """Insert an active session.  An existing id is left untouched."""
        with self._db.connect() as conn:
            cur = conn.execute(
                "INSERT OR IGNORE INTO sessions (id, started_at, status) "
                "VALUES (?, ?, 'active')",
                (session_id, started_at or utcnow()),
            )
            if cur.rowcount:
                rowid = conn.execute(
                    "SELECT rowid FROM sessions WHERE id = ?", (session_id,)
                ).fetchone()[0]
                fts.index_row(conn, "sessions", rowid)
        return self.get(session_id)  # type: ignore[return-value]

    def get(self, session_id: str) -> Optional[Session]:
        with self._db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM sessions WHERE id = ?", (session_id,)
            ).fetchone()
        return Session.from_row(row) if row else None

    def update(self, session_id: str, **fields) -> bool:
        """Update the given columns.  Returns False if the session is unknown."""
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"cannot update session columns: {sorted(unknown)}")
        if not fields:
            return False
        values = {
            k: dump_list(v) if k in _LIST_COLUMNS else v for k, v in fields.items()
        }
        assignments = ", ".join(f"{k} = ?" for k in values)
        with self._db.connect() as conn:
            cur = conn.execute(
                f"UPDATE sessions SET {assignments} WHERE id = ?",
                (*values.values(), session_id),
            )
            if not cur.rowcount:
                return False
            if _INDEXED & set(values):
                rowid = conn.execute(
                    "SELECT rowid FROM sessions WHERE id = ?", (session_id,)
                ).fetchone()[0]
                fts.index_row(conn, "sessions", rowid)
        return True

    def end_session(
        self,
        session_id: str,
        summary: str,
        key_changes: Optional[list[str]] = None,
        status: str = "completed",
    ) -> Session:
        """Close a session, creating it first if no start was recorded."""
        session = self.get(session_id) or self.create(session_id)
        ended_at = utcnow()
        started = parse_ts(session.started_at)
        ended = parse_ts(ended_at)
        duration = int((ended - started).total_seconds()) if started and ended else None
        self.update(
            session_id,
            ended_at=ended_at,
            duration_seconds=duration,
            summary=summary,
            key_changes=key_changes or [],
            status=status,
        )
        if key_changes:
            self.detect_chain(session_id)
        return self.get(session_id)  # type: ignore[return-value]

    def list_recent(self, limit: int = 10, include_active: bool = False) -> list[Session]:
        where = "" if include_active else "WHERE status != 'active'"
        with self._db.connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM sessions {where} ORDER BY started_at DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [Session.from_row(r) for r in rows]

    def search(self, query: str, limit: int = 10) -> list[Session]:
        with self._db.connect() as conn:
            rows = fetch_ranked(conn, "sessions", ranked_rowids(conn, "sessions", query, limit))
        return [Session.from_row(r) for r in rows]

    def files_for_session(self, session_id: str) -> list[str]:
        """Files a session touched: its recorded diffs plus its key changes."""
        session = self.get(session_id)
        with self._db.connect() as conn:
            rows = conn.execute(
                "SELECT DISTINCT file_path FROM diffs WHERE session_id = ?",
                (session_id,),
            ).fetchall()
        files = [r["file_path"] for r in rows]
        if session:
            files.extend(f for f in session.key_changes if f not in files)
        return files

    def detect_chain(self, session_id: str) -> Optional[str]:
        """Link *session_id* to a recent session that touched the same files.

        Returns the chain id, or None when the session starts a new chain.
        """
        session = self.get(session_id)
        if session is None or not session.key_changes:
            return None
        mine = set(session.key_changes)
        started = parse_ts(session.started_at)

        for previous in self.list_recent(limit=5):
            if previous.id == session_id:
                continue
            ended = parse_ts(previous.ended_at)
            if started and ended and started - ended > _CHAIN_WINDOW:
                continue
            if mine & set(previous.key_changes):
                chain_id = previous.chain_id or previous.id
                label = previous.chain_label or (previous.summary or "")[:60]
                self.update(session_id, chain_id=chain_id, chain_label=label)
                if not previous.chain_id:
                    self.update(previous.id, chain_id=chain_id, chain_label=label)
                logger.debug("[Store] Session %s joins chain %s", session_id, chain_id)
                return chain_id
        return None

    def recency_days(self, session: Session) -> float:
        return age_days(session.ended_at or session.started_at)

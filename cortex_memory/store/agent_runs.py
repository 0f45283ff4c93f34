"""
Audit log of external agent invocations.

A run is written as pending when dispatched and closed exactly once when
the invocation resolves.  Duration comes from the stored start time.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from .db import Database, parse_ts, utcnow
from .models import AgentRunRecord

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 500


class AgentRunStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    def start(self, agent_name: str, session_id: Optional[str] = None) -> int:
        """Insert a pending run and return its id."""
        with self._db.connect() as conn:
            cur = conn.execute(
                "INSERT INTO agent_runs (agent_name, session_id, started_at) VALUES (?, ?, ?)",
                (agent_name, session_id, utcnow()),
            )
        return cur.lastrowid

    def finish(
        self,
        run_id: int,
        success: bool,
        error_message: Optional[str] = None,
        items_saved: int = 0,
    ) -> bool:
        """Close a pending run.

        Returns False (and leaves the row untouched) if the run is unknown
        or already closed.
        """
        finished_at = utcnow()
        if error_message:
            error_message = error_message[:MAX_ERROR_LENGTH]
        with self._db.connect() as conn:
            row = conn.execute(
                "SELECT started_at, finished_at FROM agent_runs WHERE id = ?", (run_id,)
            ).fetchone()
            if row is None or row["finished_at"] is not None:
                logger.warning("[Store] Agent run %s is unknown or already closed", run_id)
                return False
            started = parse_ts(row["started_at"])
            finished = parse_ts(finished_at)
            duration_ms = (
                int((finished - started).total_seconds() * 1000) if started and finished else None
            )
            cur = conn.execute(
                "UPDATE agent_runs SET finished_at = ?, success = ?, error_message = ?, "
                "duration_ms = ?, items_saved = ? WHERE id = ? AND finished_at IS NULL",
                (finished_at, 1 if success else 0, error_message, duration_ms,
                 items_saved, run_id),
            )
        return cur.rowcount > 0

    def set_items_saved(self, run_id: int, items_saved: int) -> None:
        with self._db.connect() as conn:
            conn.execute(
                "UPDATE agent_runs SET items_saved = ? WHERE id = ?", (items_saved, run_id)
            )

    def get(self, run_id: int) -> Optional[AgentRunRecord]:
        with self._db.connect() as conn:
            row = conn.execute("SELECT * FROM agent_runs WHERE id = ?", (run_id,)).fetchone()
        return AgentRunRecord.from_row(row) if row else None

    def recent(self, limit: int = 20, agent_name: Optional[str] = None) -> list[AgentRunRecord]:
        where, params = ("WHERE agent_name = ?", (agent_name,)) if agent_name else ("", ())
        with self._db.connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM agent_runs {where} ORDER BY id DESC LIMIT ?",
                (*params, limit),
            ).fetchall()
        return [AgentRunRecord.from_row(r) for r in rows]

    def success_rates(self, days: int = 30) -> dict[str, dict]:
        """Per-agent totals of closed runs over the last *days* days."""
        since = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat(
            timespec="milliseconds"
        )
        with self._db.connect() as conn:
            rows = conn.execute(
                "SELECT agent_name, COUNT(*) AS runs, SUM(success) AS ok, "
                "AVG(duration_ms) AS avg_ms FROM agent_runs "
                "WHERE finished_at IS NOT NULL AND started_at >= ? "
                "GROUP BY agent_name ORDER BY agent_name",
                (since,),
            ).fetchall()
        return {
            r["agent_name"]: {
                "runs": r["runs"],
                "succeeded": r["ok"] or 0,
                "rate": round((r["ok"] or 0) / r["runs"], 3) if r["runs"] else 0.0,
                "avg_ms": int(r["avg_ms"] or 0),
            }
            for r in rows
        }

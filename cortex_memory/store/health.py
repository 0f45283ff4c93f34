"""
Project health score: one number (0-100) summarizing open problems,
stored as at most one snapshot per day.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from .db import Database
from .models import HealthSnapshot

logger = logging.getLogger(__name__)

# A move of at least this many points between snapshots is a trend.
_TREND_DELTA = 2


def compute_score(metrics: dict) -> int:
    """Turn raw metrics into a 0-100 score.

    Parameters
    ----------
    metrics:
        Keys ``open_errors``, ``unresolved_unfinished``,
        ``pattern_violations``, ``hot_zones``, ``recent_bugs`` and
        ``doc_coverage`` (a percentage).  Missing keys count as zero.
    """
    score = 100
    score -= 5 * metrics.get("open_errors", 0)
    score -= 2 * metrics.get("unresolved_unfinished", 0)
    score -= min(metrics.get("pattern_violations", 0), 20)
    score -= 2 * metrics.get("hot_zones", 0)
    score -= 3 * metrics.get("recent_bugs", 0)
    score += round(metrics.get("doc_coverage", 0) / 10)
    return max(0, min(100, int(score)))


class HealthStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    def calculate(self) -> dict:
        """Collect the current metrics from the store."""
        week_ago = (datetime.now(timezone.utc) - timedelta(days=7)).isoformat(
            timespec="milliseconds"
        )
        with self._db.connect() as conn:
            open_errors = conn.execute(
                "SELECT COUNT(*) FROM errors WHERE fix_description IS NULL "
                "AND archived_at IS NULL"
            ).fetchone()[0]
            unfinished = conn.execute(
                "SELECT COUNT(*) FROM unfinished WHERE resolved_at IS NULL"
            ).fetchone()[0]
            violations = conn.execute(
                "SELECT COALESCE(SUM(occurrences - 1), 0) FROM learnings "
                "WHERE auto_block = 1 AND archived_at IS NULL"
            ).fetchone()[0]
            hot_zones = conn.execute(
                "SELECT COUNT(*) FROM project_files WHERE change_count >= 5"
            ).fetchone()[0]
            recent_bugs = conn.execute(
                "SELECT COUNT(*) FROM errors WHERE first_seen >= ?", (week_ago,)
            ).fetchone()[0]
            files = conn.execute(
                "SELECT COUNT(*) AS total, SUM(CASE WHEN description IS NOT NULL "
                "AND description != '' THEN 1 ELSE 0 END) AS described FROM project_files"
            ).fetchone()
        coverage = 100.0 * (files["described"] or 0) / files["total"] if files["total"] else 0.0
        return {
            "open_errors": open_errors,
            "unresolved_unfinished": unfinished,
            "pattern_violations": violations,
            "hot_zones": hot_zones,
            "recent_bugs": recent_bugs,
            "doc_coverage": round(coverage, 1),
        }

    def save_snapshot(self, date: Optional[str] = None) -> HealthSnapshot:
        """Compute and store today's snapshot, replacing an earlier one."""
        date = date or datetime.now(timezone.utc).strftime("%Y-%m-%d")
        metrics = self.calculate()
        score = compute_score(metrics)

        previous = self._previous(date)
        trend = "stable"
        if previous is not None:
            if score >= previous.score + _TREND_DELTA:
                trend = "up"
            elif score <= previous.score - _TREND_DELTA:
                trend = "down"

        with self._db.connect() as conn:
            conn.execute(
                """
                INSERT INTO health_snapshots (date, score, metrics, trend)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(date) DO UPDATE SET
                    score   = excluded.score,
                    metrics = excluded.metrics,
                    trend   = excluded.trend
                """,
                (date, score, json.dumps(metrics), trend),
            )
        logger.debug("[Store] Health snapshot %s: %d (%s)", date, score, trend)
        return HealthSnapshot(date=date, score=score, metrics=metrics, trend=trend)

    def _previous(self, date: str) -> Optional[HealthSnapshot]:
        with self._db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM health_snapshots WHERE date < ? ORDER BY date DESC LIMIT 1",
                (date,),
            ).fetchone()
        return HealthSnapshot.from_row(row) if row else None

    def latest(self) -> Optional[HealthSnapshot]:
        history = self.history(limit=1)
        return history[0] if history else None

    def history(self, limit: int = 30) -> list[HealthSnapshot]:
        with self._db.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM health_snapshots ORDER BY date DESC LIMIT ?", (limit,)
            ).fetchall()
        return [HealthSnapshot.from_row(r) for r in rows]

"""Per-file bookkeeping: change and error counts, short descriptions."""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from .db import Database, utcnow
from .models import ProjectFile


class ProjectFileStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    def get(self, path: str) -> Optional[ProjectFile]:
        with self._db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM project_files WHERE path = ?", (path,)
            ).fetchone()
        return ProjectFile.from_row(row) if row else None

    def record_change(self, path: str, session_id: Optional[str] = None) -> None:
        """Count one more change to *path*, creating its row if needed."""
        ext = os.path.splitext(path)[1].lstrip(".") or None
        with self._db.connect() as conn:
            conn.execute(
                """
                INSERT INTO project_files (path, file_type, change_count, last_changed,
                                           last_changed_session)
                VALUES (?, ?, 1, ?, ?)
                ON CONFLICT(path) DO UPDATE SET
                    change_count         = change_count + 1,
                    last_changed         = excluded.last_changed,
                    last_changed_session = excluded.last_changed_session
                """,
                (path, ext, utcnow(), session_id),
            )

    def record_error(self, path: str) -> None:
        with self._db.connect() as conn:
            conn.execute(
                "INSERT INTO project_files (path, error_count) VALUES (?, 1) "
                "ON CONFLICT(path) DO UPDATE SET error_count = error_count + 1",
                (path,),
            )

    def set_description(self, path: str, description: str, overwrite: bool = False) -> bool:
        """Store a short description; keeps an existing one unless *overwrite*."""
        guard = "" if overwrite else " WHERE project_files.description IS NULL OR project_files.description = ''"
        with self._db.connect() as conn:
            cur = conn.execute(
                "INSERT INTO project_files (path, description) VALUES (?, ?) "
                f"ON CONFLICT(path) DO UPDATE SET description = excluded.description{guard}",
                (path, description),
            )
        return cur.rowcount > 0

    def recently_changed(self, hours: float = 2.0, limit: int = 20) -> list[ProjectFile]:
        since = (datetime.now(timezone.utc) - timedelta(hours=hours)).isoformat(
            timespec="milliseconds"
        )
        with self._db.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM project_files WHERE last_changed > ? "
                "ORDER BY last_changed DESC LIMIT ?",
                (since, limit),
            ).fetchall()
        return [ProjectFile.from_row(r) for r in rows]

    def hot_zones(self, min_changes: int = 5, limit: int = 10) -> list[ProjectFile]:
        """Files changed often enough to deserve attention."""
        with self._db.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM project_files WHERE change_count >= ? "
                "ORDER BY change_count DESC LIMIT ?",
                (min_changes, limit),
            ).fetchall()
        return [ProjectFile.from_row(r) for r in rows]

    def description_coverage(self) -> float:
        """Percentage of tracked files that have a description."""
        with self._db.connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS total, "
                "SUM(CASE WHEN description IS NOT NULL AND description != '' "
                "THEN 1 ELSE 0 END) AS described FROM project_files"
            ).fetchone()
        if not row["total"]:
            return 0.0
        return 100.0 * (row["described"] or 0) / row["total"]

"""Raw per-file diffs captured at the end of a session."""

from __future__ import annotations

from typing import Optional

from ..analysis.diff_parser import ParsedDiff, serialize_diff
from .db import Database, utcnow
from .models import DiffRecord


class DiffStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    def add(
        self,
        file_path: str,
        diff_content: str,
        session_id: Optional[str] = None,
        change_type: str = "modified",
        lines_added: int = 0,
        lines_removed: int = 0,
    ) -> int:
        with self._db.connect() as conn:
            cur = conn.execute(
                "INSERT INTO diffs (session_id, file_path, diff_content, change_type, "
                "lines_added, lines_removed, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (session_id, file_path, diff_content, change_type,
                 lines_added, lines_removed, utcnow()),
            )
        return cur.lastrowid

    def add_parsed(self, diffs: list[ParsedDiff], session_id: Optional[str] = None) -> list[int]:
        """Store each parsed file diff as its own row."""
        return [
            self.add(
                file_path=d.file_path,
                diff_content=serialize_diff([d]),
                session_id=session_id,
                change_type=d.change_type,
                lines_added=d.lines_added,
                lines_removed=d.lines_removed,
            )
            for d in diffs
        ]

    def for_file(self, file_path: str, limit: int = 10) -> list[DiffRecord]:
        return self._query("WHERE file_path = ?", (file_path,), limit)

    def for_session(self, session_id: str, limit: int = 100) -> list[DiffRecord]:
        return self._query("WHERE session_id = ?", (session_id,), limit)

    def recent(self, limit: int = 20) -> list[DiffRecord]:
        return self._query("", (), limit)

    def _query(self, where: str, params: tuple, limit: int) -> list[DiffRecord]:
        with self._db.connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM diffs {where} ORDER BY created_at DESC, id DESC LIMIT ?",
                (*params, limit),
            ).fetchall()
        return [DiffRecord.from_row(r) for r in rows]

    def stats(self) -> dict:
        with self._db.connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS total, COUNT(DISTINCT file_path) AS files, "
                "COALESCE(SUM(lines_added), 0) AS added, "
                "COALESCE(SUM(lines_removed), 0) AS removed FROM diffs"
            ).fetchone()
            top = conn.execute(
                "SELECT file_path, COUNT(*) AS n FROM diffs GROUP BY file_path "
                "ORDER BY n DESC LIMIT 5"
            ).fetchall()
        return {
            "total_diffs": row["total"],
            "files": row["files"],
            "lines_added": row["added"],
            "lines_removed": row["removed"],
            "most_changed": [(r["file_path"], r["n"]) for r in top],
        }

"""
Error records, deduplicated by a signature derived from the message.

The signature normalizes volatile parts of a message (numbers, paths,
hex ids, whitespace) and hashes the whole result, so two long messages
that only share a prefix stay distinct.
"""

from __future__ import annotations

import hashlib
import logging
import re
from typing import Optional

from . import fts
from .db import Database, archive, touch, utcnow
from .models import ErrorRecord, dump_list, load_list
from .search import fetch_ranked, ranked_rowids

logger = logging.getLogger(__name__)

_HEX = re.compile(r"\b0x[0-9a-fA-F]+\b|\b[0-9a-fA-F]{8,}\b")
_PATH = re.compile(r"(?:[A-Za-z]:)?(?:[\\/][\w.\-]+){2,}")
_NUMBER = re.compile(r"\d+")
_SPACE = re.compile(r"\s+")

_UPDATABLE = frozenset({
    "root_cause", "fix_description", "fix_diff", "files_involved",
    "prevention_rule", "severity",
})


def error_signature(message: str) -> str:
    """Stable 16-hex-digit signature for an error message."""
    text = _HEX.sub("HEX", message or "")
    text = _PATH.sub("PATH", text)
    text = _NUMBER.sub("N", text)
    text = _SPACE.sub(" ", text).strip().lower()
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


class ErrorStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    signature = staticmethod(error_signature)

    def add(
        self,
        error_message: str,
        root_cause: Optional[str] = None,
        fix_description: Optional[str] = None,
        fix_diff: Optional[str] = None,
        files_involved: Optional[list[str]] = None,
        prevention_rule: Optional[str] = None,
        severity: str = "medium",
        session_id: Optional[str] = None,
    ) -> ErrorRecord:
        """Insert an error, or bump the occurrence count of a known one.

        On a signature collision the existing row keeps its fields; empty
        fix fields are filled from the new report.
        """
        sig = error_signature(error_message)
        now = utcnow()
        with self._db.connect() as conn:
            # A single upsert statement takes the write lock up front, so
            # concurrent reports of the same error each count once.
            conn.execute(
                """
                INSERT INTO errors (session_id, first_seen, last_seen, error_signature,
                                    error_message, root_cause, fix_description, fix_diff,
                                    files_involved, prevention_rule, severity)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(error_signature) DO UPDATE SET
                    occurrences     = occurrences + 1,
                    last_seen       = excluded.last_seen,
                    root_cause      = COALESCE(root_cause, excluded.root_cause),
                    fix_description = COALESCE(fix_description, excluded.fix_description),
                    fix_diff        = COALESCE(fix_diff, excluded.fix_diff),
                    files_involved  = COALESCE(files_involved, excluded.files_involved),
                    prevention_rule = COALESCE(prevention_rule, excluded.prevention_rule)
                """,
                (session_id, now, now, sig, error_message, root_cause,
                 fix_description, fix_diff, dump_list(files_involved),
                 prevention_rule, severity),
            )
            row = conn.execute(
                "SELECT * FROM errors WHERE error_signature = ?", (sig,)
            ).fetchone()
            fts.index_row(conn, "errors", row["id"])
        if row["occurrences"] > 1:
            logger.debug("[Store] Error %s seen again (id=%d)", sig, row["id"])
        return ErrorRecord.from_row(row)

    def get(self, error_id: int) -> Optional[ErrorRecord]:
        """Fetch one error and count the read."""
        with self._db.connect() as conn:
            touch(conn, "errors", error_id)
            row = conn.execute("SELECT * FROM errors WHERE id = ?", (error_id,)).fetchone()
        return ErrorRecord.from_row(row) if row else None

    def get_by_signature(self, signature: str) -> Optional[ErrorRecord]:
        with self._db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM errors WHERE error_signature = ?", (signature,)
            ).fetchone()
        return ErrorRecord.from_row(row) if row else None

    def list(
        self,
        severity: Optional[str] = None,
        file: Optional[str] = None,
        with_fix: Optional[bool] = None,
        limit: int = 50,
    ) -> list[ErrorRecord]:
        clauses = ["archived_at IS NULL"]
        params: list = []
        if severity:
            clauses.append("severity = ?")
            params.append(severity)
        if file:
            clauses.append("files_involved LIKE ?")
            params.append(f"%{file}%")
        if with_fix is True:
            clauses.append("fix_description IS NOT NULL")
        elif with_fix is False:
            clauses.append("fix_description IS NULL")
        with self._db.connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM errors WHERE {' AND '.join(clauses)} "
                f"ORDER BY last_seen DESC LIMIT ?",
                (*params, limit),
            ).fetchall()
        return [ErrorRecord.from_row(r) for r in rows]

    def search(self, query: str, limit: int = 10) -> list[ErrorRecord]:
        with self._db.connect() as conn:
            rows = fetch_ranked(conn, "errors", ranked_rowids(conn, "errors", query, limit))
        return [ErrorRecord.from_row(r) for r in rows]

    def for_files(self, paths: list[str], limit: int = 20) -> list[ErrorRecord]:
        """Live errors involving any of *paths*, most frequent first."""
        if not paths:
            return []
        where = " OR ".join("files_involved LIKE ?" for _ in paths)
        with self._db.connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM errors WHERE ({where}) AND archived_at IS NULL "
                f"ORDER BY occurrences DESC LIMIT ?",
                (*[f"%{p}%" for p in paths], limit),
            ).fetchall()
        return [ErrorRecord.from_row(r) for r in rows]

    def update(self, error_id: int, **fields) -> bool:
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"cannot update error columns: {sorted(unknown)}")
        if not fields:
            return False
        if "files_involved" in fields:
            fields["files_involved"] = dump_list(fields["files_involved"])
        assignments = ", ".join(f"{k} = ?" for k in fields)
        with self._db.connect() as conn:
            cur = conn.execute(
                f"UPDATE errors SET {assignments} WHERE id = ?",
                (*fields.values(), error_id),
            )
            if not cur.rowcount:
                return False
            fts.index_row(conn, "errors", error_id)
        return True

    def delete(self, error_id: int) -> bool:
        with self._db.connect() as conn:
            fts.remove_row(conn, "errors", error_id)
            cur = conn.execute("DELETE FROM errors WHERE id = ?", (error_id,))
        return cur.rowcount > 0

    def archive(self, error_id: int) -> bool:
        with self._db.connect() as conn:
            return archive(conn, "errors", error_id)

    def prevention_rules(self) -> list[str]:
        with self._db.connect() as conn:
            rows = conn.execute(
                "SELECT prevention_rule FROM errors WHERE prevention_rule IS NOT NULL "
                "AND archived_at IS NULL ORDER BY occurrences DESC"
            ).fetchall()
        return [r["prevention_rule"] for r in rows]

    def open_count(self) -> int:
        """Live errors that have no recorded fix."""
        with self._db.connect() as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM errors WHERE fix_description IS NULL "
                "AND archived_at IS NULL"
            ).fetchone()[0]

    def file_error_counts(self) -> dict[str, int]:
        """How many live errors mention each file."""
        counts: dict[str, int] = {}
        with self._db.connect() as conn:
            rows = conn.execute(
                "SELECT files_involved FROM errors WHERE archived_at IS NULL"
            ).fetchall()
        for row in rows:
            for path in load_list(row["files_involved"]):
                counts[path] = counts.get(path, 0) + 1
        return counts

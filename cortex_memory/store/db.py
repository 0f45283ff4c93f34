"""
SQLite connection management, schema setup and migrations for the
per-project knowledge store.
"""

from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional

from ..errors import StoreError
from . import fts
from .schema import FTS_TABLES, MIGRATIONS, SCHEMA

logger = logging.getLogger(__name__)

# sqlite3 error texts that mean "this migration step already ran".
_ALREADY_APPLIED = ("duplicate column", "already exists")


def utcnow() -> str:
    """Current UTC time as an ISO-8601 string with milliseconds."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


def parse_ts(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp; naive values are taken as UTC."""
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def age_days(value: Optional[str], now: Optional[datetime] = None) -> float:
    """Days elapsed since *value*; very large when unknown."""
    dt = parse_ts(value)
    if dt is None:
        return float("inf")
    now = now or datetime.now(timezone.utc)
    return max((now - dt).total_seconds() / 86400.0, 0.0)


def touch(conn: sqlite3.Connection, table: str, row_id: int) -> None:
    """Record a read of a lifecycle-tracked row."""
    conn.execute(
        f"UPDATE {table} SET access_count = access_count + 1, last_accessed = ? "
        f"WHERE id = ?",
        (utcnow(), row_id),
    )


def archive(conn: sqlite3.Connection, table: str, row_id: int) -> bool:
    """Soft-delete a row.  Its shadow index row is kept."""
    cur = conn.execute(
        f"UPDATE {table} SET archived_at = ? WHERE id = ? AND archived_at IS NULL",
        (utcnow(), row_id),
    )
    return cur.rowcount > 0


class Database:
    """
    One SQLite knowledge database per project.

    Creates the schema on first use, applies pending migrations and
    backfills empty full-text shadow tables.  Opening an up-to-date
    database again changes nothing.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file.  Will be created if absent.
    busy_timeout_ms:
        How long a writer waits on a locked database before failing.
    """

    def __init__(self, db_path: str, busy_timeout_ms: int = 5000) -> None:
        if not db_path:
            raise StoreError("no database path given")
        self._db_path = db_path
        self._busy_timeout_ms = busy_timeout_ms
        os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
        self._init_db()

    @property
    def path(self) -> str:
        return self._db_path

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection; commit on success, roll back on error."""
        conn = sqlite3.connect(
            self._db_path, timeout=self._busy_timeout_ms / 1000.0
        )
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        conn.execute(f"PRAGMA busy_timeout={int(self._busy_timeout_ms)}")
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _init_db(self) -> None:
        """Create tables, run pending migrations, backfill shadow tables."""
        with self.connect() as conn:
            conn.executescript(SCHEMA)
            for tdef in FTS_TABLES.values():
                conn.execute(tdef.ddl)

            # A fresh database runs every step too; SCHEMA already has the
            # columns, so each step is a tolerated no-op.
            current = self._current_version(conn)
            for version, statements in MIGRATIONS:
                if version > current:
                    self._apply_migration(conn, version, statements)
            if current < 1:
                conn.execute(
                    "INSERT OR IGNORE INTO schema_version (version, applied_at) "
                    "VALUES (1, ?)",
                    (utcnow(),),
                )

            for table, tdef in FTS_TABLES.items():
                base = conn.execute(f"SELECT COUNT(*) FROM {tdef.base}").fetchone()[0]
                shadow = conn.execute(f"SELECT COUNT(*) FROM {tdef.shadow}").fetchone()[0]
                if base and not shadow:
                    count = fts.rebuild(conn, table)
                    logger.info("[Store] Backfilled %s with %d row(s)", tdef.shadow, count)

    @staticmethod
    def _current_version(conn: sqlite3.Connection) -> int:
        row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
        return int(row[0] or 0)

    @staticmethod
    def _apply_migration(
        conn: sqlite3.Connection, version: int, statements: list[str]
    ) -> None:
        for stmt in statements:
            try:
                conn.execute(stmt)
            except sqlite3.OperationalError as exc:
                if not any(marker in str(exc) for marker in _ALREADY_APPLIED):
                    raise
                logger.debug("[Store] Migration %d step already applied: %s", version, exc)
        conn.execute(
            "INSERT OR IGNORE INTO schema_version (version, applied_at) VALUES (?, ?)",
            (version, utcnow()),
        )
        logger.debug("[Store] Schema at version %d", version)

    def schema_version(self) -> int:
        with self.connect() as conn:
            return self._current_version(conn)

    # ------------------------------------------------------------------
    # Full-text index maintenance
    # ------------------------------------------------------------------

    def rebuild_index(
        self,
        table: Optional[str] = None,
        progress: Optional[Callable[[str, int], None]] = None,
    ) -> dict[str, int]:
        """Rebuild one or all shadow tables from their base tables.

        Parameters
        ----------
        table:
            Base table name, or None for every indexed table.
        progress:
            Called as ``progress(table, row_count)`` after each table.

        Returns
        -------
        dict[str, int]
            Rows indexed per base table.
        """
        tables = [table] if table else list(FTS_TABLES)
        counts: dict[str, int] = {}
        with self.connect() as conn:
            for name in tables:
                counts[name] = fts.rebuild(conn, name)
                if progress:
                    progress(name, counts[name])
        return counts

    def check_index_consistency(self) -> dict[str, fts.IndexDrift]:
        """Report base rows without shadow rows and vice versa, per table."""
        with self.connect() as conn:
            return {name: fts.drift(conn, name) for name in FTS_TABLES}

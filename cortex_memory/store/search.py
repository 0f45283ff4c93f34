"""
Full-text search over the knowledge store.

Per-table lookups used by the record stores, plus a unified BM25 search
across every indexed table.  Queries that FTS5 rejects fall back to a
plain ``LIKE`` scan so callers always get an answer.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass

from . import fts
from .schema import FTS_TABLES

logger = logging.getLogger(__name__)

_KIND_LABELS = {
    "sessions": "session",
    "decisions": "decision",
    "errors": "error",
    "learnings": "learning",
    "unfinished": "unfinished",
}


@dataclass
class SearchResult:
    """One hit from the unified search."""
    kind: str
    id: object
    score: float
    snippet: str


def ranked_rowids(
    conn: sqlite3.Connection,
    table: str,
    query: str,
    limit: int = 10,
    live_only: bool = True,
) -> list[int]:
    """Return base-table rowids matching *query*, best first.

    Archived rows are still indexed; *live_only* hides them.
    """
    tdef = FTS_TABLES[table]
    match = fts.match_query(query)
    if not match:
        return []
    live = " AND b.archived_at IS NULL" if tdef.archivable and live_only else ""
    try:
        rows = conn.execute(
            f"SELECT b.rowid FROM {tdef.shadow} "
            f"JOIN {tdef.base} b ON b.rowid = {tdef.shadow}.rowid "
            f"WHERE {tdef.shadow} MATCH ?{live} "
            f"ORDER BY bm25({tdef.shadow}) LIMIT ?",
            (match, limit),
        ).fetchall()
        return [r[0] for r in rows]
    except sqlite3.OperationalError as exc:
        logger.debug("[Search] FTS query failed on %s (%s), using LIKE", table, exc)
        return _like_rowids(conn, table, query, limit, live)


def _like_rowids(
    conn: sqlite3.Connection, table: str, query: str, limit: int, live: str
) -> list[int]:
    tdef = FTS_TABLES[table]
    pattern = f"%{query.strip()}%"
    where = " OR ".join(f"b.{col} LIKE ?" for col in tdef.columns)
    rows = conn.execute(
        f"SELECT b.rowid FROM {tdef.base} b WHERE ({where}){live} "
        f"ORDER BY b.rowid DESC LIMIT ?",
        (*([pattern] * len(tdef.columns)), limit),
    ).fetchall()
    return [r[0] for r in rows]


def fetch_ranked(
    conn: sqlite3.Connection, table: str, rowids: list[int]
) -> list[sqlite3.Row]:
    """Load base rows for *rowids*, keeping their rank order."""
    if not rowids:
        return []
    placeholders = ", ".join("?" for _ in rowids)
    rows = conn.execute(
        f"SELECT rowid AS _rowid, * FROM {table} WHERE rowid IN ({placeholders})",
        rowids,
    ).fetchall()
    by_id = {r["_rowid"]: r for r in rows}
    return [by_id[i] for i in rowids if i in by_id]


def search_all(db, query: str, limit: int = 20) -> list[SearchResult]:
    """BM25 search across all indexed tables.

    Parameters
    ----------
    db:
        A :class:`~cortex_memory.store.db.Database`.
    query:
        Free text; each word must appear in a hit.
    limit:
        Maximum number of results overall.

    Returns
    -------
    list[SearchResult]
        Highest score first.  BM25 ranks are negated so larger is better.
    """
    match = fts.match_query(query)
    if not match:
        return []

    results: list[SearchResult] = []
    with db.connect() as conn:
        for table, tdef in FTS_TABLES.items():
            live = " AND b.archived_at IS NULL" if tdef.archivable else ""
            try:
                rows = conn.execute(
                    f"SELECT b.id AS id, -bm25({tdef.shadow}) AS score, "
                    f"snippet({tdef.shadow}, -1, '[', ']', '...', 12) AS snip "
                    f"FROM {tdef.shadow} "
                    f"JOIN {tdef.base} b ON b.rowid = {tdef.shadow}.rowid "
                    f"WHERE {tdef.shadow} MATCH ?{live} "
                    f"ORDER BY bm25({tdef.shadow}) LIMIT ?",
                    (match, limit),
                ).fetchall()
            except sqlite3.OperationalError as exc:
                logger.debug("[Search] Skipping %s: %s", table, exc)
                continue
            for row in rows:
                results.append(SearchResult(
                    kind=_KIND_LABELS[table],
                    id=row["id"],
                    score=round(float(row["score"]), 4),
                    snippet=row["snip"] or "",
                ))

    results.sort(key=lambda r: r.score, reverse=True)
    return results[:limit]


def format_results(results: list[SearchResult]) -> str:
    """Render search hits one per line for terminal output."""
    if not results:
        return "(no results)"
    return "\n".join(
        f"[{r.kind} #{r.id}] ({r.score:.2f}) {r.snippet}" for r in results
    )

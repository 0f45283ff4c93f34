"""
Learnings: anti-pattern / correct-pattern pairs distilled from sessions.

New learnings are compared against the live ones with the similarity
index so the same lesson is not stored twice under different wording.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from ..analysis.similarity import DEFAULT_THRESHOLD, SimilarityMatch, find_similar
from . import fts
from .db import Database, archive, touch, utcnow
from .models import Learning
from .search import fetch_ranked, ranked_rowids

logger = logging.getLogger(__name__)

# Upper bound on the corpus compared against a new learning
_DEDUP_CORPUS_LIMIT = 500

_UPDATABLE = frozenset({
    "anti_pattern", "correct_pattern", "detection_regex", "context",
    "severity", "auto_block",
})


class LearningStore:
    """
    Parameters
    ----------
    db:
        The project database.
    similarity_threshold:
        Score at or above which a new learning counts as a duplicate.
    """

    def __init__(self, db: Database, similarity_threshold: float = DEFAULT_THRESHOLD) -> None:
        self._db = db
        self._threshold = similarity_threshold

    def find_duplicate(self, anti_pattern: str, correct_pattern: str) -> Optional[SimilarityMatch]:
        """Return the closest live learning above the threshold, if any."""
        with self._db.connect() as conn:
            rows = conn.execute(
                "SELECT id, anti_pattern, correct_pattern FROM learnings "
                "WHERE archived_at IS NULL ORDER BY id DESC LIMIT ?",
                (_DEDUP_CORPUS_LIMIT,),
            ).fetchall()
        corpus = [(r["id"], f"{r['anti_pattern']} {r['correct_pattern']}") for r in rows]
        matches = find_similar(f"{anti_pattern} {correct_pattern}", corpus, self._threshold)
        return matches[0] if matches else None

    def add(
        self,
        anti_pattern: str,
        correct_pattern: str,
        detection_regex: Optional[str] = None,
        context: Optional[str] = None,
        severity: str = "medium",
        auto_block: bool = False,
        session_id: Optional[str] = None,
        skip_duplicates: bool = False,
    ) -> tuple[Optional[Learning], Optional[SimilarityMatch]]:
        """Store a learning and report any near-duplicate.

        Returns
        -------
        tuple
            ``(learning, duplicate)``.  With *skip_duplicates* a duplicate
            is not inserted; its occurrence count goes up instead and the
            returned learning is None.
        """
        duplicate = self.find_duplicate(anti_pattern, correct_pattern)
        if duplicate is not None and skip_duplicates:
            self.increment_occurrence(int(duplicate.id))
            logger.info(
                "[Store] Learning matches #%s (%.0f%%), not stored",
                duplicate.id, duplicate.score * 100,
            )
            return None, duplicate

        with self._db.connect() as conn:
            cur = conn.execute(
                "INSERT INTO learnings (session_id, created_at, anti_pattern, "
                "correct_pattern, detection_regex, context, severity, auto_block) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (session_id, utcnow(), anti_pattern, correct_pattern,
                 detection_regex, context, severity, 1 if auto_block else 0),
            )
            learning_id = cur.lastrowid
            fts.index_row(conn, "learnings", learning_id)
            row = conn.execute(
                "SELECT * FROM learnings WHERE id = ?", (learning_id,)
            ).fetchone()
        return Learning.from_row(row), duplicate

    def get(self, learning_id: int) -> Optional[Learning]:
        """Fetch one learning and count the read."""
        with self._db.connect() as conn:
            touch(conn, "learnings", learning_id)
            row = conn.execute(
                "SELECT * FROM learnings WHERE id = ?", (learning_id,)
            ).fetchone()
        return Learning.from_row(row) if row else None

    def list(
        self,
        severity: Optional[str] = None,
        auto_block_only: bool = False,
        limit: int = 50,
    ) -> list[Learning]:
        clauses = ["archived_at IS NULL"]
        params: list = []
        if severity:
            clauses.append("severity = ?")
            params.append(severity)
        if auto_block_only:
            clauses.append("auto_block = 1")
        with self._db.connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM learnings WHERE {' AND '.join(clauses)} "
                f"ORDER BY occurrences DESC, created_at DESC LIMIT ?",
                (*params, limit),
            ).fetchall()
        return [Learning.from_row(r) for r in rows]

    def auto_block(self) -> list[Learning]:
        return self.list(auto_block_only=True, limit=1000)

    def search(self, query: str, limit: int = 10) -> list[Learning]:
        with self._db.connect() as conn:
            rows = fetch_ranked(conn, "learnings", ranked_rowids(conn, "learnings", query, limit))
        return [Learning.from_row(r) for r in rows]

    def update(self, learning_id: int, **fields) -> bool:
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"cannot update learning columns: {sorted(unknown)}")
        if not fields:
            return False
        if "auto_block" in fields:
            fields["auto_block"] = 1 if fields["auto_block"] else 0
        assignments = ", ".join(f"{k} = ?" for k in fields)
        with self._db.connect() as conn:
            cur = conn.execute(
                f"UPDATE learnings SET {assignments} WHERE id = ?",
                (*fields.values(), learning_id),
            )
            if not cur.rowcount:
                return False
            if set(fields) & set(fts.FTS_TABLES["learnings"].columns):
                fts.index_row(conn, "learnings", learning_id)
        return True

    def delete(self, learning_id: int) -> bool:
        with self._db.connect() as conn:
            fts.remove_row(conn, "learnings", learning_id)
            cur = conn.execute("DELETE FROM learnings WHERE id = ?", (learning_id,))
        return cur.rowcount > 0

    def archive(self, learning_id: int) -> bool:
        with self._db.connect() as conn:
            return archive(conn, "learnings", learning_id)

    def increment_occurrence(self, learning_id: int) -> None:
        with self._db.connect() as conn:
            conn.execute(
                "UPDATE learnings SET occurrences = occurrences + 1 WHERE id = ?",
                (learning_id,),
            )

    def check_content(self, content: str) -> list[Learning]:
        """Return auto-block learnings whose detection regex matches *content*.

        Each match counts as another occurrence.  Invalid regexes are skipped.
        """
        hits: list[Learning] = []
        for learning in self.auto_block():
            if not learning.detection_regex:
                continue
            try:
                pattern = re.compile(learning.detection_regex)
            except re.error as exc:
                logger.debug("[Store] Bad detection regex on learning %d: %s",
                             learning.id, exc)
                continue
            if pattern.search(content or ""):
                self.increment_occurrence(learning.id)
                learning.occurrences += 1
                hits.append(learning)
        return hits

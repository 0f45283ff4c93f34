"""
Archival of stale knowledge.  Only run on demand (``cortex prune``);
archived rows stay in the database and in the search index.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from .db import Database, utcnow

logger = logging.getLogger(__name__)

NEVER_READ_DAYS = 90
RARELY_READ_DAYS = 365
RARELY_READ_COUNT = 3

# table -> (age column, extra condition)
_RULES = {
    "decisions": ("created_at", ""),
    "errors": ("last_seen", ""),
    "learnings": ("created_at", " AND auto_block = 0"),
}


def archive_stale(db: Database, now: Optional[datetime] = None) -> dict[str, int]:
    """Archive rows never read in 90 days or read under 3 times in a year.

    Auto-block learnings are never archived.

    Returns
    -------
    dict[str, int]
        Number of rows archived per table.
    """
    now = now or datetime.now(timezone.utc)
    never = (now - timedelta(days=NEVER_READ_DAYS)).isoformat(timespec="milliseconds")
    rarely = (now - timedelta(days=RARELY_READ_DAYS)).isoformat(timespec="milliseconds")
    stamp = utcnow()

    archived: dict[str, int] = {}
    with db.connect() as conn:
        for table, (age_col, extra) in _RULES.items():
            cur = conn.execute(
                f"UPDATE {table} SET archived_at = ? WHERE archived_at IS NULL{extra} "
                f"AND ((access_count = 0 AND {age_col} < ?) "
                f"OR (access_count < ? AND {age_col} < ?))",
                (stamp, never, RARELY_READ_COUNT, rarely),
            )
            archived[table] = cur.rowcount
    total = sum(archived.values())
    if total:
        logger.info("[Store] Archived %d stale record(s): %s", total, archived)
    return archived

"""
Relevance scoring, budget selection and formatting for the context block.

Each evidence kind has its own scoring function returning 0-100.  Scores
are comparable across kinds, so one sorted list decides what fits.
"""

from __future__ import annotations

import math
import os
from dataclasses import dataclass
from typing import Iterable, Optional

MAX_SCORE = 100

# (upper bound in days, points), checked in order
_SESSION_RECENCY = ((1, 30), (3, 20), (7, 10), (30, 5))
_DECISION_RECENCY = ((7, 20), (30, 10), (90, 5))

_SEVERITY_BONUS = {"high": 20, "medium": 10}
_PRIORITY_BASE = {"high": 50, "medium": 30, "low": 10}

# Section order of the rendered block
_SECTION_ORDER = ("session", "unfinished", "error", "learning", "decision")


@dataclass
class ScoredItem:
    """A piece of evidence competing for room in the context block."""
    kind: str            # session | error | learning | decision | unfinished
    content: str
    score: float
    id: object = None
    auto_block: bool = False


def _cap(score: float) -> float:
    return min(score, MAX_SCORE)


def _bucket(days: float, table) -> int:
    for limit, points in table:
        if days < limit:
            return points
    return 0


def _overlaps(files: Iterable[str], current_files: Iterable[str]) -> list[str]:
    """Files matching any current file by substring, in either direction."""
    current = [c for c in current_files if c]
    return [f for f in files if f and any(c in f or f in c for c in current)]


# ---------------------------------------------------------------------------
# Scoring functions
# ---------------------------------------------------------------------------

def score_session(
    summary: Optional[str],
    session_files: Iterable[str],
    current_files: Iterable[str],
    recency_days: float,
) -> float:
    """Recency bucket + file overlap (15 each, max 45) + 10 per basename hit."""
    current = list(current_files)
    score = _bucket(recency_days, _SESSION_RECENCY)
    score += min(15 * len(_overlaps(session_files, current)), 45)
    if summary:
        score += 10 * sum(1 for f in current if os.path.basename(f) in summary)
    return _cap(score)


def score_error(
    error_files: Iterable[str],
    occurrences: int,
    has_fix: bool,
    current_files: Iterable[str],
) -> float:
    score = 40 if _overlaps(error_files, current_files) else 0
    if occurrences > 5:
        score += 20
    elif occurrences > 2:
        score += 15
    else:
        score += 5
    if has_fix:
        score += 10
    return _cap(score)


def score_learning(auto_block: bool, occurrences: int, severity: str) -> float:
    score = 30 if auto_block else 0
    score += _SEVERITY_BONUS.get(severity, 0)
    score += min(5 * occurrences, 20)
    return _cap(score)


def score_decision(
    files_affected: Iterable[str],
    current_files: Iterable[str],
    recency_days: float,
) -> float:
    """40 on file overlap + recency bucket (20/10/5 within 7/30/90 days)."""
    score = 40 if _overlaps(files_affected, current_files) else 0
    score += _bucket(recency_days, _DECISION_RECENCY)
    return _cap(score)


def score_unfinished(priority: str, age_days: float) -> float:
    """Priority base (50/30/10) + 10 when opened within the last week."""
    score = _PRIORITY_BASE.get(priority, _PRIORITY_BASE["medium"])
    if age_days < 7:
        score += 10
    return _cap(score)


# ---------------------------------------------------------------------------
# Selection and formatting
# ---------------------------------------------------------------------------

def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters."""
    return math.ceil(len(text or "") / 4)


def select_top_items(items: Iterable[ScoredItem], max_tokens: int) -> list[ScoredItem]:
    """Take items by descending score until the next one would not fit.

    Stops at the first overflow, even if a smaller item further down the
    list would still fit.
    """
    selected: list[ScoredItem] = []
    used = 0
    for item in sorted(items, key=lambda i: i.score, reverse=True):
        cost = estimate_tokens(item.content)
        if used + cost > max_tokens:
            break
        selected.append(item)
        used += cost
    return selected


def format_context_block(items: Iterable[ScoredItem]) -> str:
    """Group items into labelled sections; empty sections are left out.

    Only auto-block learnings are rendered.
    """
    sections: dict[str, list[str]] = {kind: [] for kind in _SECTION_ORDER}
    for item in items:
        if item.kind == "learning" and not item.auto_block:
            continue
        if item.kind in sections:
            sections[item.kind].append(item.content)

    parts: list[str] = []
    if sections["session"]:
        parts.append("RECENT SESSIONS:\n" + "\n\n".join(sections["session"]))
    if sections["unfinished"]:
        parts.append("UNFINISHED:\n" + "\n".join(f"  - {u}" for u in sections["unfinished"]))
    if sections["error"]:
        parts.append("KNOWN ERRORS:\n" + "\n".join(sections["error"]))
    if sections["learning"]:
        parts.append("ACTIVE PATTERNS (auto-block):\n" + "\n".join(sections["learning"]))
    if sections["decision"]:
        parts.append("KEY DECISIONS:\n" + "\n".join(sections["decision"]))
    return "\n\n".join(parts)

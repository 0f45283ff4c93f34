"""
Context assembler — builds the block injected at the start of a session.

Pulls recent sessions, open unfinished items, known errors, auto-block
learnings and live decisions from the store, scores each against the
files currently being worked on, and keeps what fits the token budget.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from ..store import KnowledgeStore
from ..store.db import age_days
from .relevance import (
    ScoredItem,
    estimate_tokens,
    format_context_block,
    score_decision,
    score_error,
    score_learning,
    score_session,
    score_unfinished,
    select_top_items,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 1500

# How many candidates of each kind are fetched before scoring
_FETCH_LIMITS = {
    "session": 10,
    "unfinished": 20,
    "error": 30,
    "learning": 50,
    "decision": 20,
}


@dataclass
class AssembledContext:
    """The formatted block plus what went into it."""
    text: str = ""
    items: list[ScoredItem] = field(default_factory=list)
    token_count: int = 0


class ContextAssembler:
    """
    Parameters
    ----------
    store:
        The project's knowledge store.
    max_tokens:
        Default token budget for :meth:`assemble`.
    """

    def __init__(self, store: KnowledgeStore, max_tokens: int = DEFAULT_MAX_TOKENS) -> None:
        self._store = store
        self._max_tokens = max_tokens

    def assemble(
        self,
        current_files: Optional[Iterable[str]] = None,
        max_tokens: Optional[int] = None,
    ) -> AssembledContext:
        """Score all candidate evidence and format what fits."""
        current = list(current_files or [])
        budget = self._max_tokens if max_tokens is None else max_tokens
        try:
            candidates = self.candidates(current)
        except Exception as exc:
            logger.warning("[Context] Could not read knowledge store: %s", exc)
            return AssembledContext()

        selected = select_top_items(candidates, budget)
        text = format_context_block(selected)
        logger.debug(
            "[Context] Selected %d of %d item(s), ~%d tokens",
            len(selected), len(candidates), estimate_tokens(text),
        )
        return AssembledContext(text=text, items=selected, token_count=estimate_tokens(text))

    def candidates(self, current_files: list[str]) -> list[ScoredItem]:
        """Every scored candidate, unsorted."""
        store = self._store
        items: list[ScoredItem] = []

        for s in store.sessions.list_recent(limit=_FETCH_LIMITS["session"]):
            files = store.sessions.files_for_session(s.id)
            content = f"[{(s.ended_at or s.started_at)[:10]}] {s.summary or '(no summary)'}"
            if files:
                content += f"\n  files: {', '.join(files[:8])}"
            items.append(ScoredItem(
                kind="session",
                content=content,
                score=score_session(s.summary, files, current_files,
                                    store.sessions.recency_days(s)),
                id=s.id,
            ))

        for u in store.unfinished.list(limit=_FETCH_LIMITS["unfinished"]):
            content = f"[{u.priority}] {u.description}"
            if u.blocked_by:
                content += f" (blocked by: {u.blocked_by})"
            items.append(ScoredItem(
                kind="unfinished",
                content=content,
                score=score_unfinished(u.priority, age_days(u.created_at)),
                id=u.id,
            ))

        for e in store.errors.list(limit=_FETCH_LIMITS["error"]):
            content = f"- {e.error_message[:200]}"
            if e.fix_description:
                content += f"\n  fix: {e.fix_description[:200]}"
            if e.occurrences > 1:
                content += f" (seen {e.occurrences}x)"
            items.append(ScoredItem(
                kind="error",
                content=content,
                score=score_error(e.files_involved, e.occurrences, e.has_fix, current_files),
                id=e.id,
            ))

        for lrn in store.learnings.list(auto_block_only=True, limit=_FETCH_LIMITS["learning"]):
            items.append(ScoredItem(
                kind="learning",
                content=f"- NEVER: {lrn.anti_pattern} -> INSTEAD: {lrn.correct_pattern}",
                score=score_learning(lrn.auto_block, lrn.occurrences, lrn.severity),
                id=lrn.id,
                auto_block=lrn.auto_block,
            ))

        for d in store.decisions.list(limit=_FETCH_LIMITS["decision"]):
            content = f"- {d.title}"
            if d.reasoning:
                content += f": {d.reasoning[:200]}"
            items.append(ScoredItem(
                kind="decision",
                content=content,
                score=score_decision(d.files_affected, current_files, age_days(d.created_at)),
                id=d.id,
            ))

        return items

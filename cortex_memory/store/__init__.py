"""
Knowledge store — one SQLite database per project.

:class:`KnowledgeStore` bundles the per-record stores over a single
:class:`Database` so callers pass one object around.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..analysis.similarity import DEFAULT_THRESHOLD
from .agent_runs import AgentRunStore
from .db import Database
from .decisions import DecisionStore
from .dependencies import DependencyStore
from .diffs import DiffStore
from .errors import ErrorStore
from .files import ProjectFileStore
from .health import HealthStore
from .learnings import LearningStore
from .sessions import SessionStore
from .unfinished import UnfinishedStore


@dataclass
class KnowledgeStore:
    db: Database
    sessions: SessionStore
    decisions: DecisionStore
    errors: ErrorStore
    learnings: LearningStore
    unfinished: UnfinishedStore
    diffs: DiffStore
    dependencies: DependencyStore
    files: ProjectFileStore
    agent_runs: AgentRunStore
    health: HealthStore

    @classmethod
    def open(
        cls,
        db_path: str,
        busy_timeout_ms: int = 5000,
        similarity_threshold: float = DEFAULT_THRESHOLD,
    ) -> "KnowledgeStore":
        db = Database(db_path, busy_timeout_ms=busy_timeout_ms)
        return cls(
            db=db,
            sessions=SessionStore(db),
            decisions=DecisionStore(db),
            errors=ErrorStore(db),
            learnings=LearningStore(db, similarity_threshold),
            unfinished=UnfinishedStore(db),
            diffs=DiffStore(db),
            dependencies=DependencyStore(db),
            files=ProjectFileStore(db),
            agent_runs=AgentRunStore(db),
            health=HealthStore(db),
        )


__all__ = ["Database", "KnowledgeStore"]

"""Row types returned by the knowledge store."""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from typing import Optional


def dump_list(values) -> Optional[str]:
    """Serialize a list column; None stays NULL."""
    if values is None:
        return None
    return json.dumps(list(values))


def load_list(raw: Optional[str]) -> list:
    """Inverse of dump_list.  Tolerates legacy comma-separated values."""
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return [part.strip() for part in raw.split(",") if part.strip()]
    return value if isinstance(value, list) else [value]


@dataclass
class Session:
    id: str
    started_at: str
    ended_at: Optional[str] = None
    duration_seconds: Optional[int] = None
    summary: Optional[str] = None
    key_changes: list = field(default_factory=list)
    chain_id: Optional[str] = None
    chain_label: Optional[str] = None
    status: str = "active"
    tags: list = field(default_factory=list)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Session":
        return cls(
            id=row["id"],
            started_at=row["started_at"],
            ended_at=row["ended_at"],
            duration_seconds=row["duration_seconds"],
            summary=row["summary"],
            key_changes=load_list(row["key_changes"]),
            chain_id=row["chain_id"],
            chain_label=row["chain_label"],
            status=row["status"],
            tags=load_list(row["tags"]),
        )


@dataclass
class Decision:
    id: int
    title: str
    reasoning: str = ""
    category: str = "architecture"
    session_id: Optional[str] = None
    created_at: str = ""
    alternatives: list = field(default_factory=list)
    files_affected: list = field(default_factory=list)
    superseded_by: Optional[int] = None
    confidence: str = "high"
    access_count: int = 0
    last_accessed: Optional[str] = None
    archived_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Decision":
        return cls(
            id=row["id"],
            title=row["title"],
            reasoning=row["reasoning"],
            category=row["category"],
            session_id=row["session_id"],
            created_at=row["created_at"],
            alternatives=load_list(row["alternatives"]),
            files_affected=load_list(row["files_affected"]),
            superseded_by=row["superseded_by"],
            confidence=row["confidence"],
            access_count=row["access_count"],
            last_accessed=row["last_accessed"],
            archived_at=row["archived_at"],
        )


@dataclass
class ErrorRecord:
    id: int
    error_signature: str
    error_message: str
    session_id: Optional[str] = None
    first_seen: str = ""
    last_seen: str = ""
    occurrences: int = 1
    root_cause: Optional[str] = None
    fix_description: Optional[str] = None
    fix_diff: Optional[str] = None
    files_involved: list = field(default_factory=list)
    prevention_rule: Optional[str] = None
    severity: str = "medium"
    access_count: int = 0
    last_accessed: Optional[str] = None
    archived_at: Optional[str] = None

    @property
    def has_fix(self) -> bool:
        return bool(self.fix_description)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ErrorRecord":
        return cls(
            id=row["id"],
            error_signature=row["error_signature"],
            error_message=row["error_message"],
            session_id=row["session_id"],
            first_seen=row["first_seen"],
            last_seen=row["last_seen"],
            occurrences=row["occurrences"],
            root_cause=row["root_cause"],
            fix_description=row["fix_description"],
            fix_diff=row["fix_diff"],
            files_involved=load_list(row["files_involved"]),
            prevention_rule=row["prevention_rule"],
            severity=row["severity"],
            access_count=row["access_count"],
            last_accessed=row["last_accessed"],
            archived_at=row["archived_at"],
        )


@dataclass
class Learning:
    id: int
    anti_pattern: str
    correct_pattern: str
    session_id: Optional[str] = None
    created_at: str = ""
    detection_regex: Optional[str] = None
    context: Optional[str] = None
    severity: str = "medium"
    occurrences: int = 1
    auto_block: bool = False
    access_count: int = 0
    last_accessed: Optional[str] = None
    archived_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Learning":
        return cls(
            id=row["id"],
            anti_pattern=row["anti_pattern"],
            correct_pattern=row["correct_pattern"],
            session_id=row["session_id"],
            created_at=row["created_at"],
            detection_regex=row["detection_regex"],
            context=row["context"],
            severity=row["severity"],
            occurrences=row["occurrences"],
            auto_block=bool(row["auto_block"]),
            access_count=row["access_count"],
            last_accessed=row["last_accessed"],
            archived_at=row["archived_at"],
        )


@dataclass
class UnfinishedItem:
    id: int
    description: str
    context: Optional[str] = None
    priority: str = "medium"
    session_id: Optional[str] = None
    created_at: str = ""
    resolved_at: Optional[str] = None
    resolved_session: Optional[str] = None
    blocked_by: Optional[str] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "UnfinishedItem":
        return cls(
            id=row["id"],
            description=row["description"],
            context=row["context"],
            priority=row["priority"],
            session_id=row["session_id"],
            created_at=row["created_at"],
            resolved_at=row["resolved_at"],
            resolved_session=row["resolved_session"],
            blocked_by=row["blocked_by"],
        )


@dataclass
class DiffRecord:
    id: int
    file_path: str
    diff_content: str
    session_id: Optional[str] = None
    change_type: str = "modified"
    lines_added: int = 0
    lines_removed: int = 0
    created_at: str = ""

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "DiffRecord":
        return cls(
            id=row["id"],
            file_path=row["file_path"],
            diff_content=row["diff_content"],
            session_id=row["session_id"],
            change_type=row["change_type"],
            lines_added=row["lines_added"],
            lines_removed=row["lines_removed"],
            created_at=row["created_at"],
        )


@dataclass
class Dependency:
    source_file: str
    target_file: str
    import_type: str = "static"
    symbols: list = field(default_factory=list)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Dependency":
        return cls(
            source_file=row["source_file"],
            target_file=row["target_file"],
            import_type=row["import_type"],
            symbols=load_list(row["symbols"]),
        )


@dataclass
class ProjectFile:
    path: str
    file_type: Optional[str] = None
    description: Optional[str] = None
    change_count: int = 0
    error_count: int = 0
    last_changed: Optional[str] = None
    last_changed_session: Optional[str] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ProjectFile":
        return cls(
            path=row["path"],
            file_type=row["file_type"],
            description=row["description"],
            change_count=row["change_count"],
            error_count=row["error_count"],
            last_changed=row["last_changed"],
            last_changed_session=row["last_changed_session"],
        )


@dataclass
class AgentRunRecord:
    """One audited invocation of the external analysis tool.

    ``success`` is None while the run is pending.
    """
    id: int
    agent_name: str
    started_at: str
    session_id: Optional[str] = None
    finished_at: Optional[str] = None
    success: Optional[bool] = None
    error_message: Optional[str] = None
    duration_ms: Optional[int] = None
    items_saved: int = 0

    @property
    def pending(self) -> bool:
        return self.finished_at is None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "AgentRunRecord":
        success = row["success"]
        return cls(
            id=row["id"],
            agent_name=row["agent_name"],
            started_at=row["started_at"],
            session_id=row["session_id"],
            finished_at=row["finished_at"],
            success=None if success is None else bool(success),
            error_message=row["error_message"],
            duration_ms=row["duration_ms"],
            items_saved=row["items_saved"],
        )


@dataclass
class HealthSnapshot:
    date: str
    score: int
    metrics: dict = field(default_factory=dict)
    trend: str = "stable"

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "HealthSnapshot":
        try:
            metrics = json.loads(row["metrics"] or "{}")
        except ValueError:
            metrics = {}
        return cls(date=row["date"], score=row["score"], metrics=metrics, trend=row["trend"])

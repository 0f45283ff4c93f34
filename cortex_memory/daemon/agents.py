"""
Event handlers run by the daemon.

Each handler is a callable ``handler(ctx, event)``.  Handlers that need the
external agent go through ``ctx.runner`` so calls stay serialized.  A
failed or unparsable agent run means "nothing learned this round"; it is
logged and the handler returns.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from ..analysis.chunker import summarize_function_changes
from ..analysis.diff_parser import parse_diff, summarize_diff
from ..collab import git
from ..collab.summarizer import Summarizer
from ..collab.transcript import parse_transcript, read_tail
from ..store import KnowledgeStore
from .event_queue import FILE_ACCESS, SESSION_END, QueueEvent
from .runner import AgentRequest, AgentRunner

logger = logging.getLogger(__name__)


@dataclass
class AgentContext:
    """Everything a handler may touch."""
    project_path: str
    store: KnowledgeStore
    runner: AgentRunner
    feedback_path: str
    agent_model: Optional[str] = None
    learner_model: Optional[str] = None
    summarizer: Optional[Summarizer] = None


def relative_path(project_path: str, path: str) -> str:
    """*path* relative to the project when it lies inside it, with / separators."""
    if not path:
        return path
    if os.path.isabs(path):
        try:
            rel = os.path.relpath(path, project_path)
        except ValueError:
            return path.replace("\\", "/")
        if not rel.startswith(".."):
            path = rel
    return path.replace("\\", "/")


# ---------------------------------------------------------------------------
# file_access: short orientation note for the file just opened
# ---------------------------------------------------------------------------

class FileContextAgent:
    """
    Asks the agent for a four-line orientation on a file when it is opened
    and appends it to the feedback log read by the session hooks.

    The same file is analysed at most once per *debounce* seconds.
    """

    name = "context"
    kind = FILE_ACCESS

    def __init__(
        self,
        debounce: float = 60.0,
        timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._debounce = debounce
        self._timeout = timeout
        self._clock = clock
        self._last_run: dict[str, float] = {}
        self._lock = threading.Lock()

    def _due(self, path: str) -> bool:
        now = self._clock()
        with self._lock:
            last = self._last_run.get(path)
            if last is not None and now - last < self._debounce:
                return False
            self._last_run[path] = now
            return True

    def build_prompt(self, ctx: AgentContext, path: str) -> str:
        store = ctx.store
        info = store.files.get(path)
        imports = [d.target_file for d in store.dependencies.imports_of(path)][:5]
        importers = [d.source_file for d in store.dependencies.importers_of(path)][:5]
        decisions = [d.title for d in store.decisions.for_file(path, limit=3)]
        return (
            f"File just opened: {path}\n\n"
            f"Known facts:\n"
            f"- Type: {(info.file_type if info else None) or 'unknown'}\n"
            f"- Imports: {', '.join(imports) or 'none known'}\n"
            f"- Imported by: {', '.join(importers) or 'none known'}\n"
            f"- Architecture notes: {', '.join(decisions) or 'none'}\n\n"
            f"Reply with at most 4 plain lines:\n"
            f"1: <file name>: <what it does>\n"
            f"2: Related to: <2-3 key connections>\n"
            f"3: Watch out: <one gotcha, omit if none>"
        )

    def __call__(self, ctx: AgentContext, event: QueueEvent) -> None:
        if not event.file:
            return
        path = relative_path(ctx.project_path, event.file)
        if not self._due(path):
            logger.debug("[Context] %s analysed recently, skipping", path)
            return

        result = ctx.runner.invoke(AgentRequest(
            prompt=self.build_prompt(ctx, path),
            agent_name=self.name,
            working_directory=ctx.project_path,
            timeout=self._timeout,
            model=ctx.agent_model,
            session_id=event.session_id or None,
        ))
        message = (result.output or "").strip()
        if not result.success or not message:
            return

        feedback = {
            "ts": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "file": event.file,
            "message": message,
        }
        try:
            os.makedirs(os.path.dirname(os.path.abspath(ctx.feedback_path)), exist_ok=True)
            with open(ctx.feedback_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(feedback, ensure_ascii=False) + "\n")
        except OSError as exc:
            logger.warning("[Context] Could not write feedback: %s", exc)
            return

        ctx.store.files.set_description(path, message[:300])
        logger.info("[Context] Feedback written for %s", os.path.basename(path))


# ---------------------------------------------------------------------------
# session_end: close the session record
# ---------------------------------------------------------------------------

class SessionRecorder:
    """
    Closes the session: summary, touched files, the session's diffs and a
    health snapshot.  Uses no external agent; the summarization API, when
    configured, only rewrites the summary text.
    """

    name = "session"
    kind = SESSION_END

    def basic_summary(self, files: list[str], tool_counts: dict[str, int], changes: str) -> str:
        parts = []
        if files:
            shown = ", ".join(files[:5]) + (f" (+{len(files) - 5} more)" if len(files) > 5 else "")
            parts.append(f"{len(files)} file(s) modified: {shown}")
        if tool_counts:
            top = sorted(tool_counts.items(), key=lambda kv: kv[1], reverse=True)[:5]
            parts.append("tools: " + ", ".join(f"{t} x{n}" for t, n in top))
        summary = "; ".join(parts) or "No file changes recorded"
        if changes:
            summary += "\n" + changes
        return summary

    def __call__(self, ctx: AgentContext, event: QueueEvent) -> None:
        session_id = event.session_id or event.timestamp
        transcript = parse_transcript(event.transcript_ref)
        files = [relative_path(ctx.project_path, f) for f in transcript.files_modified]

        diffs = parse_diff(git.diff(ctx.project_path))
        if files:
            wanted = set(files)
            diffs = [d for d in diffs if d.file_path in wanted]
        if diffs:
            ctx.store.diffs.add_parsed(diffs, session_id=session_id)
        changes = "\n".join(summarize_function_changes(d) for d in diffs[:10])

        summary = self.basic_summary(files, transcript.tool_counts, changes)
        if ctx.summarizer is not None and transcript.assistant_messages:
            rewritten = ctx.summarizer.summarize(
                "Coding session summary",
                summarize_diff(diffs) + "\n\n" + "\n\n".join(transcript.assistant_messages),
                instructions="Summarize what was done in at most 3 sentences.",
            )
            if rewritten:
                summary = rewritten

        ctx.store.sessions.end_session(session_id, summary, files)
        for path in files:
            ctx.store.files.record_change(path, session_id)
        snapshot = ctx.store.health.save_snapshot()
        logger.info("[Session] %s closed: %d file(s), health %d (%s)",
                    session_id, len(files), snapshot.score, snapshot.trend)


# ---------------------------------------------------------------------------
# session_end: extract learnings and errors
# ---------------------------------------------------------------------------

LEARNER_SCHEMA = {
    "type": "object",
    "properties": {
        "learnings": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "anti_pattern": {"type": "string"},
                    "correct_pattern": {"type": "string"},
                    "context": {"type": "string"},
                    "severity": {"type": "string", "enum": ["low", "medium", "high"]},
                    "auto_block": {"type": "boolean"},
                    "detection_regex": {"type": ["string", "null"]},
                    "relevance": {
                        "type": "string",
                        "enum": ["noise", "maybe_relevant", "important", "critical"],
                    },
                },
                "required": ["anti_pattern", "correct_pattern", "context", "relevance"],
            },
        },
        "errors": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "error_message": {"type": "string"},
                    "root_cause": {"type": "string"},
                    "fix_description": {"type": "string"},
                    "prevention_rule": {"type": ["string", "null"]},
                    "severity": {"type": "string", "enum": ["low", "medium", "high", "critical"]},
                },
                "required": ["error_message"],
            },
        },
        "architecture_updates": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "file": {"type": "string"},
                    "description": {"type": "string"},
                },
                "required": ["file", "description"],
            },
        },
    },
    "required": ["learnings", "errors", "architecture_updates"],
}


class LearnerAgent:
    """Asks the agent what went wrong (and right) in the finished session."""

    name = "learner"
    kind = SESSION_END

    def __init__(self, timeout: float = 120.0, transcript_chars: int = 8000) -> None:
        self._timeout = timeout
        self._transcript_chars = transcript_chars

    def build_prompt(self, files: list[str], transcript_tail: str) -> str:
        prompt = (
            "Analyse the coding session below and extract reusable knowledge.\n"
            "Only keep a learning if the mistake is likely to recur, was explicitly "
            "corrected, or captures a stable project fact. Mark trivia as noise.\n\n"
            "Changed files:\n" + ("\n".join(files) or "(none)") + "\n"
        )
        if transcript_tail:
            prompt += f"\nTranscript (tail):\n{transcript_tail}\n"
        prompt += "\nReply only with JSON matching the schema. Empty arrays are fine."
        return prompt

    def __call__(self, ctx: AgentContext, event: QueueEvent) -> None:
        tail = read_tail(event.transcript_ref, self._transcript_chars)
        files = [f.path for f in ctx.store.files.recently_changed()]
        for path in parse_transcript(event.transcript_ref).files_modified:
            rel = relative_path(ctx.project_path, path)
            if rel not in files:
                files.append(rel)
        if not files and not tail:
            logger.info("[Learner] No recent activity, skipping")
            return

        result = ctx.runner.invoke(AgentRequest(
            prompt=self.build_prompt(files, tail),
            agent_name=self.name,
            working_directory=ctx.project_path,
            timeout=self._timeout,
            output_schema=LEARNER_SCHEMA,
            model=ctx.learner_model,
            session_id=event.session_id or None,
        ))
        if not result.success:
            return
        data = result.parse_json()
        if data is None:
            logger.warning("[Learner] Discarding unparsable agent output (%d chars)",
                           len(result.output or ""))
            return

        saved = self.save(ctx, data, event.session_id or None)
        if result.run_id is not None:
            ctx.store.agent_runs.set_items_saved(result.run_id, saved)
        logger.info("[Learner] Saved %d item(s)", saved)

    def save(self, ctx: AgentContext, data: dict, session_id: Optional[str]) -> int:
        """Persist the agent's findings; returns how many rows were written."""
        saved = 0
        for item in _dicts(data.get("learnings")):
            anti, correct = item.get("anti_pattern"), item.get("correct_pattern")
            if not (isinstance(anti, str) and isinstance(correct, str) and anti and correct):
                continue
            if item.get("relevance") == "noise":
                continue
            learning, _ = ctx.store.learnings.add(
                anti_pattern=anti,
                correct_pattern=correct,
                detection_regex=item.get("detection_regex") or None,
                context=item.get("context"),
                severity=item.get("severity") or "medium",
                auto_block=bool(item.get("auto_block")),
                session_id=session_id,
                skip_duplicates=True,
            )
            if learning is not None:
                saved += 1

        for item in _dicts(data.get("errors")):
            message = item.get("error_message")
            if not isinstance(message, str) or not message:
                continue
            try:
                ctx.store.errors.add(
                    error_message=message,
                    root_cause=item.get("root_cause"),
                    fix_description=item.get("fix_description"),
                    prevention_rule=item.get("prevention_rule"),
                    severity=item.get("severity") or "medium",
                    session_id=session_id,
                )
                saved += 1
            except sqlite3.IntegrityError:
                logger.debug("[Learner] Error already recorded: %s", message[:80])

        for item in _dicts(data.get("architecture_updates")):
            path, description = item.get("file"), item.get("description")
            if isinstance(path, str) and isinstance(description, str) and path and description:
                ctx.store.files.set_description(
                    relative_path(ctx.project_path, path), description[:300], overwrite=True
                )
                saved += 1
        return saved


def _dicts(value) -> list[dict]:
    return [v for v in value if isinstance(v, dict)] if isinstance(value, list) else []

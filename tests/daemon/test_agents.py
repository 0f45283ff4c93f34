"""Tests for the daemon's event handlers, with a scripted runner."""

from __future__ import annotations

import json
import os

import pytest

from cortex_memory.daemon import agents
from cortex_memory.daemon.agents import (
    AgentContext, FileContextAgent, LearnerAgent, SessionRecorder, relative_path,
)
from cortex_memory.daemon.event_queue import FILE_ACCESS, SESSION_END, QueueEvent
from cortex_memory.daemon.runner import AgentResult
from cortex_memory.store import KnowledgeStore


class ScriptedRunner:
    """Returns queued results and records every request."""

    def __init__(self, *results):
        self.results = list(results)
        self.requests = []

    def invoke(self, request):
        self.requests.append(request)
        return self.results.pop(0) if self.results else AgentResult(success=False, error="none")

    def shutdown(self, wait=True):
        pass


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "proj"
    root.mkdir()
    return root


def _ctx(project, runner, summarizer=None):
    store = KnowledgeStore.open(str(project / ".claude" / "cortex.db"))
    return AgentContext(
        project_path=str(project),
        store=store,
        runner=runner,
        feedback_path=str(project / ".claude" / "feedback.jsonl"),
        summarizer=summarizer,
    )


def _transcript(path, entries):
    with open(path, "w", encoding="utf-8") as f:
        for entry in entries:
            f.write(json.dumps(entry) + "\n")
    return str(path)


def test_relative_path(project):
    assert relative_path(str(project), str(project / "src" / "a.py")) == "src/a.py"
    assert relative_path(str(project), "src/a.py") == "src/a.py"
    assert relative_path(str(project), "/elsewhere/b.py") == "/elsewhere/b.py"


# ---------------------------------------------------------------------------
# FileContextAgent
# ---------------------------------------------------------------------------

class TestFileContextAgent:

    def _event(self, project, name="app.py", ts="t1"):
        return QueueEvent(kind=FILE_ACCESS, session_id="s1", timestamp=ts,
                          file=str(project / name))

    def test_writes_feedback_and_description(self, project):
        runner = ScriptedRunner(AgentResult(success=True, output="app.py: entry point\n"))
        ctx = _ctx(project, runner)
        ctx.store.dependencies.add("app.py", "db.py")
        FileContextAgent()(ctx, self._event(project))

        request = runner.requests[0]
        assert request.agent_name == "context"
        assert "app.py" in request.prompt
        assert "db.py" in request.prompt

        with open(ctx.feedback_path, encoding="utf-8") as f:
            entries = [json.loads(line) for line in f]
        assert entries[0]["message"] == "app.py: entry point"
        assert entries[0]["file"] == str(project / "app.py")
        assert ctx.store.files.get("app.py").description == "app.py: entry point"

    def test_debounced_per_file(self, project):
        now = [100.0]
        runner = ScriptedRunner(*[AgentResult(success=True, output="x")] * 3)
        ctx = _ctx(project, runner)
        agent = FileContextAgent(debounce=60.0, clock=lambda: now[0])

        agent(ctx, self._event(project, "a.py"))
        agent(ctx, self._event(project, "a.py", ts="t2"))
        agent(ctx, self._event(project, "b.py", ts="t3"))
        assert len(runner.requests) == 2

        now[0] += 61
        agent(ctx, self._event(project, "a.py", ts="t4"))
        assert len(runner.requests) == 3

    def test_failure_writes_nothing(self, project):
        runner = ScriptedRunner(AgentResult(success=False, error="Timeout after 30000ms"))
        ctx = _ctx(project, runner)
        FileContextAgent()(ctx, self._event(project))
        assert not os.path.exists(ctx.feedback_path)
        assert ctx.store.files.get("app.py") is None

    def test_event_without_file_ignored(self, project):
        runner = ScriptedRunner()
        FileContextAgent()(_ctx(project, runner),
                           QueueEvent(kind=FILE_ACCESS, session_id="s", timestamp="t"))
        assert runner.requests == []


# ---------------------------------------------------------------------------
# SessionRecorder
# ---------------------------------------------------------------------------

GIT_DIFF = """\
diff --git a/src/app.py b/src/app.py
--- a/src/app.py
+++ b/src/app.py
@@ -1,2 +1,3 @@
 def main():
+    setup()
     run()
diff --git a/other.py b/other.py
--- a/other.py
+++ b/other.py
@@ -1 +1 @@
-a
+b
"""


class TestSessionRecorder:

    def _transcript(self, project):
        return _transcript(project / "t.jsonl", [
            {"type": "assistant", "message": {"content": [
                {"type": "text", "text": "Adding setup call."},
                {"type": "tool_use", "name": "Edit",
                 "input": {"file_path": str(project / "src" / "app.py")}},
            ]}},
            {"type": "user", "message": {"content": [
                {"type": "tool_result", "content": "ok"},
            ]}},
        ])

    def test_closes_session(self, project, monkeypatch):
        monkeypatch.setattr(agents.git, "diff", lambda cwd, ref=None: GIT_DIFF)
        ctx = _ctx(project, ScriptedRunner())
        ctx.store.sessions.create("s1")
        event = QueueEvent(kind=SESSION_END, session_id="s1", timestamp="t9",
                           transcript_ref=self._transcript(project))
        SessionRecorder()(ctx, event)

        session = ctx.store.sessions.get("s1")
        assert session.status == "completed"
        assert session.key_changes == ["src/app.py"]
        assert "1 file(s) modified: src/app.py" in session.summary
        assert "Edit x1" in session.summary
        assert "src/app.py -> main() +1/-0" in session.summary

        # only the session's own files are stored as diffs
        assert [d.file_path for d in ctx.store.diffs.for_session("s1")] == ["src/app.py"]
        assert ctx.store.files.get("src/app.py").change_count == 1
        assert ctx.store.health.latest() is not None
        assert ctx.runner.requests == []

    def test_summarizer_replaces_summary(self, project, monkeypatch):
        monkeypatch.setattr(agents.git, "diff", lambda cwd, ref=None: "")

        class FakeSummarizer:
            def summarize(self, title, text, instructions=""):
                assert "Adding setup call." in text
                return "Added a setup call to main."

        ctx = _ctx(project, ScriptedRunner(), summarizer=FakeSummarizer())
        event = QueueEvent(kind=SESSION_END, session_id="s2", timestamp="t1",
                           transcript_ref=self._transcript(project))
        SessionRecorder()(ctx, event)
        assert ctx.store.sessions.get("s2").summary == "Added a setup call to main."

    def test_missing_transcript(self, project, monkeypatch):
        monkeypatch.setattr(agents.git, "diff", lambda cwd, ref=None: "")
        ctx = _ctx(project, ScriptedRunner())
        SessionRecorder()(ctx, QueueEvent(kind=SESSION_END, session_id="s3", timestamp="t"))
        assert ctx.store.sessions.get("s3").summary == "No file changes recorded"


# ---------------------------------------------------------------------------
# LearnerAgent
# ---------------------------------------------------------------------------

LEARNER_OUTPUT = {
    "learnings": [
        {"anti_pattern": "open() without encoding", "correct_pattern": "pass encoding",
         "context": "windows", "severity": "high", "auto_block": True,
         "detection_regex": r"open\([^)]*\)", "relevance": "critical"},
        {"anti_pattern": "typo in comment", "correct_pattern": "fix typo",
         "context": "", "relevance": "noise"},
        {"anti_pattern": "missing fields"},
    ],
    "errors": [
        {"error_message": "UnicodeDecodeError: 'charmap' codec", "root_cause": "no encoding",
         "fix_description": "pass encoding", "severity": "high"},
        {"root_cause": "no message"},
    ],
    "architecture_updates": [
        {"file": "src/reader.py", "description": "reads input files"},
    ],
}


class TestLearnerAgent:

    def _event(self, transcript=None):
        return QueueEvent(kind=SESSION_END, session_id="s1", timestamp="t1",
                          transcript_ref=transcript)

    def test_saves_findings(self, project):
        envelope = json.dumps({"result": "", "structured_output": LEARNER_OUTPUT})
        runs_result = AgentResult(success=True, output=envelope)
        runner = ScriptedRunner(runs_result)
        ctx = _ctx(project, runner)
        ctx.store.files.record_change("src/reader.py")
        run_id = ctx.store.agent_runs.start("learner")
        runs_result.run_id = run_id

        LearnerAgent()(ctx, self._event())

        request = runner.requests[0]
        assert request.output_schema is agents.LEARNER_SCHEMA
        assert "src/reader.py" in request.prompt

        learnings = ctx.store.learnings.list()
        assert [lrn.anti_pattern for lrn in learnings] == ["open() without encoding"]
        assert learnings[0].auto_block
        assert ctx.store.errors.open_count() == 0
        assert len(ctx.store.errors.list()) == 1
        assert ctx.store.files.get("src/reader.py").description == "reads input files"
        assert ctx.store.agent_runs.get(run_id).items_saved == 3

    def test_duplicate_learning_not_stored_twice(self, project):
        ctx = _ctx(project, ScriptedRunner())
        agent = LearnerAgent()
        data = {"learnings": LEARNER_OUTPUT["learnings"][:1]}
        assert agent.save(ctx, data, "s1") == 1
        assert agent.save(ctx, data, "s2") == 0
        assert len(ctx.store.learnings.list()) == 1
        assert ctx.store.learnings.list()[0].occurrences == 2

    def test_skips_without_activity(self, project):
        runner = ScriptedRunner()
        LearnerAgent()(_ctx(project, runner), self._event())
        assert runner.requests == []

    def test_unparsable_output_discarded(self, project):
        runner = ScriptedRunner(AgentResult(success=True, output="I could not decide."))
        ctx = _ctx(project, runner)
        ctx.store.files.record_change("a.py")
        LearnerAgent()(ctx, self._event())
        assert len(runner.requests) == 1
        assert ctx.store.learnings.list() == []

    def test_transcript_feeds_prompt(self, project):
        path = _transcript(project / "t.jsonl", [
            {"type": "assistant", "message": {"content": [
                {"type": "tool_use", "name": "Write",
                 "input": {"file_path": str(project / "new.py")}},
            ]}},
        ])
        runner = ScriptedRunner(AgentResult(success=True, output="{}"))
        LearnerAgent()(_ctx(project, runner), self._event(path))
        prompt = runner.requests[0].prompt
        assert "new.py" in prompt
        assert "Transcript (tail):" in prompt

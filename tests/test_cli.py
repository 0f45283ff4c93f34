"""End-to-end tests for the `cortex` command line (no daemon loop)."""

from __future__ import annotations

import json

import pytest

from cortex_memory.cli import main
from cortex_memory.store import KnowledgeStore


@pytest.fixture
def project(tmp_path, monkeypatch):
    for key in ("CORTEX_PROJECT", "CORTEX_DB_PATH", "CORTEX_QUEUE_PATH"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


def _store(project):
    return KnowledgeStore.open(str(project / ".claude" / "cortex.db"))


def test_event_appends_to_queue(project):
    main(["--project", str(project), "event", "file_access", "--session", "s1",
          "--file", "src/a.py", "--tool", "Read"])
    with open(project / ".claude" / "cortex-events.jsonl", encoding="utf-8") as f:
        data = json.loads(f.readline())
    assert data["type"] == "file_access"
    assert data["file"] == "src/a.py"
    assert data["ts"]


def test_file_access_event_needs_file(project, capsys):
    with pytest.raises(SystemExit) as exc:
        main(["--project", str(project), "event", "file_access", "--session", "s1"])
    assert exc.value.code == 1
    assert "--file" in capsys.readouterr().err


def test_missing_project_exits(tmp_path, monkeypatch, capsys):
    monkeypatch.delenv("CORTEX_PROJECT", raising=False)
    monkeypatch.chdir(tmp_path)
    with pytest.raises(SystemExit) as exc:
        main(["search", "x"])
    assert exc.value.code == 1
    assert "Configuration error" in capsys.readouterr().err


def test_context_and_search(project, capsys):
    store = _store(project)
    store.unfinished.add("migrate the billing tables", priority="high")
    main(["--project", str(project), "context", "--file", "billing.py"])
    assert "UNFINISHED:" in capsys.readouterr().out

    main(["--project", str(project), "search", "billing"])
    assert "[unfinished #1]" in capsys.readouterr().out


def test_reindex_and_check(project, capsys):
    _store(project).decisions.add("Use WAL", "concurrent readers")
    main(["--project", str(project), "reindex"])
    assert "Indexed 1 row(s)" in capsys.readouterr().out
    main(["--project", str(project), "reindex", "--check"])
    assert "decisions    ok" in capsys.readouterr().out


def test_health_prune_runs(project, capsys):
    store = _store(project)
    run_id = store.agent_runs.start("learner")
    store.agent_runs.finish(run_id, True)

    main(["--project", str(project), "health"])
    assert "Project health: 100/100" in capsys.readouterr().out
    main(["--project", str(project), "prune"])
    assert "learnings" in capsys.readouterr().out
    main(["--project", str(project), "runs"])
    out = capsys.readouterr().out
    assert "learner" in out
    assert "1/1 ok" in out

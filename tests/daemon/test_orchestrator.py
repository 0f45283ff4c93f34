"""Tests for the daemon polling loop."""

from __future__ import annotations

import json
import threading
import time

import pytest

from cortex_memory.config import Config
from cortex_memory.daemon.event_queue import FILE_ACCESS, SESSION_END, EventQueue
from cortex_memory.daemon.orchestrator import Daemon
from cortex_memory.errors import ConfigError
from cortex_memory.store import KnowledgeStore


class FakeRunner:
    def __init__(self):
        self.shut_down = False

    def invoke(self, request):
        raise AssertionError("handlers under test do not call the agent")

    def shutdown(self, wait=True):
        self.shut_down = True


class Recorder:
    """Handler that records the events it saw."""

    def __init__(self, name, fail=False, delay=0.0):
        self.name = name
        self.fail = fail
        self.delay = delay
        self.seen = []
        self.lock = threading.Lock()

    def __call__(self, ctx, event):
        time.sleep(self.delay)
        with self.lock:
            self.seen.append(event.timestamp)
        if self.fail:
            raise RuntimeError(f"{self.name} exploded")


@pytest.fixture
def config(tmp_path, monkeypatch):
    for key in ("CORTEX_PROJECT", "CORTEX_DB_PATH", "CORTEX_QUEUE_PATH",
                "GEMINI_API_KEY", "GOOGLE_API_KEY"):
        monkeypatch.delenv(key, raising=False)
    cfg = Config({}, project_path=str(tmp_path))
    cfg.POLL_INTERVAL = 0.01
    return cfg


def _append(cfg, *events):
    with open(cfg.QUEUE_PATH, "a", encoding="utf-8") as f:
        for ev in events:
            f.write(json.dumps(ev) + "\n")


def _daemon(cfg, handlers):
    store = KnowledgeStore.open(cfg.DB_PATH)
    return Daemon(cfg, store=store, runner=FakeRunner(), handlers=handlers)


class TestDaemonTick:

    def test_dispatches_by_kind(self, config):
        on_file, on_end = Recorder("file"), Recorder("end")
        daemon = _daemon(config, {FILE_ACCESS: [on_file], SESSION_END: [on_end]})
        _append(config,
                {"type": FILE_ACCESS, "session_id": "s1", "ts": "t1", "file": "a.py"},
                {"type": SESSION_END, "session_id": "s1", "ts": "t2"})
        try:
            assert daemon.tick() == 2
            assert daemon.wait_idle(timeout=5)
        finally:
            daemon.shutdown()
        assert on_file.seen == ["t1"]
        assert on_end.seen == ["t2"]

    def test_events_marked_processed(self, config):
        daemon = _daemon(config, {FILE_ACCESS: [Recorder("file")]})
        _append(config, {"type": FILE_ACCESS, "session_id": "s1", "ts": "t1", "file": "a.py"})
        try:
            daemon.tick()
            daemon.wait_idle(timeout=5)
            assert daemon.tick() == 0
        finally:
            daemon.shutdown()
        with open(config.QUEUE_PATH, encoding="utf-8") as f:
            assert json.loads(f.readline())["processed"] is True
        # a fresh queue over the same log sees nothing new either
        assert EventQueue(config.QUEUE_PATH).read() == []

    def test_session_row_created(self, config):
        daemon = _daemon(config, {FILE_ACCESS: [Recorder("file")]})
        _append(config, {"type": FILE_ACCESS, "session_id": "abc", "ts": "t1", "file": "a.py"})
        try:
            daemon.tick()
            daemon.wait_idle(timeout=5)
        finally:
            daemon.shutdown()
        assert daemon.store.sessions.get("abc").status == "active"

    def test_file_access_without_file_skipped(self, config):
        on_file = Recorder("file")
        daemon = _daemon(config, {FILE_ACCESS: [on_file]})
        _append(config, {"type": FILE_ACCESS, "session_id": "s1", "ts": "t1"})
        try:
            assert daemon.tick() == 0
        finally:
            daemon.shutdown()
        assert on_file.seen == []

    def test_failing_handler_isolated(self, config):
        bad, good = Recorder("bad", fail=True), Recorder("good")
        daemon = _daemon(config, {SESSION_END: [bad, good]})
        _append(config,
                {"type": SESSION_END, "session_id": "s1", "ts": "t1"},
                {"type": SESSION_END, "session_id": "s2", "ts": "t2"})
        try:
            assert daemon.tick() == 2
            assert daemon.wait_idle(timeout=5)
        finally:
            daemon.shutdown()
        assert sorted(good.seen) == ["t1", "t2"]
        assert sorted(bad.seen) == ["t1", "t2"]

    def test_handlers_run_concurrently(self, config):
        config.FANOUT_WORKERS = 4
        slow = Recorder("slow", delay=0.3)
        daemon = _daemon(config, {SESSION_END: [slow]})
        _append(config, *[
            {"type": SESSION_END, "session_id": f"s{i}", "ts": f"t{i}"} for i in range(4)
        ])
        started = time.monotonic()
        try:
            daemon.tick()
            assert daemon.wait_idle(timeout=5)
        finally:
            daemon.shutdown()
        assert len(slow.seen) == 4
        assert time.monotonic() - started < 1.0


class TestDaemonLifecycle:

    def test_requires_project(self, tmp_path, monkeypatch):
        monkeypatch.delenv("CORTEX_PROJECT", raising=False)
        cfg = Config({}, project_path=None)
        with pytest.raises(ConfigError):
            Daemon(cfg, runner=FakeRunner(), handlers={})

    def test_run_until_stopped(self, config):
        on_end = Recorder("end")
        runner = FakeRunner()
        daemon = Daemon(config, store=KnowledgeStore.open(config.DB_PATH),
                        runner=runner, handlers={SESSION_END: [on_end]})
        stop = threading.Event()
        thread = threading.Thread(target=daemon.run, args=(stop,))
        thread.start()
        try:
            _append(config, {"type": SESSION_END, "session_id": "s1", "ts": "t1"})
            deadline = time.monotonic() + 5
            while not on_end.seen and time.monotonic() < deadline:
                time.sleep(0.01)
        finally:
            stop.set()
            thread.join(timeout=5)
        assert on_end.seen == ["t1"]
        assert not thread.is_alive()
        assert runner.shut_down

    def test_stop_method(self, config):
        daemon = _daemon(config, {})
        thread = threading.Thread(target=daemon.run)
        thread.start()
        daemon.stop()
        thread.join(timeout=5)
        assert not thread.is_alive()

    def test_stop_method_wakes_caller_event(self, config):
        config.POLL_INTERVAL = 30
        daemon = _daemon(config, {})
        caller_stop = threading.Event()
        thread = threading.Thread(target=daemon.run, args=(caller_stop,))
        thread.start()
        time.sleep(0.1)
        started = time.monotonic()
        daemon.stop()
        thread.join(timeout=5)
        assert not thread.is_alive()
        assert time.monotonic() - started < 5
        assert caller_stop.is_set()

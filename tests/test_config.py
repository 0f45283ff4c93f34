"""Tests for configuration loading and precedence."""

from __future__ import annotations

import os

import pytest

from cortex_memory.config import Config
from cortex_memory.errors import ConfigError

_ENV_KEYS = (
    "CORTEX_PROJECT", "CORTEX_DB_PATH", "CORTEX_POLL_INTERVAL",
    "CORTEX_SIMILARITY_THRESHOLD", "CORTEX_AGENT_TIMEOUT", "CLAUDE_BIN",
    "GEMINI_API_KEY", "GOOGLE_API_KEY", "CORTEX_CONTEXT_MAX_TOKENS",
    "CORTEX_QUEUE_PATH", "CORTEX_FEEDBACK_PATH", "CORTEX_AGENT_MODEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


class TestConfigDefaults:

    def test_paths_under_project_state_dir(self, tmp_path):
        cfg = Config({}, project_path=str(tmp_path))
        state = os.path.join(str(tmp_path), ".claude")
        assert cfg.PROJECT_PATH == str(tmp_path)
        assert cfg.DB_PATH == os.path.join(state, "cortex.db")
        assert cfg.QUEUE_PATH.startswith(state)
        assert cfg.FEEDBACK_PATH.startswith(state)

    def test_defaults(self, tmp_path):
        cfg = Config({}, project_path=str(tmp_path))
        assert cfg.POLL_INTERVAL == 0.5
        assert cfg.AGENT_TIMEOUT == 90.0
        assert cfg.SIMILARITY_THRESHOLD == 0.85
        assert cfg.CONTEXT_MAX_TOKENS == 1500
        assert cfg.BUSY_TIMEOUT_MS == 5000
        assert cfg.GEMINI_API_KEY == ""

    def test_no_project(self):
        cfg = Config({})
        assert cfg.PROJECT_PATH == ""
        assert cfg.DB_PATH == ""
        with pytest.raises(ConfigError):
            cfg.validate()

    def test_project_must_exist(self, tmp_path):
        cfg = Config({}, project_path=str(tmp_path / "missing"))
        with pytest.raises(ConfigError):
            cfg.validate()


class TestConfigPrecedence:

    def test_yaml_over_default(self, tmp_path):
        cfg = Config({"poll_interval": 2, "agent_timeout": "30"}, project_path=str(tmp_path))
        assert cfg.POLL_INTERVAL == 2.0
        assert cfg.AGENT_TIMEOUT == 30.0

    def test_env_over_yaml(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CORTEX_POLL_INTERVAL", "1.5")
        cfg = Config({"poll_interval": 2}, project_path=str(tmp_path))
        assert cfg.POLL_INTERVAL == 1.5

    def test_argument_over_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CORTEX_PROJECT", "/somewhere/else")
        cfg = Config({}, project_path=str(tmp_path))
        assert cfg.PROJECT_PATH == str(tmp_path)

    def test_project_from_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CORTEX_PROJECT", str(tmp_path))
        assert Config({}).PROJECT_PATH == str(tmp_path)

    def test_bad_values_fall_back(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CORTEX_POLL_INTERVAL", "soon")
        cfg = Config({"similarity_threshold": 7}, project_path=str(tmp_path))
        assert cfg.POLL_INTERVAL == 0.5
        assert cfg.SIMILARITY_THRESHOLD == 0.85

    def test_gemini_key_sources(self, tmp_path, monkeypatch):
        cfg = Config({"gemini": {"api_key": "from-yaml"}}, project_path=str(tmp_path))
        assert cfg.GEMINI_API_KEY == "from-yaml"
        monkeypatch.setenv("GOOGLE_API_KEY", "from-google")
        assert Config({}, project_path=str(tmp_path)).GEMINI_API_KEY == "from-google"
        monkeypatch.setenv("GEMINI_API_KEY", "from-gemini")
        assert Config({}, project_path=str(tmp_path)).GEMINI_API_KEY == "from-gemini"


def test_load_reads_project_yaml(tmp_path):
    (tmp_path / ".cortex.yaml").write_text("context_max_tokens: 800\nagent_model: haiku\n")
    cfg = Config.load(project_path=str(tmp_path))
    assert cfg.CONTEXT_MAX_TOKENS == 800
    assert cfg.AGENT_MODEL == "haiku"


def test_load_explicit_missing_file(tmp_path):
    cfg = Config.load(config_path=str(tmp_path / "nope.yaml"), project_path=str(tmp_path))
    assert cfg.CONTEXT_MAX_TOKENS == 1500

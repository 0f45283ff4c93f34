"""
Configuration — loads settings from .cortex.yaml, environment variables,
and built-in defaults (in that priority order: CLI args > env > YAML > defaults).
"""

from __future__ import annotations

import os

import yaml

from .errors import ConfigError

_DEFAULTS = {
    "poll_interval": 0.5,
    "agent_timeout": 90.0,
    "agent_model": "",
    "learner_model": "",
    "similarity_threshold": 0.85,
    "context_max_tokens": 1500,
    "busy_timeout_ms": 5000,
    "fanout_workers": 4,
    "context_debounce": 60.0,
    "gemini_model": "gemini-1.5-flash",
    "gemini_base_url": "https://generativelanguage.googleapis.com/v1beta",
    "log_level": "INFO",
}

# Everything the daemon writes lives under <project>/.claude
_STATE_DIR = ".claude"

_CONFIG_FILENAMES = [".cortex.yaml", ".cortex.yml"]


def _find_config_file(
    explicit_path: str | None = None,
    project_path: str | None = None,
) -> str | None:
    """Find the config file. Checks explicit path, project, CWD, then home."""
    if explicit_path:
        if os.path.isfile(explicit_path):
            return explicit_path
        return None

    search_dirs = [os.getcwd(), os.path.expanduser("~")]
    if project_path:
        search_dirs.insert(0, project_path)
    for d in search_dirs:
        for name in _CONFIG_FILENAMES:
            path = os.path.join(d, name)
            if os.path.isfile(path):
                return path
    return None


def _load_yaml(path: str) -> dict:
    """Load YAML file, returns empty dict on failure."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError):
        return {}


def _threshold(value: float) -> float:
    return value if 0.0 <= value <= 1.0 else _DEFAULTS["similarity_threshold"]


class Config:
    """Daemon and store configuration.

    Settings are resolved in priority order:
    1. CLI arguments (handled by caller)
    2. Environment variables
    3. .cortex.yaml config file
    4. Built-in defaults
    """

    def __init__(self, yaml_data: dict | None = None, project_path: str | None = None):
        yd = yaml_data or {}

        # Helper: env var > yaml > default
        def _get(env_key: str, yaml_key: str, default, cast=str):
            env_val = os.getenv(env_key)
            if env_val is not None and env_val != "":
                try:
                    return cast(env_val)
                except (TypeError, ValueError):
                    return default
            yaml_val = yd.get(yaml_key)
            if yaml_val is not None:
                try:
                    return cast(yaml_val)
                except (TypeError, ValueError):
                    return default
            return default

        project = project_path or _get("CORTEX_PROJECT", "project_path", "")
        self.PROJECT_PATH = os.path.abspath(project) if project else ""
        state_dir = os.path.join(self.PROJECT_PATH, _STATE_DIR) if project else ""

        self.DB_PATH = _get("CORTEX_DB_PATH", "db_path",
                            os.path.join(state_dir, "cortex.db") if state_dir else "")
        self.QUEUE_PATH = _get("CORTEX_QUEUE_PATH", "queue_path",
                               os.path.join(state_dir, "cortex-events.jsonl")
                               if state_dir else "")
        self.FEEDBACK_PATH = _get("CORTEX_FEEDBACK_PATH", "feedback_path",
                                  os.path.join(state_dir, "cortex-feedback.jsonl")
                                  if state_dir else "")
        self.LOG_DIR = _get("CORTEX_LOG_DIR", "log_dir",
                            os.path.join(state_dir, "logs") if state_dir else "")
        self.LOG_LEVEL = _get("CORTEX_LOG_LEVEL", "log_level", _DEFAULTS["log_level"])

        # Orchestration loop
        self.POLL_INTERVAL = _get("CORTEX_POLL_INTERVAL", "poll_interval",
                                  _DEFAULTS["poll_interval"], cast=float)
        self.FANOUT_WORKERS = _get("CORTEX_FANOUT_WORKERS", "fanout_workers",
                                   _DEFAULTS["fanout_workers"], cast=int)
        self.CONTEXT_DEBOUNCE = _get("CORTEX_CONTEXT_DEBOUNCE", "context_debounce",
                                     _DEFAULTS["context_debounce"], cast=float)

        # External analysis agent
        self.AGENT_BIN = _get("CLAUDE_BIN", "agent_bin", "")
        self.AGENT_TIMEOUT = _get("CORTEX_AGENT_TIMEOUT", "agent_timeout",
                                  _DEFAULTS["agent_timeout"], cast=float)
        self.AGENT_MODEL = _get("CORTEX_AGENT_MODEL", "agent_model",
                                _DEFAULTS["agent_model"])
        self.LEARNER_MODEL = _get("CORTEX_LEARNER_MODEL", "learner_model",
                                  _DEFAULTS["learner_model"])

        # Store and context assembly
        self.SIMILARITY_THRESHOLD = _threshold(
            _get("CORTEX_SIMILARITY_THRESHOLD", "similarity_threshold",
                 _DEFAULTS["similarity_threshold"], cast=float)
        )
        self.CONTEXT_MAX_TOKENS = _get("CORTEX_CONTEXT_MAX_TOKENS", "context_max_tokens",
                                       _DEFAULTS["context_max_tokens"], cast=int)
        self.BUSY_TIMEOUT_MS = _get("CORTEX_BUSY_TIMEOUT_MS", "busy_timeout_ms",
                                    _DEFAULTS["busy_timeout_ms"], cast=int)

        # Summarization collaborator
        gemini_section = yd.get("gemini", {}) if isinstance(yd.get("gemini"), dict) else {}
        self.GEMINI_API_KEY = (os.getenv("GEMINI_API_KEY")
                               or os.getenv("GOOGLE_API_KEY")
                               or gemini_section.get("api_key", ""))
        self.GEMINI_MODEL = (os.getenv("CORTEX_GEMINI_MODEL")
                             or gemini_section.get("model", _DEFAULTS["gemini_model"]))
        self.GEMINI_BASE_URL = (os.getenv("CORTEX_GEMINI_BASE_URL")
                                or gemini_section.get("base_url",
                                                      _DEFAULTS["gemini_base_url"]))

    def validate(self) -> None:
        """Raise ConfigError unless the project directory is usable."""
        if not self.PROJECT_PATH:
            raise ConfigError("no project path configured (use --project or CORTEX_PROJECT)")
        if not os.path.isdir(self.PROJECT_PATH):
            raise ConfigError(f"project path is not a directory: {self.PROJECT_PATH}")

    @classmethod
    def load(
        cls,
        config_path: str | None = None,
        project_path: str | None = None,
    ) -> "Config":
        """Load config from YAML file (if found) + env vars + defaults."""
        path = _find_config_file(config_path, project_path)
        yaml_data = _load_yaml(path) if path else {}
        return cls(yaml_data, project_path=project_path)

"""
Serialized runner for the external analysis agent.

At most one agent process runs at a time.  Requests go through a
single-worker executor, so they start in submission order and each one
starts only after the previous one has resolved (exit, timeout or spawn
failure).  Every invocation is audited in ``agent_runs``.
"""

from __future__ import annotations

import json
import logging
import os
import re
import subprocess
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Iterable, Mapping, Optional

from ..store.agent_runs import AgentRunStore

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 90.0
BINARY_NAME = "claude"
BINARY_ENV = "CLAUDE_BIN"

# Set inside an agent session; the child would refuse to start with it.
SUPPRESSED_ENV = ("CLAUDECODE",)

_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")


# ---------------------------------------------------------------------------
# Binary resolution and command line
# ---------------------------------------------------------------------------

def default_candidates(env: Mapping[str, str]) -> list[str]:
    """Well-known install locations, checked after the env override."""
    candidates: list[str] = []
    appdata = env.get("APPDATA")
    if appdata:
        candidates.append(os.path.join(appdata, "npm", "claude.cmd"))
        candidates.append(os.path.join(appdata, "npm", "claude"))
    candidates.extend(["/usr/local/bin/claude", "/usr/bin/claude"])
    return candidates


def resolve_agent_binary(
    env: Mapping[str, str],
    candidates: Optional[Iterable[str]] = None,
    exists: Callable[[str], bool] = os.path.isfile,
) -> str:
    """Pick the agent executable.

    Parameters
    ----------
    env:
        Environment snapshot; ``CLAUDE_BIN`` wins when it points at a file.
    candidates:
        Fallback paths in order.  Defaults to :func:`default_candidates`.
    exists:
        Existence check, replaceable in tests.

    Returns
    -------
    str
        The first existing path, else the bare name for a PATH lookup.
    """
    override = env.get(BINARY_ENV)
    if override and exists(override):
        return override
    paths = default_candidates(env) if candidates is None else candidates
    for path in paths:
        if exists(path):
            return path
    return BINARY_NAME


def build_command(
    binary: str,
    prompt: str,
    model: Optional[str] = None,
    output_schema: Optional[dict] = None,
) -> list[str]:
    cmd = [binary, "-p", prompt, "--dangerously-skip-permissions"]
    if model:
        cmd += ["--model", model]
    if output_schema is not None:
        cmd += ["--output-format", "json", "--json-schema", json.dumps(output_schema)]
    else:
        cmd += ["--output-format", "text"]
    return cmd


def agent_environment(env: Mapping[str, str]) -> dict[str, str]:
    """Copy of *env* without the variables the agent must not inherit."""
    return {k: v for k, v in env.items() if k not in SUPPRESSED_ENV}


# ---------------------------------------------------------------------------
# Requests and results
# ---------------------------------------------------------------------------

@dataclass
class AgentRequest:
    prompt: str
    agent_name: str = "agent"
    working_directory: Optional[str] = None
    timeout: Optional[float] = None      # seconds; runner default when None
    output_schema: Optional[dict] = None
    model: Optional[str] = None
    session_id: Optional[str] = None


@dataclass
class AgentResult:
    """Outcome of one invocation.

    Non-zero exit, timeout and spawn failure all come back as
    ``success=False`` with a message in ``error``.
    """
    success: bool
    output: str = ""
    error: Optional[str] = None
    run_id: Optional[int] = None
    duration_ms: int = 0
    timed_out: bool = False

    def parse_json(self) -> Optional[dict]:
        """Extract the structured result from the agent's output.

        Uses the ``structured_output`` member of the JSON envelope when
        present, else the envelope itself, else the first ``{...}`` block
        in the text.  Returns None when nothing parses.
        """
        text = (self.output or "").strip()
        if not text:
            return None
        try:
            data = json.loads(text)
        except ValueError:
            match = _JSON_BLOCK.search(text)
            if not match:
                return None
            try:
                data = json.loads(match.group(0))
            except ValueError:
                return None
        if not isinstance(data, dict):
            return None
        structured = data.get("structured_output")
        return structured if isinstance(structured, dict) else data


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

class AgentRunner:
    """
    Runs agent requests one at a time, FIFO.

    Parameters
    ----------
    runs:
        Audit store; when None, invocations are not recorded.
    binary:
        Agent executable.  Resolved from the environment when None.
    default_timeout:
        Seconds before a running agent is killed.
    popen:
        Process factory with the ``subprocess.Popen`` signature.
    env:
        Base environment for the child.  Defaults to ``os.environ``.
    """

    def __init__(
        self,
        runs: Optional[AgentRunStore] = None,
        binary: Optional[str] = None,
        default_timeout: float = DEFAULT_TIMEOUT,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._runs = runs
        self._env = dict(os.environ if env is None else env)
        self._binary = binary or resolve_agent_binary(self._env)
        self._default_timeout = default_timeout
        self._popen = popen
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="cortex-agent")
        self._lock = threading.Lock()
        self._pending = 0
        self._closed = False

    @property
    def binary(self) -> str:
        return self._binary

    @property
    def pending(self) -> int:
        """Requests submitted but not yet resolved, including the running one."""
        with self._lock:
            return self._pending

    def submit(self, request: AgentRequest) -> "Future[AgentResult]":
        """Queue *request*; the future resolves to an :class:`AgentResult`."""
        with self._lock:
            if self._closed:
                raise RuntimeError("runner is shut down")
            self._pending += 1
        return self._executor.submit(self._run, request)

    def invoke(self, request: AgentRequest) -> AgentResult:
        """Queue *request* and wait for its result."""
        return self.submit(request).result()

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=wait)

    # ------------------------------------------------------------------
    # Single invocation (always on the worker thread)
    # ------------------------------------------------------------------

    def _run(self, request: AgentRequest) -> AgentResult:
        try:
            run_id = self._audit_start(request)
            started = time.monotonic()
            try:
                result = self._execute(request)
            except Exception as exc:
                logger.exception("[Runner] %s crashed", request.agent_name)
                result = AgentResult(success=False, error=str(exc))
            result.run_id = run_id
            result.duration_ms = int((time.monotonic() - started) * 1000)
            self._audit_finish(run_id, result)
            if result.success:
                logger.info("[Runner] %s finished in %d ms", request.agent_name,
                            result.duration_ms)
            else:
                logger.warning("[Runner] %s failed: %s", request.agent_name,
                               (result.error or "")[:200])
            return result
        finally:
            with self._lock:
                self._pending -= 1

    def _execute(self, request: AgentRequest) -> AgentResult:
        timeout = request.timeout if request.timeout is not None else self._default_timeout
        cmd = build_command(self._binary, request.prompt, request.model, request.output_schema)
        logger.debug("[Runner] Starting %s (timeout %.0fs)", request.agent_name, timeout)

        try:
            proc = self._popen(
                cmd,
                cwd=request.working_directory,
                env=agent_environment(self._env),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except (OSError, ValueError) as exc:
            return AgentResult(success=False, error=str(exc))

        try:
            stdout, stderr = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            proc.kill()
            try:
                proc.communicate(timeout=5)
            except subprocess.TimeoutExpired:
                logger.warning("[Runner] %s did not exit after kill", request.agent_name)
            return AgentResult(
                success=False,
                error=f"Timeout after {int(timeout * 1000)}ms",
                timed_out=True,
            )

        if proc.returncode == 0:
            return AgentResult(success=True, output=stdout or "")
        error = (stderr or "").strip() or f"exit code {proc.returncode}"
        return AgentResult(success=False, output=stdout or "", error=error)

    def _audit_start(self, request: AgentRequest) -> Optional[int]:
        if self._runs is None:
            return None
        try:
            return self._runs.start(request.agent_name, request.session_id)
        except Exception as exc:
            logger.warning("[Runner] Could not record start of %s: %s",
                           request.agent_name, exc)
            return None

    def _audit_finish(self, run_id: Optional[int], result: AgentResult) -> None:
        if self._runs is None or run_id is None:
            return
        try:
            self._runs.finish(run_id, result.success, result.error)
        except Exception as exc:
            logger.warning("[Runner] Could not close agent run %s: %s", run_id, exc)

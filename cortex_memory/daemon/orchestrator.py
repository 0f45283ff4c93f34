"""
Orchestration loop — polls the event queue and fans events out to handlers.

Each tick reads new events in file order, submits every matching handler
to a small thread pool and marks the matched events processed.  Handlers
run independently; a failure in one is logged and affects nothing else.
Nothing inside the loop stops it except :meth:`Daemon.stop`.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Optional

from ..collab.summarizer import Summarizer
from ..config import Config
from ..store import KnowledgeStore
from .agents import AgentContext, FileContextAgent, LearnerAgent, SessionRecorder
from .event_queue import FILE_ACCESS, SESSION_END, EventQueue, QueueEvent
from .runner import AgentRunner

logger = logging.getLogger(__name__)

Handler = Callable[[AgentContext, QueueEvent], None]


def default_handlers(config: Config) -> dict[str, list[Handler]]:
    return {
        FILE_ACCESS: [FileContextAgent(debounce=config.CONTEXT_DEBOUNCE)],
        SESSION_END: [SessionRecorder(), LearnerAgent()],
    }


class Daemon:
    """
    Parameters
    ----------
    config:
        Loaded configuration.  Construction fails with ConfigError when the
        project path is missing.
    store, runner, queue, handlers:
        Collaborators; built from *config* when not given.
    """

    def __init__(
        self,
        config: Config,
        store: Optional[KnowledgeStore] = None,
        runner: Optional[AgentRunner] = None,
        queue: Optional[EventQueue] = None,
        handlers: Optional[dict[str, list[Handler]]] = None,
        summarizer: Optional[Summarizer] = None,
    ) -> None:
        config.validate()
        self._config = config
        self._store = store or KnowledgeStore.open(
            config.DB_PATH,
            busy_timeout_ms=config.BUSY_TIMEOUT_MS,
            similarity_threshold=config.SIMILARITY_THRESHOLD,
        )
        self._runner = runner or AgentRunner(
            self._store.agent_runs,
            binary=config.AGENT_BIN or None,
            default_timeout=config.AGENT_TIMEOUT,
        )
        self._queue = queue or EventQueue(config.QUEUE_PATH)
        self._handlers = default_handlers(config) if handlers is None else handlers
        self._ctx = AgentContext(
            project_path=config.PROJECT_PATH,
            store=self._store,
            runner=self._runner,
            feedback_path=config.FEEDBACK_PATH,
            agent_model=config.AGENT_MODEL or None,
            learner_model=config.LEARNER_MODEL or None,
            summarizer=summarizer if summarizer is not None else Summarizer.from_config(config),
        )
        self._fanout = ThreadPoolExecutor(
            max_workers=max(1, config.FANOUT_WORKERS), thread_name_prefix="cortex-task"
        )
        self._inflight: set[Future] = set()
        self._lock = threading.Lock()
        self._stop_event = threading.Event()

    @property
    def store(self) -> KnowledgeStore:
        return self._store

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def tick(self) -> int:
        """Run one poll.  Returns the number of events dispatched."""
        events = self._queue.read()
        if not events:
            return 0

        matched: list[QueueEvent] = []
        for event in events:
            handlers = self._handlers.get(event.kind, [])
            if not handlers or (event.kind == FILE_ACCESS and not event.file):
                continue
            self._ensure_session(event)
            for handler in handlers:
                self._dispatch(handler, event)
            matched.append(event)

        if matched:
            self._queue.mark_processed(matched)
            logger.debug("[Daemon] Dispatched %d event(s)", len(matched))
        return len(matched)

    def _ensure_session(self, event: QueueEvent) -> None:
        if not event.session_id:
            return
        try:
            self._store.sessions.create(event.session_id, started_at=event.timestamp)
        except sqlite3.Error as exc:
            logger.warning("[Daemon] Could not record session %s: %s", event.session_id, exc)

    def _dispatch(self, handler: Handler, event: QueueEvent) -> None:
        future = self._fanout.submit(self._run_handler, handler, event)
        with self._lock:
            self._inflight.add(future)
        future.add_done_callback(self._forget)

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._inflight.discard(future)

    def _run_handler(self, handler: Handler, event: QueueEvent) -> None:
        name = getattr(handler, "name", None) or getattr(handler, "__name__", "handler")
        try:
            handler(self._ctx, event)
        except Exception:
            logger.exception("[Daemon] %s handler failed on %s event", name, event.kind)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until every dispatched handler has finished."""
        with self._lock:
            pending = list(self._inflight)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self, stop_event: Optional[threading.Event] = None) -> None:
        """Poll until *stop_event* (or :meth:`stop`) is set, then shut down."""
        if stop_event is not None:
            # stop() sets the event the loop sleeps on.
            previous, self._stop_event = self._stop_event, stop_event
            if previous.is_set():
                stop_event.set()
        stop = self._stop_event
        logger.info("[Daemon] Watching %s every %.1fs",
                    self._queue.log_path, self._config.POLL_INTERVAL)
        while not stop.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("[Daemon] Poll failed")
            stop.wait(timeout=self._config.POLL_INTERVAL)
        self.shutdown()

    def stop(self) -> None:
        self._stop_event.set()

    def shutdown(self, wait_for_tasks: bool = True) -> None:
        self._fanout.shutdown(wait=wait_for_tasks)
        self._runner.shutdown(wait=wait_for_tasks)
        logger.info("[Daemon] Stopped")

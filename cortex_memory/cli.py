"""
`cortex` command line.

Commands
--------
cortex daemon   [--project DIR]                 -- run the background daemon
cortex context  [--file PATH ...] [--max-tokens N]
cortex search   "<query>" [--limit N]           -- full-text search over all records
cortex event    file_access|session_end --session ID [--file PATH] [--transcript PATH]
cortex reindex  [--table NAME] [--check]        -- rebuild or verify the search index
cortex prune                                    -- archive stale records
cortex health   [--history N]                   -- take and show a health snapshot
cortex runs     [--limit N] [--agent NAME]      -- recent agent invocations
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from datetime import datetime, timezone
from typing import Optional

from tqdm import tqdm

from .config import Config
from .context.assembler import ContextAssembler
from .daemon.event_queue import EVENT_KINDS, QueueEvent, append_event
from .errors import ConfigError, CortexError
from .log import setup_logger
from .store import KnowledgeStore
from .store.lifecycle import archive_stale
from .store.schema import FTS_TABLES
from .store.search import format_results, search_all

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _load_config(args: argparse.Namespace) -> Config:
    """Load and validate config, exiting with a message when unusable."""
    try:
        cfg = Config.load(config_path=args.config, project_path=args.project)
        cfg.validate()
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(1)
    return cfg


def _open_store(cfg: Config) -> KnowledgeStore:
    try:
        return KnowledgeStore.open(
            cfg.DB_PATH,
            busy_timeout_ms=cfg.BUSY_TIMEOUT_MS,
            similarity_threshold=cfg.SIMILARITY_THRESHOLD,
        )
    except CortexError as exc:
        print(f"Could not open knowledge store: {exc}", file=sys.stderr)
        sys.exit(1)


# ---------------------------------------------------------------------------
# Sub-command handlers
# ---------------------------------------------------------------------------

def _cmd_daemon(args: argparse.Namespace) -> None:
    from .daemon.orchestrator import Daemon

    cfg = _load_config(args)
    setup_logger(cfg.LOG_DIR, cfg.LOG_LEVEL)
    try:
        daemon = Daemon(cfg)
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(1)

    def _stop(signum, frame):
        logger.info("[Daemon] Received signal %d, stopping", signum)
        daemon.stop()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)
    print(f"cortex daemon watching {cfg.PROJECT_PATH} (Ctrl+C to stop)")
    daemon.run()


def _cmd_context(args: argparse.Namespace) -> None:
    """Print the context block for the given files."""
    cfg = _load_config(args)
    store = _open_store(cfg)
    assembler = ContextAssembler(store, max_tokens=cfg.CONTEXT_MAX_TOKENS)
    result = assembler.assemble(args.file or [], max_tokens=args.max_tokens)
    if result.text:
        print(result.text)


def _cmd_search(args: argparse.Namespace) -> None:
    cfg = _load_config(args)
    store = _open_store(cfg)
    print(format_results(search_all(store.db, args.query, limit=args.limit)))


def _cmd_event(args: argparse.Namespace) -> None:
    """Append one event to the queue; used by session hooks."""
    cfg = _load_config(args)
    if args.kind == "file_access" and not args.file:
        print("file_access events need --file", file=sys.stderr)
        sys.exit(1)
    event = QueueEvent(
        kind=args.kind,
        session_id=args.session,
        timestamp=datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
        file=args.file,
        tool=args.tool,
        transcript_ref=args.transcript,
    )
    if not append_event(cfg.QUEUE_PATH, event):
        sys.exit(1)


def _cmd_reindex(args: argparse.Namespace) -> None:
    """Rebuild the full-text index, or only report drift with --check."""
    cfg = _load_config(args)
    store = _open_store(cfg)

    if args.check:
        drifted = False
        for table, drift in store.db.check_index_consistency().items():
            state = "ok" if drift.consistent else (
                f"{len(drift.missing)} missing, {len(drift.orphaned)} orphaned"
            )
            drifted = drifted or not drift.consistent
            print(f"  {table:<12} {state}")
        if drifted:
            sys.exit(1)
        return

    tables = [args.table] if args.table else list(FTS_TABLES)
    pbar = tqdm(total=len(tables), unit="table", desc="Reindexing")

    def _progress(table: str, count: int) -> None:
        pbar.set_postfix_str(f"{table}={count}", refresh=False)
        pbar.update(1)

    counts = store.db.rebuild_index(args.table, progress=_progress)
    pbar.close()
    print(f"Indexed {sum(counts.values())} row(s) across {len(counts)} table(s)")


def _cmd_prune(args: argparse.Namespace) -> None:
    cfg = _load_config(args)
    store = _open_store(cfg)
    archived = archive_stale(store.db)
    for table, count in archived.items():
        print(f"  {table:<12} {count} archived")


def _cmd_health(args: argparse.Namespace) -> None:
    """Record today's health snapshot and print recent history."""
    cfg = _load_config(args)
    store = _open_store(cfg)
    snapshot = store.health.save_snapshot()
    print(f"\nProject health: {snapshot.score}/100 ({snapshot.trend})")
    print("=" * 40)
    for key, value in snapshot.metrics.items():
        print(f"  {key:<24} {value}")
    if args.history > 1:
        print("\nHistory")
        for snap in store.health.history(limit=args.history):
            print(f"  {snap.date}  {snap.score:>3}  {snap.trend}")


def _cmd_runs(args: argparse.Namespace) -> None:
    cfg = _load_config(args)
    store = _open_store(cfg)
    runs = store.agent_runs.recent(limit=args.limit, agent_name=args.agent)
    if not runs:
        print("  (no agent runs recorded)")
        return
    for run in runs:
        if run.pending:
            state = "pending"
        else:
            state = "ok" if run.success else f"failed: {(run.error_message or '')[:60]}"
        duration = f"{run.duration_ms}ms" if run.duration_ms is not None else "-"
        print(f"  #{run.id:<5} {run.started_at[:19]}  {run.agent_name:<10} {duration:>8}  {state}")

    rates = store.agent_runs.success_rates()
    if rates:
        print("\nLast 30 days")
        for name, stats in rates.items():
            print(f"  {name:<10} {stats['succeeded']}/{stats['runs']} ok "
                  f"({stats['rate'] * 100:.0f}%), avg {stats['avg_ms']}ms")


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cortex",
        description="Cortex — persistent project memory for coding-agent sessions",
    )
    parser.add_argument("--project", default=None,
                        help="Project directory (default: CORTEX_PROJECT or config file)")
    parser.add_argument("--config", default=None, help="Path to a .cortex.yaml file")
    subparsers = parser.add_subparsers(dest="cmd", metavar="COMMAND")
    subparsers.required = True

    daemon_p = subparsers.add_parser("daemon", help="Run the background daemon")
    daemon_p.set_defaults(func=_cmd_daemon)

    context_p = subparsers.add_parser("context", help="Print the session context block")
    context_p.add_argument("--file", action="append", default=[],
                           help="File currently being worked on (repeatable)")
    context_p.add_argument("--max-tokens", type=int, default=None,
                           help="Token budget (default: from config)")
    context_p.set_defaults(func=_cmd_context)

    search_p = subparsers.add_parser("search", help="Full-text search over all records")
    search_p.add_argument("query", help="Search text")
    search_p.add_argument("--limit", type=int, default=20)
    search_p.set_defaults(func=_cmd_search)

    event_p = subparsers.add_parser("event", help="Append an event to the queue")
    event_p.add_argument("kind", choices=list(EVENT_KINDS))
    event_p.add_argument("--session", required=True, help="Session id")
    event_p.add_argument("--file", default=None)
    event_p.add_argument("--tool", default=None)
    event_p.add_argument("--transcript", default=None, help="Path to the session transcript")
    event_p.set_defaults(func=_cmd_event)

    reindex_p = subparsers.add_parser("reindex", help="Rebuild the full-text index")
    reindex_p.add_argument("--table", choices=list(FTS_TABLES), default=None)
    reindex_p.add_argument("--check", action="store_true",
                           help="Only report index drift; exit 1 if any")
    reindex_p.set_defaults(func=_cmd_reindex)

    prune_p = subparsers.add_parser("prune", help="Archive stale records")
    prune_p.set_defaults(func=_cmd_prune)

    health_p = subparsers.add_parser("health", help="Take and show a health snapshot")
    health_p.add_argument("--history", type=int, default=7)
    health_p.set_defaults(func=_cmd_health)

    runs_p = subparsers.add_parser("runs", help="Show recent agent invocations")
    runs_p.add_argument("--limit", type=int, default=20)
    runs_p.add_argument("--agent", default=None)
    runs_p.set_defaults(func=_cmd_runs)

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv: Optional[list[str]] = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.cmd != "daemon" and not logging.root.handlers:
        logging.basicConfig(
            level=logging.WARNING,
            format="%(levelname)s  %(name)s  %(message)s",
        )
    args.func(args)


if __name__ == "__main__":
    main()

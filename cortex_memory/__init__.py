"""
cortex_memory — session memory and context assembly for AI coding sessions.

Observes an editing session through an append-only event log, persists
what was learned into a per-project SQLite store, and rebuilds a
budget-limited context block for the next session::

    from cortex_memory import Config, ContextAssembler, KnowledgeStore

    cfg = Config.load(project_path="/path/to/project")
    store = KnowledgeStore.open(cfg.DB_PATH)
    print(ContextAssembler(store).assemble(["src/auth.py"]).text)
"""

from .config import Config
from .context.assembler import ContextAssembler
from .store import KnowledgeStore

__version__ = "0.1.0"

__all__ = ["Config", "ContextAssembler", "KnowledgeStore"]

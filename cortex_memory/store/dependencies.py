"""
File-level import graph.

Edges are stored in SQLite; traversals load them into a networkx
``DiGraph`` (source imports target) and walk it breadth-first.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

import networkx as nx

from .db import Database
from .models import Dependency, dump_list

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 3


class DependencyStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    def add(
        self,
        source_file: str,
        target_file: str,
        import_type: str = "static",
        symbols: Optional[list[str]] = None,
    ) -> None:
        with self._db.connect() as conn:
            self._upsert(conn, source_file, target_file, import_type, symbols)

    @staticmethod
    def _upsert(conn, source_file, target_file, import_type, symbols) -> None:
        conn.execute(
            """
            INSERT INTO dependencies (source_file, target_file, import_type, symbols)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(source_file, target_file) DO UPDATE SET
                import_type = excluded.import_type,
                symbols     = excluded.symbols
            """,
            (source_file, target_file, import_type, dump_list(symbols)),
        )

    def set_for_file(self, source_file: str, deps: Iterable[Dependency]) -> int:
        """Replace every outgoing edge of *source_file* in one transaction."""
        count = 0
        with self._db.connect() as conn:
            conn.execute("DELETE FROM dependencies WHERE source_file = ?", (source_file,))
            for dep in deps:
                self._upsert(conn, source_file, dep.target_file, dep.import_type, dep.symbols)
                count += 1
        return count

    def imports_of(self, path: str) -> list[Dependency]:
        """What *path* imports."""
        return self._query("source_file = ?", path)

    def importers_of(self, path: str) -> list[Dependency]:
        """Who imports *path*."""
        return self._query("target_file = ?", path)

    def _query(self, where: str, path: str) -> list[Dependency]:
        with self._db.connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM dependencies WHERE {where} ORDER BY source_file, target_file",
                (path,),
            ).fetchall()
        return [Dependency.from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Graph traversal
    # ------------------------------------------------------------------

    def graph(self) -> nx.DiGraph:
        g = nx.DiGraph()
        with self._db.connect() as conn:
            for row in conn.execute("SELECT source_file, target_file, import_type FROM dependencies"):
                g.add_edge(row["source_file"], row["target_file"], type=row["import_type"])
        return g

    def impact_tree(self, path: str, max_depth: int = DEFAULT_MAX_DEPTH) -> dict[str, int]:
        """Files that directly or indirectly import *path*.

        Returns
        -------
        dict[str, int]
            File path → distance in import hops (1 = direct importer).
        """
        g = self.graph()
        if not g.has_node(path):
            return {}
        return self._bfs(g.reverse(copy=False), path, max_depth)

    def dependency_tree(self, path: str, max_depth: int = DEFAULT_MAX_DEPTH) -> dict[str, int]:
        """Files *path* depends on, with their distance in import hops."""
        g = self.graph()
        if not g.has_node(path):
            return {}
        return self._bfs(g, path, max_depth)

    @staticmethod
    def _bfs(g: nx.DiGraph, start: str, max_depth: int) -> dict[str, int]:
        depths = nx.single_source_shortest_path_length(g, start, cutoff=max_depth)
        depths.pop(start, None)
        return dict(sorted(depths.items(), key=lambda kv: (kv[1], kv[0])))

    def stats(self) -> dict:
        g = self.graph()
        most_imported = sorted(g.in_degree(), key=lambda kv: kv[1], reverse=True)[:5]
        return {
            "edges": g.number_of_edges(),
            "files": g.number_of_nodes(),
            "most_imported": [(p, n) for p, n in most_imported if n],
            "has_cycles": not nx.is_directed_acyclic_graph(g) if g.number_of_nodes() else False,
        }

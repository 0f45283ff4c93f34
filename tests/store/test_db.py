"""
Tests for cortex_memory.store.db: schema creation, migrations and
full-text index maintenance.
"""

from __future__ import annotations

import os
import shutil
import tempfile
import unittest

from cortex_memory.errors import StoreError
from cortex_memory.store import KnowledgeStore
from cortex_memory.store.db import Database
from cortex_memory.store.schema import FTS_TABLES, SCHEMA_VERSION


class TestDatabaseSchema(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.tmpdir, "nested", "knowledge.db")

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def _tables(self, db):
        with db.connect() as conn:
            return {r[0] for r in conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table'"
            )}

    def test_creates_parent_dir_and_tables(self):
        db = Database(self.db_path)
        self.assertTrue(os.path.exists(self.db_path))
        tables = self._tables(db)
        for name in ("sessions", "decisions", "errors", "learnings", "unfinished",
                     "project_files", "dependencies", "diffs", "agent_runs",
                     "health_snapshots", "schema_version"):
            self.assertIn(name, tables)
        for tdef in FTS_TABLES.values():
            self.assertIn(tdef.shadow, tables)

    def test_schema_at_latest_version(self):
        db = Database(self.db_path)
        self.assertEqual(db.schema_version(), SCHEMA_VERSION)

    def test_reopen_is_idempotent(self):
        Database(self.db_path)
        db = Database(self.db_path)
        self.assertEqual(db.schema_version(), SCHEMA_VERSION)
        with db.connect() as conn:
            count = conn.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
        self.assertEqual(count, SCHEMA_VERSION)

    def test_migrations_tolerate_existing_columns(self):
        db = Database(self.db_path)
        with db.connect() as conn:
            conn.execute("DELETE FROM schema_version")
        # Every migration re-runs against columns that already exist
        db = Database(self.db_path)
        self.assertEqual(db.schema_version(), SCHEMA_VERSION)

    def test_empty_path_rejected(self):
        with self.assertRaises(StoreError):
            Database("")

    def test_connection_pragmas(self):
        db = Database(self.db_path, busy_timeout_ms=1234)
        with db.connect() as conn:
            self.assertEqual(conn.execute("PRAGMA journal_mode").fetchone()[0], "wal")
            self.assertEqual(conn.execute("PRAGMA foreign_keys").fetchone()[0], 1)
            self.assertEqual(conn.execute("PRAGMA busy_timeout").fetchone()[0], 1234)

    def test_rollback_on_error(self):
        db = Database(self.db_path)
        with self.assertRaises(RuntimeError):
            with db.connect() as conn:
                conn.execute(
                    "INSERT INTO sessions (id, started_at, status) VALUES ('s1', 'x', 'active')"
                )
                raise RuntimeError("boom")
        with db.connect() as conn:
            self.assertEqual(conn.execute("SELECT COUNT(*) FROM sessions").fetchone()[0], 0)


class TestIndexConsistency:

    def _store(self, tmp_path):
        return KnowledgeStore.open(str(tmp_path / "k.db"))

    def _assert_consistent(self, store):
        for table, drift in store.db.check_index_consistency().items():
            assert drift.consistent, f"{table}: {drift}"

    def test_consistent_after_inserts(self, tmp_path):
        store = self._store(tmp_path)
        store.sessions.create("s1")
        store.decisions.add("Use SQLite", "single file, no server")
        store.errors.add("KeyError: 'user'", root_cause="missing key")
        store.learnings.add("mutating props", "copy props first")
        store.unfinished.add("write migration docs")
        self._assert_consistent(store)

    def test_consistent_after_update_archive_delete(self, tmp_path):
        store = self._store(tmp_path)
        err = store.errors.add("ValueError: bad input")
        store.errors.update(err.id, fix_description="validate earlier")
        lrn, _ = store.learnings.add("global state", "pass state explicitly")
        store.learnings.archive(lrn.id)
        store.sessions.create("s1")
        store.sessions.end_session("s1", "refactored parser", ["parser.py"])
        self._assert_consistent(store)

        store.errors.delete(err.id)
        store.learnings.delete(lrn.id)
        self._assert_consistent(store)

    def test_updated_text_is_searchable(self, tmp_path):
        store = self._store(tmp_path)
        err = store.errors.add("TimeoutError in fetch")
        store.errors.update(err.id, fix_description="raise the socket deadline")
        assert [e.id for e in store.errors.search("deadline")] == [err.id]

    def test_drift_detected_and_repaired(self, tmp_path):
        store = self._store(tmp_path)
        store.decisions.add("Use WAL mode", "readers do not block the writer")
        with store.db.connect() as conn:
            conn.execute(f"DELETE FROM {FTS_TABLES['decisions'].shadow}")
        drift = store.db.check_index_consistency()["decisions"]
        assert not drift.consistent
        assert len(drift.missing) == 1

        counts = store.db.rebuild_index("decisions")
        assert counts == {"decisions": 1}
        self._assert_consistent(store)

    def test_rebuild_reports_progress(self, tmp_path):
        store = self._store(tmp_path)
        seen = []
        store.db.rebuild_index(progress=lambda table, count: seen.append(table))
        assert seen == list(FTS_TABLES)

    def test_backfill_on_open(self, tmp_path):
        store = self._store(tmp_path)
        store.unfinished.add("finish the exporter")
        with store.db.connect() as conn:
            conn.execute(f"DELETE FROM {FTS_TABLES['unfinished'].shadow}")
        reopened = self._store(tmp_path)
        assert reopened.db.check_index_consistency()["unfinished"].consistent
        assert len(reopened.unfinished.search("exporter")) == 1

    def test_unknown_table_rejected(self, tmp_path):
        import pytest
        store = self._store(tmp_path)
        with pytest.raises(ValueError):
            store.db.rebuild_index("diffs")


def test_session_ids_need_no_session_row(tmp_path):
    store = KnowledgeStore.open(str(tmp_path / "k.db"))
    # Records may name a session that was never recorded
    store.decisions.add("Adopt black", session_id="unknown-session")
    store.diffs.add("a.py", "diff", session_id="unknown-session")
    with store.db.connect() as conn:
        assert conn.execute("SELECT COUNT(*) FROM decisions").fetchone()[0] == 1

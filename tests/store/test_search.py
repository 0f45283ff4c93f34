"""Tests for cross-table full-text search."""

from __future__ import annotations

from cortex_memory.store import KnowledgeStore
from cortex_memory.store.fts import match_query
from cortex_memory.store.search import format_results, search_all


def test_match_query_quotes_words():
    assert match_query('auth "token" OR') == '"auth" """token""" "OR"'
    assert match_query("   ") == ""


def test_search_all_spans_tables(tmp_path):
    store = KnowledgeStore.open(str(tmp_path / "k.db"))
    store.decisions.add("Cache tokens in redis", "avoid repeated auth calls")
    store.errors.add("redis connection refused", fix_description="start the container")
    store.learnings.add("hardcoded redis host", "read host from env")
    store.unfinished.add("unrelated item")

    results = search_all(store.db, "redis")
    kinds = sorted(r.kind for r in results)
    assert len(results) == 3
    assert len(set(kinds)) == 3
    assert results == sorted(results, key=lambda r: r.score, reverse=True)
    assert all("[" in r.snippet for r in results)


def test_search_all_hides_archived(tmp_path):
    store = KnowledgeStore.open(str(tmp_path / "k.db"))
    err = store.errors.add("flaky websocket reconnect")
    assert len(search_all(store.db, "websocket")) == 1
    store.errors.archive(err.id)
    assert search_all(store.db, "websocket") == []


def test_operator_words_are_literal(tmp_path):
    store = KnowledgeStore.open(str(tmp_path / "k.db"))
    store.unfinished.add("decide between NOT and OR semantics")
    assert len(search_all(store.db, "NOT OR")) == 1
    assert search_all(store.db, "") == []


def test_format_results():
    assert format_results([]) == "(no results)"

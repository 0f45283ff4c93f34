"""Tests for TF-IDF similarity."""

from cortex_memory.analysis.similarity import (
    DEFAULT_THRESHOLD, find_similar, tokenize,
)


class TestTokenize:

    def test_drops_stopwords_and_short_tokens(self):
        assert tokenize("The cache is on a Redis server") == ["cache", "redis", "server"]

    def test_strips_punctuation(self):
        assert tokenize("redis-cache/layer!") == ["redis", "cache", "layer"]

    def test_german_stopwords(self):
        assert "und" not in tokenize("Datenbank und Server")


class TestFindSimilar:

    def test_identical_text_scores_one(self):
        matches = find_similar("never mutate props directly", [(1, "never mutate props directly")])
        assert len(matches) == 1
        assert matches[0].id == 1
        assert matches[0].score == 1.0

    def test_empty_query(self):
        assert find_similar("", [(1, "anything here")]) == []
        assert find_similar("the and", [(1, "anything here")]) == []

    def test_empty_corpus(self):
        assert find_similar("database migration", []) == []

    def test_unrelated_text_filtered(self):
        corpus = [(1, "database migration rollback"), (2, "button colour theme")]
        matches = find_similar("database migration rollback", corpus)
        assert [m.id for m in matches] == [1]

    def test_threshold_is_inclusive(self):
        matches = find_similar("database migration rollback",
                               [(1, "database migration rollback")], threshold=1.0)
        assert [m.id for m in matches] == [1]

    def test_partial_overlap_scores_between(self):
        corpus = [
            (1, "database migration rollback"),
            (2, "database migration timeout"),
            (3, "button colour theme"),
            (4, "login form validation"),
        ]
        matches = find_similar("database migration rollback", corpus, threshold=0.0)
        scores = {m.id: m.score for m in matches}
        assert scores[1] == 1.0
        assert 0.0 < scores[2] < 1.0

    def test_sorted_descending(self):
        corpus = [
            {"id": "a", "text": "cache invalidation redis keys"},
            {"id": "b", "text": "cache invalidation redis keys expiry"},
        ]
        matches = find_similar("cache invalidation redis keys", corpus, threshold=0.0)
        assert matches[0].id == "a"
        assert matches[0].score >= matches[-1].score

    def test_default_threshold(self):
        assert DEFAULT_THRESHOLD == 0.85

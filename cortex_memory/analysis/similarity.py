"""
TF-IDF cosine similarity used to catch near-duplicate knowledge entries.

Stateless: the IDF table is rebuilt from the corpus plus the query on
every call, which is fine for the few hundred entries a project holds.
"""

from __future__ import annotations

import math
import re
from collections import Counter
from dataclasses import dataclass
from typing import Iterable, Mapping, Union

DEFAULT_THRESHOLD = 0.85

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")

# English and German filler words
STOPWORDS = frozenset("""
a an the and or but in on at to for of with is it this that are was be
have has do does not no so if as by from use used using should must will
can may always never instead
ein eine der die das und oder aber zu fuer von mit ist es ich wir sie
nicht kein wie
""".split())


@dataclass
class SimilarityMatch:
    id: object
    score: float


CorpusItem = Union[tuple, Mapping]


def tokenize(text: str) -> list[str]:
    """Lowercase, strip punctuation, drop short tokens and stopwords."""
    cleaned = _NON_ALNUM.sub(" ", (text or "").lower())
    return [t for t in cleaned.split() if len(t) > 2 and t not in STOPWORDS]


def _term_frequencies(tokens: list[str]) -> dict[str, float]:
    total = len(tokens)
    if not total:
        return {}
    return {term: count / total for term, count in Counter(tokens).items()}


def _cosine(a: dict[str, float], b: dict[str, float]) -> float:
    dot = sum(w * b.get(t, 0.0) for t, w in a.items())
    norm_a = math.sqrt(sum(w * w for w in a.values()))
    norm_b = math.sqrt(sum(w * w for w in b.values()))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (norm_a * norm_b)


def _unpack(item: CorpusItem) -> tuple[object, str]:
    if isinstance(item, Mapping):
        return item.get("id"), item.get("text") or ""
    return item[0], item[1] or ""


def find_similar(
    query: str,
    corpus: Iterable[CorpusItem],
    threshold: float | None = None,
) -> list[SimilarityMatch]:
    """Return corpus entries whose similarity to *query* reaches *threshold*.

    Parameters
    ----------
    query:
        Text to compare.
    corpus:
        ``(id, text)`` pairs or mappings with ``id`` and ``text`` keys.
    threshold:
        Minimum cosine similarity, default 0.85.

    Returns
    -------
    list[SimilarityMatch]
        Sorted by score, highest first.  Empty when the query has no
        usable tokens.
    """
    if threshold is None:
        threshold = DEFAULT_THRESHOLD

    query_tokens = tokenize(query)
    if not query_tokens:
        return []

    docs = [(item_id, tokenize(text)) for item_id, text in map(_unpack, corpus)]
    if not docs:
        return []

    # IDF over corpus + query as one document set
    n_docs = len(docs) + 1
    doc_freq: Counter = Counter(set(query_tokens))
    for _, tokens in docs:
        doc_freq.update(set(tokens))
    idf = {t: math.log((n_docs + 1) / (df + 1)) for t, df in doc_freq.items()}

    def _vector(tokens: list[str]) -> dict[str, float]:
        return {t: tf * idf[t] for t, tf in _term_frequencies(tokens).items()}

    query_counts = Counter(query_tokens)
    query_vec = _vector(query_tokens)

    matches: list[SimilarityMatch] = []
    for item_id, tokens in docs:
        if not tokens:
            continue
        if Counter(tokens) == query_counts:
            # Identical bags of words; IDF weights can all be zero here.
            score = 1.0
        else:
            score = _cosine(query_vec, _vector(tokens))
        if score >= threshold:
            matches.append(SimilarityMatch(id=item_id, score=round(score, 6)))

    matches.sort(key=lambda m: m.score, reverse=True)
    return matches

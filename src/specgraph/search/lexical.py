"""Lexical (keyword) relevance index over spec chunks with BM25 ranking."""

from __future__ import annotations

import logging
import math
import re
from collections import Counter
from dataclasses import dataclass, field

from specgraph.models import ScoredSpec, SpecChunk

logger = logging.getLogger("specgraph.search")

# Okapi BM25 parameters
BM25_K1 = 1.2
BM25_B = 0.7

# A fuzzy hit is worth at most this fraction of an exact hit
FUZZY_WEIGHT = 0.45

FIELDS = ("test_name", "content")


@dataclass
class _FieldIndex:
    """Postings for one indexed field."""

    term_freqs: list[Counter[str]] = field(default_factory=list)
    lengths: list[int] = field(default_factory=list)
    doc_freq: Counter[str] = field(default_factory=Counter)

    @property
    def avg_length(self) -> float:
        if not self.lengths:
            return 0.0
        return sum(self.lengths) / len(self.lengths)

    def add(self, tokens: list[str]) -> None:
        tf = Counter(tokens)
        self.term_freqs.append(tf)
        self.lengths.append(len(tokens))
        for term in tf:
            self.doc_freq[term] += 1


class LexicalIndex:
    """BM25 index over the test name and body of each spec chunk.

    The test name carries `name_boost` times the weight of the body. Query
    terms also hit index terms within a bounded edit distance, so a renamed
    identifier (``payment-form`` vs ``payments-form``) still partially
    matches.

    The index is built fresh for every run and holds no persistent state.
    """

    def __init__(self, name_boost: float = 2.0, fuzziness: float = 0.2) -> None:
        self.name_boost = name_boost
        self.fuzziness = fuzziness
        self.chunks: list[SpecChunk] = []
        self._fields: dict[str, _FieldIndex] = {name: _FieldIndex() for name in FIELDS}
        self._vocabulary: set[str] = set()

    @classmethod
    def build(
        cls,
        chunks: list[SpecChunk],
        name_boost: float = 2.0,
        fuzziness: float = 0.2,
    ) -> LexicalIndex:
        """Index every chunk. Document ids are positions in `chunks`."""
        index = cls(name_boost=name_boost, fuzziness=fuzziness)
        for chunk in chunks:
            index.add(chunk)
        return index

    def add(self, chunk: SpecChunk) -> int:
        """Add a chunk and return its document id."""
        doc_id = len(self.chunks)
        self.chunks.append(chunk)
        for name in FIELDS:
            tokens = tokenize(getattr(chunk, name))
            self._fields[name].add(tokens)
            self._vocabulary.update(tokens)
        return doc_id

    def __len__(self) -> int:
        return len(self.chunks)

    def search_ids(self, query: str) -> list[tuple[int, float]]:
        """Score documents for `query`, returning (doc_id, score) best first.

        Only documents with a positive score are returned. Ties keep
        document order.
        """
        n_docs = len(self.chunks)
        if n_docs == 0:
            return []

        query_terms = list(dict.fromkeys(tokenize(query)))
        if not query_terms:
            return []

        scores: dict[int, float] = {}
        for q_term in query_terms:
            for term, weight in self._expand(q_term):
                for name in FIELDS:
                    boost = self.name_boost if name == "test_name" else 1.0
                    self._score_term(name, term, weight * boost, n_docs, scores)

        ranked = [(doc_id, s) for doc_id, s in scores.items() if s > 0]
        ranked.sort(key=lambda item: (-item[1], item[0]))
        logger.debug("lexical query %r matched %d/%d chunks", query, len(ranked), n_docs)
        return ranked

    def search(self, query: str) -> list[ScoredSpec]:
        """Search the indexed chunks; best first, nonzero scores only."""
        return [
            ScoredSpec(chunk=self.chunks[doc_id], score=score)
            for doc_id, score in self.search_ids(query)
        ]

    def _score_term(
        self,
        field_name: str,
        term: str,
        weight: float,
        n_docs: int,
        scores: dict[int, float],
    ) -> None:
        fidx = self._fields[field_name]
        df = fidx.doc_freq.get(term, 0)
        if df == 0:
            return
        idf = math.log(1 + (n_docs - df + 0.5) / (df + 0.5))
        avg_dl = fidx.avg_length or 1.0
        for doc_id, tf_counter in enumerate(fidx.term_freqs):
            tf = tf_counter.get(term, 0)
            if tf == 0:
                continue
            dl = fidx.lengths[doc_id]
            tf_norm = (tf * (BM25_K1 + 1)) / (tf + BM25_K1 * (1 - BM25_B + BM25_B * dl / avg_dl))
            scores[doc_id] = scores.get(doc_id, 0.0) + weight * idf * tf_norm

    def _expand(self, q_term: str) -> list[tuple[str, float]]:
        """Index terms matching `q_term` exactly or within the fuzzy bound."""
        matches: list[tuple[str, float]] = []
        if q_term in self._vocabulary:
            matches.append((q_term, 1.0))

        max_edits = round(len(q_term) * self.fuzziness)
        if max_edits < 1:
            return matches

        for term in sorted(self._vocabulary):
            if term == q_term or abs(len(term) - len(q_term)) > max_edits:
                continue
            distance = bounded_edit_distance(q_term, term, max_edits)
            if distance is not None:
                matches.append(
                    (term, FUZZY_WEIGHT * len(q_term) / (len(q_term) + distance))
                )
        return matches


def build_index(
    chunks: list[SpecChunk], name_boost: float = 2.0, fuzziness: float = 0.2
) -> LexicalIndex:
    """Build a lexical index over `chunks`."""
    return LexicalIndex.build(chunks, name_boost=name_boost, fuzziness=fuzziness)


def search_index(
    index: LexicalIndex, chunks: list[SpecChunk], query: str
) -> list[ScoredSpec]:
    """Search `index`, resolving document ids against `chunks`.

    `chunks` must be the list the index was built from.
    """
    return [ScoredSpec(chunk=chunks[doc_id], score=score) for doc_id, score in index.search_ids(query)]


def tokenize(text: str) -> list[str]:
    """Lowercase alphanumeric tokens, splitting camelCase and punctuation."""
    text = re.sub(r"([a-z0-9])([A-Z])", r"\1 \2", text)
    return re.findall(r"[a-z0-9]+", text.lower())


def bounded_edit_distance(a: str, b: str, max_distance: int) -> int | None:
    """Levenshtein distance between `a` and `b`, or None if above `max_distance`."""
    if abs(len(a) - len(b)) > max_distance:
        return None
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i] + [0] * len(b)
        row_min = current[0]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current[j] = min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + cost,
            )
            row_min = min(row_min, current[j])
        if row_min > max_distance:
            return None
        previous = current
    distance = previous[-1]
    return distance if distance <= max_distance else None

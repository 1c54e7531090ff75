"""Multi-field boosted lexical queries with Okapi BM25 scoring.

``parse_lexical_query`` turns a raw user string into a :class:`LexicalQuery`
or reports why it could not. Parsing never raises for user input: callers
branch on :attr:`LexicalParseResult.ok`.

Query construction rules:

- The raw string is treated literally. Wildcard characters typed by the user
  carry no wildcard meaning; the analyzer drops them with other punctuation.
- A query with no whitespace and no ``*``/``?`` is rewritten to the wildcard
  ``*query*`` so that substrings of filenames and terms match.
- Otherwise every analysed term becomes one clause. Clauses are combined with
  OR, each searched in every configured field.

Scoring of one row is the sum over clauses and fields of:

- term clauses: ``idf * tf * (k1 + 1) / (tf + k1 * (1 - b + b * dl / avgdl))``
  with ``idf = log((N - df + 0.5) / (df + 0.5) + 1)``, computed from that
  field's statistics in the snapshot, times the field boost;
- wildcard clauses: a constant equal to the field boost when any term of the
  field matches the pattern.

The summed lexical score is multiplied by the query boost.
"""

from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Tuple

from .interfaces import IndexSnapshotView
from .tokenization import tokenize

__all__ = (
    "FieldStatistics",
    "LexicalParseResult",
    "LexicalQuery",
    "parse_lexical_query",
)

_WILDCARD_CHARS = ("*", "?")


@dataclass(frozen=True)
class FieldStatistics:
    """Corpus statistics of one field across the live rows of a snapshot.

    Attributes:
        doc_count: Rows in which the field has at least one term.
        total_length: Sum of analysed field lengths over those rows.
    """

    doc_count: int
    total_length: int

    @property
    def average_length(self) -> float:
        if self.doc_count <= 0 or self.total_length <= 0:
            return 1.0
        return self.total_length / self.doc_count

    def idf(self, doc_freq: int) -> float:
        n = max(1, self.doc_count)
        return math.log((n - doc_freq + 0.5) / (doc_freq + 0.5) + 1.0)


@dataclass(frozen=True)
class LexicalQuery:
    """Parsed multi-field query.

    Attributes:
        terms: Analysed terms, one OR clause each. Duplicates add up.
        wildcard: Wildcard pattern replacing ``terms`` for single-token queries.
        field_boosts: Searched fields and their weights.
        boost: Multiplier applied to the whole lexical score.
        k1: BM25 term-frequency saturation.
        b: BM25 length normalisation.
    """

    terms: Tuple[str, ...]
    wildcard: Optional[str]
    field_boosts: Mapping[str, float]
    boost: float = 2.0
    k1: float = 1.2
    b: float = 0.75

    def score(self, view: IndexSnapshotView) -> Dict[int, float]:
        """Return boosted lexical scores keyed by snapshot row; zero scores are omitted."""

        scores: Dict[int, float] = defaultdict(float)
        for field, field_boost in self.field_boosts.items():
            if field_boost <= 0.0:
                continue
            if self.wildcard is not None:
                self._score_wildcard(view, field, field_boost, scores)
            else:
                self._score_terms(view, field, field_boost, scores)
        return {row: score * self.boost for row, score in scores.items() if score > 0.0}

    def _score_wildcard(
        self,
        view: IndexSnapshotView,
        field: str,
        field_boost: float,
        scores: Dict[int, float],
    ) -> None:
        matched = set()
        for term in view.expand_wildcard(field, self.wildcard or ""):
            matched.update(row for row, _ in view.term_postings(field, term))
        for row in matched:
            scores[row] += field_boost

    def _score_terms(
        self,
        view: IndexSnapshotView,
        field: str,
        field_boost: float,
        scores: Dict[int, float],
    ) -> None:
        stats = view.field_statistics(field)
        if stats.doc_count <= 0:
            return
        avgdl = stats.average_length
        for term in self.terms:
            postings = view.term_postings(field, term)
            if not postings:
                continue
            idf = stats.idf(len(postings))
            for row, tf in postings:
                dl = max(1.0, float(view.field_length(field, row)))
                denom = tf + self.k1 * (1.0 - self.b + self.b * (dl / avgdl))
                if denom <= 0.0:
                    continue
                scores[row] += field_boost * idf * (tf * (self.k1 + 1.0)) / denom


@dataclass(frozen=True)
class LexicalParseResult:
    """Outcome of :func:`parse_lexical_query`: a query or the reason there is none."""

    query: Optional[LexicalQuery] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.query is not None


def parse_lexical_query(
    raw: str,
    field_boosts: Mapping[str, float],
    *,
    boost: float = 2.0,
    k1: float = 1.2,
    b: float = 0.75,
) -> LexicalParseResult:
    """Parse ``raw`` into a multi-field OR query.

    Args:
        raw: Query string exactly as typed by the user.
        field_boosts: Fields to search and their weights.
        boost: Flat multiplier applied to the resulting lexical score.
        k1: BM25 ``k1`` parameter.
        b: BM25 ``b`` parameter.

    Returns:
        A result holding either the query or a short error description.

    Examples:
        >>> parse_lexical_query("report.pdf", {"filename": 5.0}).query.wildcard
        '*report.pdf*'
        >>> parse_lexical_query("   ", {"filename": 5.0}).ok
        False
    """

    if not isinstance(raw, str) or not raw.strip():
        return LexicalParseResult(error="empty query")
    if not field_boosts:
        return LexicalParseResult(error="no fields to search")
    terms = tuple(tokenize(raw))
    if not terms:
        return LexicalParseResult(error="query has no searchable terms")
    wildcard: Optional[str] = None
    if not any(char.isspace() for char in raw) and not any(
        char in raw for char in _WILDCARD_CHARS
    ):
        wildcard = f"*{raw.lower()}*"
    return LexicalParseResult(
        query=LexicalQuery(
            terms=terms,
            wildcard=wildcard,
            field_boosts=dict(field_boosts),
            boost=boost,
            k1=k1,
            b=b,
        )
    )

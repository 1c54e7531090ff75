"""Lexical query parsing and BM25/wildcard scoring."""

from __future__ import annotations

import math

import pytest

from DocsToIndex.HybridIndex.lexical import FieldStatistics, parse_lexical_query
from DocsToIndex.HybridIndex.tokenization import analyze_field, tokenize, wildcard_to_regex

DEFAULT_BOOSTS = {"filename": 5.0, "content": 1.0, "child_content": 1.0}


class _RowsView:
    """Minimal in-memory implementation of the snapshot read surface."""

    def __init__(self, rows):
        self._rows = rows

    @property
    def num_rows(self):
        return len(self._rows)

    def _analyzed(self, field, row):
        value = self._rows[row].get(field)
        return analyze_field(value) if isinstance(value, str) else ({}, 0)

    def term_postings(self, field, term):
        postings = []
        for row in range(len(self._rows)):
            frequencies, _ = self._analyzed(field, row)
            if term in frequencies:
                postings.append((row, frequencies[term]))
        return postings

    def expand_wildcard(self, field, pattern):
        regex = wildcard_to_regex(pattern)
        terms = set()
        for row in range(len(self._rows)):
            terms.update(term for term in self._analyzed(field, row)[0] if regex.fullmatch(term))
        return sorted(terms)

    def field_statistics(self, field):
        lengths = [self._analyzed(field, row)[1] for row in range(len(self._rows))]
        present = [length for length in lengths if length > 0]
        return FieldStatistics(doc_count=len(present), total_length=sum(present))

    def field_length(self, field, row):
        return self._analyzed(field, row)[1]

    def knn_search(self, vector, k):
        return []

    def stored_fields(self, row):
        return dict(self._rows[row])


def test_tokenize_keeps_dotted_names_together():
    assert tokenize("See X.pdf, then cat.jpg!") == ["see", "x.pdf", "then", "cat.jpg"]


def test_wildcard_regex_is_literal_except_wildcards():
    regex = wildcard_to_regex("*x.pdf*")
    assert regex.fullmatch("report_x.pdf")
    assert not regex.fullmatch("xapdf")
    assert wildcard_to_regex("c?t").fullmatch("cat")


def test_single_token_query_is_rewritten_to_wildcard():
    result = parse_lexical_query("Report.PDF", DEFAULT_BOOSTS)

    assert result.ok
    assert result.query.wildcard == "*report.pdf*"
    assert result.query.boost == 2.0


def test_multi_word_query_becomes_term_clauses():
    result = parse_lexical_query("quarterly  report", DEFAULT_BOOSTS)

    assert result.query.wildcard is None
    assert result.query.terms == ("quarterly", "report")


def test_surrounding_whitespace_disables_rewrite():
    result = parse_lexical_query(" cat ", DEFAULT_BOOSTS)

    assert result.query.wildcard is None
    assert result.query.terms == ("cat",)


def test_user_wildcards_disable_rewrite_and_are_literal():
    result = parse_lexical_query("rep*", DEFAULT_BOOSTS)

    assert result.query.wildcard is None
    assert result.query.terms == ("rep",)


@pytest.mark.parametrize("raw", ["", "   ", "!!!", "*?"])
def test_unparseable_queries_report_failure(raw):
    result = parse_lexical_query(raw, DEFAULT_BOOSTS)

    assert not result.ok
    assert result.query is None
    assert result.error


def test_wildcard_scores_use_field_boosts():
    view = _RowsView(
        [
            {"filename": "x.pdf", "content": "alpha"},
            {"filename": "y.txt", "content": "see x.pdf here"},
            {"filename": "z.txt", "content": "nothing relevant"},
        ]
    )

    scores = parse_lexical_query("x.pdf", DEFAULT_BOOSTS).query.score(view)

    assert scores == {0: pytest.approx(10.0), 1: pytest.approx(2.0)}


def test_term_clause_scores_follow_bm25():
    view = _RowsView([{"content": "alpha beta"}])
    query = parse_lexical_query("alpha gamma", {"content": 1.0}, boost=1.0).query

    scores = query.score(view)

    assert scores == {0: pytest.approx(math.log(0.5 / 1.5 + 1.0))}


def test_rare_terms_outscore_common_terms():
    view = _RowsView(
        [
            {"content": "common rare"},
            {"content": "common words"},
            {"content": "common words"},
        ]
    )

    common = parse_lexical_query("common missing", {"content": 1.0}).query.score(view)
    rare = parse_lexical_query("rare missing", {"content": 1.0}).query.score(view)

    assert rare[0] > common[0]


def test_field_boost_multiplies_term_scores():
    view = _RowsView([{"filename": "budget plan", "content": "budget plan"}])
    query = parse_lexical_query("budget plan", {"filename": 5.0, "content": 1.0}, boost=1.0).query
    filename_only = parse_lexical_query("budget plan", {"filename": 5.0}, boost=1.0).query
    content_only = parse_lexical_query("budget plan", {"content": 1.0}, boost=1.0).query

    assert filename_only.score(view)[0] == pytest.approx(5.0 * content_only.score(view)[0])
    assert query.score(view)[0] == pytest.approx(6.0 * content_only.score(view)[0])


def test_field_statistics_average_length_defaults_to_one():
    assert FieldStatistics(doc_count=0, total_length=0).average_length == 1.0
    assert FieldStatistics(doc_count=2, total_length=6).average_length == 3.0

"""
Hybrid lexical + vector search over the committed index.

``HybridSearcher.search`` runs the full query flow:

1. Build a :class:`HybridQuery`. The vector clause is the query embedding, or
   absent when the provider cannot produce one. The lexical clause is the
   parsed multi-field query, or absent when parsing fails. Neither failure
   is raised.
2. With no clause at all, return an empty result without touching the store.
3. Open a fresh snapshot so the search sees the latest commit, score the
   lexical clause (already multiplied by its boost) and the top-k nearest
   vectors (``(1 + cosine) / 2``), and sum both per row.
4. Keep the best ``top_k`` rows, collapse rows sharing a ``parent_id`` onto the
   highest-scoring one, and project each survivor as a :class:`SearchHit`.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

import numpy as np
from numpy.typing import NDArray

from .config import RetrievalConfig
from .embedding import safe_embed
from .interfaces import EmbeddingProvider, IndexSnapshotView
from .lexical import LexicalQuery, parse_lexical_query
from .observability import Observability
from .store import IndexStore
from .types import SearchHit

__all__ = (
    "HybridQuery",
    "HybridSearcher",
    "RequestValidationError",
    "dedupe_by_parent",
)

logger = logging.getLogger(__name__)


class RequestValidationError(ValueError):
    """Raised when the caller submits a malformed request payload.

    Examples:
        >>> raise RequestValidationError("q must be a string")
        Traceback (most recent call last):
        ...
        RequestValidationError: q must be a string
    """


@dataclass(frozen=True)
class HybridQuery:
    """Optional vector and lexical clauses combined with OR."""

    raw: str
    lexical: Optional[LexicalQuery] = None
    vector: Optional[NDArray[np.float32]] = None

    @property
    def empty(self) -> bool:
        return self.lexical is None and self.vector is None


def dedupe_by_parent(hits: Iterable[SearchHit]) -> List[SearchHit]:
    """Keep the first hit per ``parent_id``; hits without one are always kept.

    ``hits`` must already be ordered best first.
    """

    seen = set()
    kept: List[SearchHit] = []
    for hit in hits:
        parent_id = hit.parent_id
        if parent_id is not None:
            if parent_id in seen:
                continue
            seen.add(parent_id)
        kept.append(hit)
    return kept


class HybridSearcher:
    """Execute hybrid queries against an :class:`~DocsToIndex.HybridIndex.store.IndexStore`.

    Args:
        store: Open store; writable or read-only.
        embedder: Embedding capability for queries; ``None`` disables the
            vector clause.
        retrieval: Scoring budgets and boosts.
        observability: Shared metrics/logging facade.

    Examples:
        >>> searcher = HybridSearcher(store, HashingEmbeddingProvider())  # doctest: +SKIP
        >>> [hit.filename for hit in searcher.search("x.pdf")]  # doctest: +SKIP
        ['x.pdf']
    """

    def __init__(
        self,
        store: IndexStore,
        embedder: Optional[EmbeddingProvider] = None,
        *,
        retrieval: Optional[RetrievalConfig] = None,
        observability: Optional[Observability] = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._retrieval = retrieval or RetrievalConfig()
        self._observability = observability or Observability()

    @property
    def retrieval(self) -> RetrievalConfig:
        return self._retrieval

    def build_query(self, query_string: str) -> HybridQuery:
        """Build the vector and lexical clauses for ``query_string``."""
        if not isinstance(query_string, str):
            raise TypeError(f"query must be a string, received {type(query_string).__name__}")
        config = self._retrieval
        vector = safe_embed(self._embedder, query_string, self._store.vector_dim)
        if vector is None and self._embedder is not None:
            self._observability.metrics.increment("dense_unavailable")
        parsed = parse_lexical_query(
            query_string,
            config.field_boosts,
            boost=config.lexical_boost,
            k1=config.bm25_k1,
            b=config.bm25_b,
        )
        if not parsed.ok:
            self._observability.metrics.increment("lexical_parse_failures")
            logger.warning(
                "lexical-parse-failed",
                extra={"event": {"query": query_string, "error": parsed.error}},
            )
        return HybridQuery(raw=query_string, lexical=parsed.query, vector=vector)

    def search(self, query_string: str) -> List[SearchHit]:
        """Return deduplicated hits for ``query_string`` ordered by descending score.

        Returns an empty list when no clause can be built or when the index
        holds no committed rows.
        """
        self._observability.metrics.increment("search_requests")
        with self._observability.trace("search"):
            query = self.build_query(query_string)
            if query.empty:
                return []
            snapshot = self._store.open_reader()
            if snapshot.num_rows == 0:
                return []
            hits = dedupe_by_parent(self._execute(query, snapshot))
        self._observability.metrics.increment("search_results", len(hits))
        logger.debug(
            "search-complete",
            extra={
                "event": {
                    "query": query_string,
                    "results": len(hits),
                    "lexical": query.lexical is not None,
                    "dense": query.vector is not None,
                }
            },
        )
        return hits

    def search_records(self, query_string: str) -> List[Dict[str, Any]]:
        """Return :meth:`search` results as plain dictionaries including ``score``."""
        return [hit.to_record() for hit in self.search(query_string)]

    def _execute(self, query: HybridQuery, snapshot: IndexSnapshotView) -> List[SearchHit]:
        config = self._retrieval
        scores: Dict[int, float] = defaultdict(float)
        if query.lexical is not None:
            for row, score in query.lexical.score(snapshot).items():
                scores[row] += score
        if query.vector is not None:
            for row, cosine in snapshot.knn_search(query.vector, config.dense_top_k):
                scores[row] += (1.0 + cosine) / 2.0
        ranked = sorted(
            ((row, score) for row, score in scores.items() if score > 0.0),
            key=lambda item: (-item[1], item[0]),
        )[: config.top_k]
        return [SearchHit(score=score, fields=snapshot.stored_fields(row)) for row, score in ranked]

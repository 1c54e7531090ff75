"""Formal contracts between the hybrid index core and its collaborators.

Two seams keep the indexing and retrieval flows decoupled from concrete
backends:

- ``EmbeddingProvider`` is the black-box text embedder. ``embed`` returns a
  ``float32`` vector of the index dimensionality or ``None`` when the backend
  cannot produce one; callers treat ``None`` as "no vector" and continue.
  :mod:`DocsToIndex.HybridIndex.embedding` ships reference implementations.
- ``IndexSnapshotView`` is the read surface an index snapshot must expose for
  :class:`~DocsToIndex.HybridIndex.service.HybridSearcher` to run a hybrid
  query: a top-k cosine similarity search over stored vectors, and the term
  dictionary, postings, and length statistics a multi-field boosted text query
  needs. :class:`~DocsToIndex.HybridIndex.store.IndexSnapshot` is the canonical
  implementation; any engine answering these calls is substitutable.

Row identifiers handed out by a snapshot are dense integers in index order and
are only meaningful within that snapshot.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Any, Optional, Protocol, runtime_checkable

import numpy as np
from numpy.typing import NDArray

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .lexical import FieldStatistics

__all__ = ("EmbeddingProvider", "IndexSnapshotView")


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Turn text into a fixed-dimension vector, or report it unavailable.

    Examples:
        >>> from DocsToIndex.HybridIndex.embedding import HashingEmbeddingProvider
        >>> provider: EmbeddingProvider = HashingEmbeddingProvider(dim=8)
        >>> provider.embed("hello").shape
        (8,)
    """

    def embed(self, text: str) -> Optional[NDArray[np.float32]]:
        """Return the embedding of ``text`` or ``None`` when unavailable."""


class IndexSnapshotView(Protocol):
    """Read-only, point-in-time view of committed index rows."""

    @property
    def num_rows(self) -> int:
        """Number of live rows visible in the snapshot."""

    def knn_search(self, vector: NDArray[np.float32], k: int) -> Sequence[tuple[int, float]]:
        """Return up to ``k`` ``(row, cosine)`` pairs, best first.

        Args:
            vector: Query vector of the index dimensionality.
            k: Maximum number of neighbours.

        Returns:
            Pairs sorted by descending cosine similarity, ties by row order.
        """

    def term_postings(self, field: str, term: str) -> Sequence[tuple[int, int]]:
        """Return ``(row, term_frequency)`` for live rows whose ``field`` contains ``term``."""

    def expand_wildcard(self, field: str, pattern: str) -> Iterable[str]:
        """Yield terms of ``field`` fully matching the ``*``/``?`` wildcard ``pattern``."""

    def field_statistics(self, field: str) -> "FieldStatistics":
        """Return document count and total length of ``field`` across live rows."""

    def field_length(self, field: str, row: int) -> int:
        """Return the analysed length of ``field`` in ``row`` (``0`` when absent)."""

    def stored_fields(self, row: int) -> Mapping[str, Any]:
        """Return the stored field bag of ``row``."""

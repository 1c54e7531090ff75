"""
DocsToIndex.HybridIndex chunks parsed documents at two granularities, writes
them into a directory-backed combined text + vector index, and serves hybrid
lexical/vector retrieval over it.

Core modules and how they interrelate:

- ``chunking`` implements the deterministic paragraph/sentence chunker used for
  both parent (context) and child (embedded) chunks.
- ``pipeline`` turns a filename plus its parsed segments into index rows:
  parent chunks, child chunks, embeddings, anchors, and filtered metadata. One
  commit per document makes it visible atomically.
- ``store`` owns the on-disk index: a single writer guarded by ``write.lock``
  over immutable JSONL/FAISS segments and an atomically replaced commit point,
  with point-in-time snapshots for readers.
- ``lexical`` and ``tokenization`` build and score the multi-field boosted OR
  query (Okapi BM25 plus the ``*query*`` wildcard rewrite).
- ``service`` combines the lexical clause with FAISS top-k cosine similarity,
  ranks rows, and collapses hits of the same parent chunk.
- ``embedding`` and ``interfaces`` describe and implement the pluggable
  embedding capability; ``config`` carries settings,
  ``observability`` carries metrics and logging; ``api`` exposes handlers.
"""

from __future__ import annotations

# --- Globals ---

__all__ = (
    "AdaptiveChunker",
    "DocumentIndexAPI",
    "DocumentIndexer",
    "HashingEmbeddingProvider",
    "HybridIndexConfig",
    "HybridIndexConfigManager",
    "HybridSearcher",
    "IndexEntry",
    "IndexStore",
    "IngestError",
    "LockHeldError",
    "Observability",
    "SearchHit",
    "Segment",
    "StoreError",
    "StoreIOError",
    "adaptive_chunk",
)


# --- Re-exports ---

from .api import DocumentIndexAPI
from .chunking import AdaptiveChunker, adaptive_chunk
from .config import HybridIndexConfig, HybridIndexConfigManager
from .embedding import HashingEmbeddingProvider
from .observability import Observability
from .pipeline import DocumentIndexer, IngestError
from .service import HybridSearcher
from .store import IndexStore, LockHeldError, StoreError, StoreIOError
from .types import IndexEntry, SearchHit, Segment

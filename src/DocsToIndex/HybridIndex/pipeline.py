"""
Document indexing: segments to parent chunks to child chunks to index rows.

``DocumentIndexer.index_document`` drives the whole write path for one
document:

1. Buffer a delete of every row previously indexed under the same filename so
   re-indexing replaces a document instead of duplicating it.
2. For each segment, chunk its text with the parent limits. Each parent gets a
   positional identifier ``<filename>#s<segment>p<parent>``, the segment's
   non-reserved metadata, and an anchor derived from that metadata.
3. Chunk every parent again with the child limits, embed each child, and add
   one :class:`~DocsToIndex.HybridIndex.types.IndexEntry` per child. A child
   whose embedding is unavailable is still written and is lexical-only.
4. Commit once after all segments, so the document becomes visible to readers
   atomically. Any failure rolls back the buffered rows and deletes before
   propagating.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

import numpy as np

from .chunking import AdaptiveChunker
from .config import ChunkingConfig
from .embedding import safe_embed
from .interfaces import EmbeddingProvider
from .observability import Observability
from .store import IndexStore
from .types import RESERVED_FIELDS, ChildChunk, IndexEntry, MetadataValue, ParentChunk, Segment

__all__ = (
    "DocumentIndexer",
    "IngestError",
    "IngestMetrics",
    "build_anchor",
    "encode_image_data",
    "filter_metadata",
)

logger = logging.getLogger(__name__)

_ANCHOR_SOURCES = (
    ("page_number", "Page"),
    ("slide_number", "Slide"),
    ("paragraph_index", "Paragraph"),
)


class IngestError(RuntimeError):
    """Raised when a document cannot be indexed because its input is invalid.

    Examples:
        >>> raise IngestError("filename must be a non-empty string")
        Traceback (most recent call last):
        ...
        IngestError: filename must be a non-empty string
    """


def _format_locator(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def build_anchor(metadata: Mapping[str, Any]) -> Optional[str]:
    """Return a human-readable locator for ``metadata``.

    Page number wins over slide number, which wins over paragraph index.

    Examples:
        >>> build_anchor({"slide_number": 2, "page_number": 7})
        'Page 7'
        >>> build_anchor({"section": "Intro"}) is None
        True
    """

    for key, label in _ANCHOR_SOURCES:
        value = metadata.get(key)
        if value is not None and value != "":
            return f"{label} {_format_locator(value)}"
    return None


def filter_metadata(metadata: Optional[Mapping[str, Any]]) -> Dict[str, MetadataValue]:
    """Return the storable subset of ``metadata``.

    Reserved field names and ``None`` values are dropped. Scalars keep their
    type, numpy scalars become Python scalars, and anything else is stored as
    its string form.
    """

    if not metadata:
        return {}
    filtered: Dict[str, MetadataValue] = {}
    for key, value in metadata.items():
        name = str(key)
        if name in RESERVED_FIELDS or value is None:
            continue
        if isinstance(value, np.generic):
            value = value.item()
        if isinstance(value, (str, bool, int, float)):
            filtered[name] = value
        else:
            filtered[name] = str(value)
    return filtered


def encode_image_data(image_data: Optional[Union[str, bytes]]) -> Optional[str]:
    """Return ``image_data`` as storable text; raw bytes are base64-encoded."""

    if image_data is None:
        return None
    if isinstance(image_data, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(image_data)).decode("ascii")
    return str(image_data)


@dataclass
class IngestMetrics:
    """Running totals for one :class:`DocumentIndexer`."""

    documents_indexed: int = 0
    chunks_indexed: int = 0
    embedding_unavailable: int = 0
    documents_deleted: int = 0


class DocumentIndexer:
    """Turn a filename and its parsed segments into committed index rows.

    Args:
        store: Open, writable index store.
        embedder: Embedding capability for child chunks; ``None`` indexes
            lexical-only rows.
        chunking: Parent and child chunk limits.
        observability: Shared metrics/logging facade.

    Examples:
        >>> indexer = DocumentIndexer(store, HashingEmbeddingProvider())  # doctest: +SKIP
        >>> indexer.index_document("notes.txt", [Segment("A. B. C.")])  # doctest: +SKIP
        1
    """

    def __init__(
        self,
        store: IndexStore,
        embedder: Optional[EmbeddingProvider] = None,
        *,
        chunking: Optional[ChunkingConfig] = None,
        observability: Optional[Observability] = None,
    ) -> None:
        config = chunking or ChunkingConfig()
        self._store = store
        self._embedder = embedder
        self._chunking = config
        self._parent_chunker = AdaptiveChunker(
            max_chars=config.parent_max_chars, overlap=config.parent_overlap
        )
        self._child_chunker = AdaptiveChunker(
            max_chars=config.child_max_chars, overlap=config.child_overlap
        )
        self._observability = observability or Observability()
        self._metrics = IngestMetrics()

    @property
    def metrics(self) -> IngestMetrics:
        return self._metrics

    @property
    def store(self) -> IndexStore:
        return self._store

    def build_parents(self, filename: str, segment_index: int, segment: Segment) -> List[ParentChunk]:
        """Chunk one segment with the parent limits."""
        metadata = filter_metadata(segment.metadata)
        anchor = build_anchor(segment.metadata or {})
        return [
            ParentChunk(
                parent_id=f"{filename}#s{segment_index}p{parent_index}",
                text=text,
                source_metadata=metadata,
                anchor=anchor,
            )
            for parent_index, text in enumerate(self._parent_chunker.chunk(segment.content or ""))
        ]

    def build_children(self, parent: ParentChunk) -> List[ChildChunk]:
        """Chunk one parent with the child limits and embed every child."""
        children: List[ChildChunk] = []
        for child_index, text in enumerate(self._child_chunker.chunk(parent.text)):
            vector = safe_embed(self._embedder, text, self._store.vector_dim)
            if vector is None and self._embedder is not None:
                self._metrics.embedding_unavailable += 1
                self._observability.metrics.increment("embedding_unavailable")
            children.append(
                ChildChunk(child_id=child_index, text=text, parent_id=parent.parent_id, vector=vector)
            )
        return children

    def index_document(self, filename: str, segments: Iterable[Segment]) -> int:
        """Index ``segments`` under ``filename`` and commit once.

        Args:
            filename: Document name; rows already indexed under it are replaced.
            segments: Parsed segments in document order.

        Returns:
            Number of child chunks written.

        Raises:
            IngestError: If ``filename`` is empty or a segment is malformed.
            StoreIOError: If writing the document fails; nothing is committed.
        """
        if not isinstance(filename, str) or not filename.strip():
            raise IngestError("filename must be a non-empty string")
        segments = list(segments)
        with self._observability.trace("index_document", filename=filename):
            try:
                self._store.delete_by_filename(filename)
                count = 0
                for segment_index, segment in enumerate(segments):
                    if not isinstance(segment, Segment):
                        raise IngestError(
                            f"segment {segment_index} of {filename} is "
                            f"{type(segment).__name__}, expected Segment"
                        )
                    count += self._index_segment(filename, segment_index, segment)
                self._store.commit()
            except Exception as exc:
                if not self._store.closed and not self._store.read_only:
                    self._store.rollback()
                self._observability.logger.error(
                    "document-index-failed",
                    extra={"event": {"filename": filename, "error": str(exc)}},
                )
                raise
        self._metrics.documents_indexed += 1
        self._metrics.chunks_indexed += count
        self._observability.metrics.increment("documents_indexed")
        self._observability.metrics.increment("chunks_indexed", count)
        logger.info(
            "document-indexed",
            extra={"event": {"filename": filename, "chunks": count, "segments": len(segments)}},
        )
        return count

    def delete_document(self, filename: str) -> None:
        """Remove every row of ``filename`` and commit."""
        if not isinstance(filename, str) or not filename.strip():
            raise IngestError("filename must be a non-empty string")
        with self._observability.trace("delete_document", filename=filename):
            self._store.delete_by_filename(filename)
            self._store.commit()
        self._metrics.documents_deleted += 1
        self._observability.metrics.increment("documents_deleted")

    def _index_segment(self, filename: str, segment_index: int, segment: Segment) -> int:
        image_data = encode_image_data(segment.image_data)
        count = 0
        for parent in self.build_parents(filename, segment_index, segment):
            for child in self.build_children(parent):
                self._store.add(
                    IndexEntry.from_chunks(filename, parent, child, image_data=image_data)
                )
                count += 1
        return count

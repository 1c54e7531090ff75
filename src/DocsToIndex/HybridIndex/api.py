"""
Transport-neutral request handlers for the hybrid index.

``DocumentIndexAPI`` maps three endpoints onto the core:

- ``post_documents``: index a batch of already parsed documents. Every
  document is indexed independently; failures are counted and described in
  the response instead of aborting the batch.
- ``get_search``: run a hybrid search and return the ranked records.
- ``delete_index``: clear the whole index.

Handlers return ``(HTTPStatus, body)`` tuples so any HTTP framework can wrap
them without the core depending on one.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Any, List, Mapping, Optional, Sequence, Tuple

from .config import HybridIndexConfig
from .interfaces import EmbeddingProvider
from .observability import Observability
from .pipeline import DocumentIndexer
from .service import HybridSearcher, RequestValidationError
from .store import IndexStore
from .types import Segment

__all__ = ("DocumentIndexAPI",)

logger = logging.getLogger(__name__)


def _parse_segment(payload: Any, position: int) -> Segment:
    if not isinstance(payload, Mapping):
        raise RequestValidationError(f"segments[{position}] must be an object")
    content = payload.get("content", "")
    if not isinstance(content, str):
        raise RequestValidationError(f"segments[{position}].content must be a string")
    metadata = payload.get("metadata") or {}
    if not isinstance(metadata, Mapping):
        raise RequestValidationError(f"segments[{position}].metadata must be an object")
    image_data = payload.get("image_data")
    if image_data is not None and not isinstance(image_data, (str, bytes)):
        raise RequestValidationError(f"segments[{position}].image_data must be a string")
    return Segment(content=content, image_data=image_data, metadata=dict(metadata))


def _parse_document(payload: Any) -> Tuple[str, List[Segment]]:
    if not isinstance(payload, Mapping):
        raise RequestValidationError("each document must be an object")
    filename = payload.get("filename") or "unknown"
    if not isinstance(filename, str):
        raise RequestValidationError("filename must be a string")
    segments = payload.get("segments", [])
    if not isinstance(segments, Sequence) or isinstance(segments, (str, bytes)):
        raise RequestValidationError(f"{filename}: segments must be a list")
    return filename, [_parse_segment(item, position) for position, item in enumerate(segments)]


class DocumentIndexAPI:
    """Upload, search, and clear handlers over one indexer/searcher pair.

    Attributes:
        _indexer: Write path for documents.
        _searcher: Read path for queries.

    Examples:
        >>> api = DocumentIndexAPI.open(HybridIndexConfig())  # doctest: +SKIP
        >>> status, body = api.get_search({"q": "report.pdf"})  # doctest: +SKIP
        >>> status
        <HTTPStatus.OK: 200>
    """

    def __init__(self, indexer: DocumentIndexer, searcher: HybridSearcher) -> None:
        if not isinstance(indexer, DocumentIndexer):
            raise TypeError("indexer must be a DocumentIndexer instance")
        if not isinstance(searcher, HybridSearcher):
            raise TypeError("searcher must be a HybridSearcher instance")
        self._indexer = indexer
        self._searcher = searcher

    @classmethod
    def open(
        cls,
        config: HybridIndexConfig,
        embedder: Optional[EmbeddingProvider] = None,
        *,
        observability: Optional[Observability] = None,
    ) -> "DocumentIndexAPI":
        """Open the configured store and wire an indexer and searcher onto it.

        Raises:
            LockHeldError: If another writer holds the index directory.
        """
        obs = observability or Observability()
        store = IndexStore.from_config(config.index, observability=obs)
        indexer = DocumentIndexer(store, embedder, chunking=config.chunking, observability=obs)
        searcher = HybridSearcher(store, embedder, retrieval=config.retrieval, observability=obs)
        return cls(indexer, searcher)

    @property
    def store(self) -> IndexStore:
        return self._indexer.store

    def close(self) -> None:
        self.store.close()

    def post_documents(self, payload: Mapping[str, Any]) -> Tuple[int, Mapping[str, Any]]:
        """Handle ``POST /documents``.

        Args:
            payload: ``{"documents": [{"filename": str, "segments": [{"content",
                "image_data"?, "metadata"?}]}]}``.

        Returns:
            ``200`` with ``success``, ``successCount``, ``failCount`` and, when
            any document failed, an ``error`` string naming each failure.
            ``400`` when the payload itself is malformed.
        """
        if not isinstance(payload, Mapping):
            return HTTPStatus.BAD_REQUEST, {"error": "payload must be an object"}
        documents = payload.get("documents")
        if not isinstance(documents, Sequence) or isinstance(documents, (str, bytes)):
            return HTTPStatus.BAD_REQUEST, {"error": "documents must be a list"}

        success_count = 0
        failures: List[str] = []
        for position, document in enumerate(documents):
            name = (
                str(document.get("filename") or "unknown")
                if isinstance(document, Mapping)
                else f"documents[{position}]"
            )
            try:
                filename, segments = _parse_document(document)
                self._indexer.index_document(filename, segments)
            except Exception as exc:
                logger.exception(
                    "document-upload-failed",
                    extra={"event": {"filename": name, "error": str(exc)}},
                )
                failures.append(f"{name}: {str(exc) or type(exc).__name__}; ")
                continue
            success_count += 1

        body = {
            "success": not failures,
            "successCount": success_count,
            "failCount": len(failures),
        }
        if failures:
            body["error"] = "".join(failures)
        return HTTPStatus.OK, body

    def get_search(self, params: Mapping[str, Any]) -> Tuple[int, Any]:
        """Handle ``GET /search?q=...`` returning the ranked result records."""
        try:
            query = params["q"]
            if not isinstance(query, str):
                raise RequestValidationError("q must be a string")
        except (KeyError, TypeError, RequestValidationError) as exc:
            return HTTPStatus.BAD_REQUEST, {"error": str(exc)}
        try:
            records = self._searcher.search_records(query)
        except Exception as exc:
            logger.exception("search-failed", extra={"event": {"query": query, "error": str(exc)}})
            return HTTPStatus.INTERNAL_SERVER_ERROR, {"error": str(exc)}
        return HTTPStatus.OK, records

    def delete_index(self) -> Tuple[int, Mapping[str, Any]]:
        """Handle ``DELETE /index`` by removing every row."""
        try:
            self.store.delete_all()
        except Exception as exc:
            logger.exception("index-clear-failed", extra={"event": {"error": str(exc)}})
            return HTTPStatus.INTERNAL_SERVER_ERROR, {"success": False, "error": str(exc)}
        return HTTPStatus.OK, {"success": True, "message": "Index cleared"}

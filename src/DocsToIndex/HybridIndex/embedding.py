"""Reference embedding providers for the hybrid index.

Production deployments inject their own model-backed provider. The classes
here cover the remaining cases:

- ``HashingEmbeddingProvider`` derives a deterministic dense vector from
  SHA-256 token hashes. Each token hashes to a 32-byte block that is tiled to
  the configured dimension, centred around zero, summed over the text, and
  L2-normalised so that inner products equal cosine similarity. It needs no
  model download, which makes it the default for tests and local runs.
- ``NullEmbeddingProvider`` always reports the backend as unavailable; every
  entry it touches is lexical-only.
- ``CallableEmbeddingProvider`` adapts any ``text -> sequence of floats``
  callable and validates the returned shape.

:func:`safe_embed` is the single entry point used by the indexer and the
searcher. It converts provider failures and malformed vectors into ``None``
after logging an ``embedding-unavailable`` event.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Callable, Optional, Sequence

import numpy as np
from numpy.typing import NDArray

from .interfaces import EmbeddingProvider
from .tokenization import tokenize

__all__ = (
    "CallableEmbeddingProvider",
    "HashingEmbeddingProvider",
    "NullEmbeddingProvider",
    "safe_embed",
)

logger = logging.getLogger(__name__)


class HashingEmbeddingProvider:
    """Deterministic token-hashing embedder.

    Examples:
        >>> provider = HashingEmbeddingProvider(dim=16)
        >>> vector = provider.embed("hybrid search")
        >>> round(float(np.linalg.norm(vector)), 5)
        1.0
    """

    def __init__(self, *, dim: int = 128) -> None:
        if dim <= 0:
            raise ValueError("dim must be positive")
        self._dim = dim

    @property
    def dim(self) -> int:
        return self._dim

    def embed(self, text: str) -> Optional[NDArray[np.float32]]:
        tokens = tokenize(text)
        if not tokens:
            return None
        aggregate = np.zeros(self._dim, dtype=np.float32)
        for token in tokens:
            aggregate += self._hash_to_vector(token)
        norm = float(np.linalg.norm(aggregate))
        if norm == 0.0:
            return None
        return aggregate / norm

    def _hash_to_vector(self, token: str) -> NDArray[np.float32]:
        digest = hashlib.sha256(token.encode("utf-8")).digest()
        block = np.frombuffer(digest, dtype=np.uint8)
        repeat = int(np.ceil(self._dim / block.size))
        tiled = np.tile(block, repeat)[: self._dim]
        return tiled.astype(np.float32) / 127.5 - 1.0


class NullEmbeddingProvider:
    """Provider whose backend is never available."""

    def embed(self, text: str) -> Optional[NDArray[np.float32]]:
        return None


class CallableEmbeddingProvider:
    """Wrap ``fn(text) -> sequence of floats | None`` as an :class:`EmbeddingProvider`.

    Args:
        fn: Embedding callable, typically a thin closure over a model client.
        dim: Expected vector dimensionality.
    """

    def __init__(self, fn: Callable[[str], Optional[Sequence[float]]], *, dim: int) -> None:
        if dim <= 0:
            raise ValueError("dim must be positive")
        self._fn = fn
        self._dim = dim

    @property
    def dim(self) -> int:
        return self._dim

    def embed(self, text: str) -> Optional[NDArray[np.float32]]:
        raw = self._fn(text)
        if raw is None:
            return None
        vector = np.asarray(raw, dtype=np.float32).reshape(-1)
        if vector.shape[0] != self._dim:
            raise ValueError(
                f"embedding has dimension {vector.shape[0]}, expected {self._dim}"
            )
        return vector


def safe_embed(
    provider: Optional[EmbeddingProvider], text: str, dim: int
) -> Optional[NDArray[np.float32]]:
    """Embed ``text`` and return a contiguous ``float32`` vector or ``None``.

    Provider exceptions, non-finite values, zero vectors, and vectors whose
    size differs from ``dim`` are logged and reported as unavailable.
    """

    if provider is None:
        return None
    try:
        raw = provider.embed(text)
    except Exception as exc:
        logger.warning(
            "embedding-unavailable",
            extra={"event": {"reason": "provider-error", "error": str(exc)}},
        )
        return None
    if raw is None:
        return None
    vector = np.ascontiguousarray(np.asarray(raw, dtype=np.float32).reshape(-1))
    if vector.shape[0] != dim:
        logger.warning(
            "embedding-unavailable",
            extra={
                "event": {
                    "reason": "dimension-mismatch",
                    "expected": dim,
                    "actual": int(vector.shape[0]),
                }
            },
        )
        return None
    if not np.all(np.isfinite(vector)) or not np.any(vector):
        logger.warning("embedding-unavailable", extra={"event": {"reason": "degenerate-vector"}})
        return None
    return vector

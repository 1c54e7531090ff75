"""Reference embedding providers and the ``safe_embed`` guard."""

from __future__ import annotations

import logging

import numpy as np
import pytest

from DocsToIndex.HybridIndex.embedding import (
    CallableEmbeddingProvider,
    HashingEmbeddingProvider,
    NullEmbeddingProvider,
    safe_embed,
)
from DocsToIndex.HybridIndex.interfaces import EmbeddingProvider


def test_hashing_provider_is_deterministic_and_normalised():
    provider = HashingEmbeddingProvider(dim=32)

    first = provider.embed("Hybrid retrieval engines")
    second = provider.embed("hybrid RETRIEVAL engines")

    assert first.shape == (32,)
    assert first.dtype == np.float32
    assert np.allclose(first, second)
    assert float(np.linalg.norm(first)) == pytest.approx(1.0, abs=1e-5)


def test_hashing_provider_separates_different_texts():
    provider = HashingEmbeddingProvider(dim=64)

    same = float(np.dot(provider.embed("solar panels"), provider.embed("solar panels")))
    other = float(np.dot(provider.embed("solar panels"), provider.embed("medieval poetry")))

    assert same > other


def test_hashing_provider_returns_none_without_tokens():
    assert HashingEmbeddingProvider(dim=8).embed("  ...  ") is None


def test_providers_satisfy_protocol():
    assert isinstance(HashingEmbeddingProvider(), EmbeddingProvider)
    assert isinstance(NullEmbeddingProvider(), EmbeddingProvider)
    assert NullEmbeddingProvider().embed("text") is None


def test_callable_provider_validates_dimension():
    provider = CallableEmbeddingProvider(lambda text: [0.5] * 4, dim=4)
    assert provider.embed("text").tolist() == [0.5] * 4

    wrong = CallableEmbeddingProvider(lambda text: [0.5] * 3, dim=4)
    with pytest.raises(ValueError):
        wrong.embed("text")

    assert CallableEmbeddingProvider(lambda text: None, dim=4).embed("text") is None


def test_safe_embed_converts_failures_to_none(caplog):
    caplog.set_level(logging.WARNING)

    def _boom(text):
        raise ConnectionError("model server down")

    assert safe_embed(CallableEmbeddingProvider(_boom, dim=4), "text", 4) is None
    assert safe_embed(HashingEmbeddingProvider(dim=8), "text", 4) is None
    assert safe_embed(CallableEmbeddingProvider(lambda t: [0.0] * 4, dim=4), "text", 4) is None
    assert safe_embed(None, "text", 4) is None

    events = [record.event for record in caplog.records if record.message == "embedding-unavailable"]
    assert [event["reason"] for event in events] == [
        "provider-error",
        "dimension-mismatch",
        "degenerate-vector",
    ]


def test_safe_embed_returns_contiguous_float32():
    vector = safe_embed(CallableEmbeddingProvider(lambda t: [1, 2, 3], dim=3), "text", 3)

    assert vector.dtype == np.float32
    assert vector.flags["C_CONTIGUOUS"]

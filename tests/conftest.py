"""
Pytest Configuration

Adds ``src`` to ``sys.path`` so the suite runs against the working tree, and
provides shared fixtures for index directories, stores, and embedders.

Usage:
    pytest tests/hybrid_index
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Iterator

import pytest

# --- Globals ---

ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from DocsToIndex.HybridIndex.embedding import HashingEmbeddingProvider  # noqa: E402
from DocsToIndex.HybridIndex.observability import Observability  # noqa: E402
from DocsToIndex.HybridIndex.store import IndexStore  # noqa: E402

TEST_VECTOR_DIM = 16


# --- Fixtures ---


@pytest.fixture
def index_path(tmp_path: Path) -> Path:
    """Directory for a fresh on-disk index."""

    return tmp_path / "index"


@pytest.fixture
def observability() -> Observability:
    return Observability()


@pytest.fixture
def store(index_path: Path, observability: Observability) -> Iterator[IndexStore]:
    """Writable store closed automatically at teardown."""

    handle = IndexStore.open(index_path, vector_dim=TEST_VECTOR_DIM, observability=observability)
    try:
        yield handle
    finally:
        handle.close()


@pytest.fixture
def embedder() -> HashingEmbeddingProvider:
    return HashingEmbeddingProvider(dim=TEST_VECTOR_DIM)

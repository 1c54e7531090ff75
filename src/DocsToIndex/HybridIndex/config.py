"""Configuration surface area for the DocsToIndex hybrid index.

The dataclasses defined here describe every user-tunable aspect of the system:

- ``ChunkingConfig`` governs the two chunking passes performed by
  :mod:`DocsToIndex.HybridIndex.pipeline`. Parent limits bound the context that
  is handed back to readers; child limits bound the fragments that are embedded.
- ``IndexConfig`` locates the on-disk index directory, fixes the vector
  dimensionality shared by every segment, and controls how long ``open()`` waits
  for the writer lock.
- ``RetrievalConfig`` encodes the scoring budget of
  :class:`~DocsToIndex.HybridIndex.service.HybridSearcher`: hit limits, kNN depth,
  per-field boosts, the flat lexical boost, and BM25 parameters.
- ``HybridIndexConfig`` groups the three sections into a single snapshot.

``HybridIndexConfigManager`` is a thread-safe facade for loading configuration
files. It supports JSON *and* YAML and caches the current config while
providing atomic reloads.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from threading import RLock
from typing import Any

# --- Globals ---

__all__ = (
    "ChunkingConfig",
    "HybridIndexConfig",
    "HybridIndexConfigManager",
    "IndexConfig",
    "RetrievalConfig",
)


def _default_field_boosts() -> dict[str, float]:
    return {"filename": 5.0, "content": 1.0, "child_content": 1.0}


# --- Public Classes ---


@dataclass(frozen=True)
class ChunkingConfig:
    """Character limits for the parent and child chunking passes.

    Key fields:
    - ``parent_max_chars`` / ``parent_overlap``: coarse chunks returned as context (800 / 100).
    - ``child_max_chars`` / ``child_overlap``: fine chunks that get embedded (300 / 50).

    Examples:
        >>> config = ChunkingConfig(parent_max_chars=1000, child_max_chars=250)
        >>> config.parent_overlap
        100
    """

    parent_max_chars: int = 800
    parent_overlap: int = 100
    child_max_chars: int = 300
    child_overlap: int = 50

    def __post_init__(self) -> None:
        for level in ("parent", "child"):
            max_chars = getattr(self, f"{level}_max_chars")
            overlap = getattr(self, f"{level}_overlap")
            if max_chars <= 0:
                raise ValueError(f"ChunkingConfig.{level}_max_chars must be positive")
            if overlap < 0 or overlap >= max_chars:
                raise ValueError(
                    f"ChunkingConfig.{level}_overlap must be within [0, {level}_max_chars)"
                )


@dataclass(frozen=True)
class IndexConfig:
    """Location and shape of the persistent index.

    Key fields:
    - ``path``: Directory holding the commit point, segments, and ``write.lock``.
    - ``vector_dim``: Fixed dimensionality of every stored vector. Changing it
      requires rebuilding the whole index.
    - ``lock_timeout``: Seconds to wait for the writer lock (``0`` fails at once).
    - ``max_segments``: Segment count above which a commit merges segments (8).

    Examples:
        >>> IndexConfig(path="/tmp/index", vector_dim=384).vector_dim
        384
    """

    path: str = "hybrid_index"
    vector_dim: int = 128
    lock_timeout: float = 0.0
    max_segments: int = 8

    def __post_init__(self) -> None:
        if self.vector_dim <= 0:
            raise ValueError("IndexConfig.vector_dim must be positive")
        if self.lock_timeout < 0:
            raise ValueError("IndexConfig.lock_timeout must be non-negative")
        if self.max_segments <= 0:
            raise ValueError("IndexConfig.max_segments must be positive")


@dataclass(frozen=True)
class RetrievalConfig:
    """Scoring and budget knobs for hybrid search.

    Key fields:
    - ``top_k``: Rows retrieved from the combined query before parent dedupe (20).
    - ``dense_top_k``: Nearest neighbours contributed by the vector clause (20).
    - ``lexical_boost``: Flat multiplier applied to the whole lexical clause (2.0).
    - ``field_boosts``: Per-field weights of the multi-field lexical query.
    - ``bm25_k1`` / ``bm25_b``: Okapi BM25 hyperparameters for term clauses.

    Examples:
        >>> RetrievalConfig().field_boosts["filename"]
        5.0
    """

    top_k: int = 20
    dense_top_k: int = 20
    lexical_boost: float = 2.0
    field_boosts: Mapping[str, float] = field(default_factory=_default_field_boosts)
    bm25_k1: float = 1.2
    bm25_b: float = 0.75

    def __post_init__(self) -> None:
        if self.top_k <= 0:
            raise ValueError("RetrievalConfig.top_k must be positive")
        if self.dense_top_k <= 0:
            raise ValueError("RetrievalConfig.dense_top_k must be positive")
        if not isinstance(self.field_boosts, Mapping) or not self.field_boosts:
            raise ValueError("RetrievalConfig.field_boosts must be a non-empty mapping")
        if any(float(boost) < 0 for boost in self.field_boosts.values()):
            raise ValueError("RetrievalConfig.field_boosts must be non-negative")


@dataclass(frozen=True)
class HybridIndexConfig:
    """Complete configuration for indexing and hybrid retrieval.

    Components:
    - ``chunking``: Parent/child chunking limits.
    - ``index``: On-disk index location and vector shape.
    - ``retrieval``: Query construction and scoring budgets.

    Examples:
        >>> config = HybridIndexConfig(index=IndexConfig(path="/tmp/idx"))
        >>> config.chunking.child_max_chars
        300
    """

    chunking: ChunkingConfig = ChunkingConfig()
    index: IndexConfig = IndexConfig()
    retrieval: RetrievalConfig = RetrievalConfig()

    @staticmethod
    def from_dict(payload: Mapping[str, Any]) -> HybridIndexConfig:
        """Construct a config object from a dictionary payload.

        Args:
            payload: Nested mapping containing ``chunking``, ``index``, and
                ``retrieval`` sections compatible with dataclass fields.

        Returns:
            Fully populated ``HybridIndexConfig`` instance.
        """
        if not isinstance(payload, Mapping):
            raise ValueError(
                "HybridIndexConfig.from_dict expected a mapping payload, "
                f"received {type(payload).__name__}"
            )

        def coerce_section(name: str) -> dict[str, Any]:
            section = payload.get(name)
            if section is None:
                return {}
            if not isinstance(section, Mapping):
                raise ValueError(
                    f"HybridIndexConfig.{name} must be a mapping or null, "
                    f"received {type(section).__name__}"
                )
            return dict(section)

        retrieval_payload = coerce_section("retrieval")
        boosts = retrieval_payload.get("field_boosts")
        if isinstance(boosts, Mapping):
            retrieval_payload["field_boosts"] = {
                str(name): float(value) for name, value in boosts.items()
            }
        return HybridIndexConfig(
            chunking=ChunkingConfig(**coerce_section("chunking")),
            index=IndexConfig(**coerce_section("index")),
            retrieval=RetrievalConfig(**retrieval_payload),
        )


class HybridIndexConfigManager:
    """File-backed configuration manager with reload support.

    Internals:
    - ``_path``: Path to the JSON/YAML configuration file.
    - ``_lock``: Threading lock guarding concurrent reloads.
    - ``_config``: Cached :class:`HybridIndexConfig` instance.

    Examples:
        >>> manager = HybridIndexConfigManager(Path("config.yaml"))  # doctest: +SKIP
        >>> isinstance(manager.get(), HybridIndexConfig)  # doctest: +SKIP
        True
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = RLock()
        self._config = self._load()

    @property
    def path(self) -> Path:
        return self._path

    def get(self) -> HybridIndexConfig:
        """Return the currently cached configuration."""
        with self._lock:
            return self._config

    def reload(self) -> HybridIndexConfig:
        """Reload configuration from disk, replacing the cached instance.

        Raises:
            FileNotFoundError: If the configuration path is missing.
            ValueError: If the config file is invalid JSON or YAML.
        """
        with self._lock:
            self._config = self._load()
            return self._config

    def _load(self) -> HybridIndexConfig:
        if not self._path.exists():
            raise FileNotFoundError(f"Configuration file {self._path} not found")
        raw = self._path.read_text(encoding="utf-8")
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            payload = self._load_yaml(raw)
        return HybridIndexConfig.from_dict(payload)

    def _load_yaml(self, raw: str) -> dict[str, Any]:
        import yaml

        try:
            data = yaml.safe_load(raw)
        except yaml.YAMLError as exc:
            raise ValueError(f"Failed to parse YAML configuration at {self._path}: {exc}") from exc
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError("YAML configuration must define a mapping")
        return data

"""
Directory-backed hybrid index: stored rows, text postings, and FAISS vectors.

On-disk layout
--------------
``write.lock``
    :class:`filelock.FileLock` held by the single writer for its lifetime.
``segments.json``
    The commit point: format version, generation, vector dimensionality and
    the list of live segments with their tombstoned row ordinals. It is
    replaced atomically, so readers observe either the previous or the next
    commit and never a mixture.
``seg_<generation>.jsonl``
    Stored fields of one immutable segment, one JSON object per row.
``seg_<generation>.faiss``
    Serialised ``IndexIDMap2(IndexFlatIP)`` of the segment's L2-normalised
    vectors, keyed by row ordinal. Rows without a vector are absent. The file
    is omitted when no row of the segment carries a vector.

Write path
----------
:meth:`IndexStore.add` and :meth:`IndexStore.delete_by_filename` only buffer
changes in memory. :meth:`IndexStore.commit` writes one new segment for the
buffered rows, records tombstones for deleted rows of older segments, and then
publishes a new commit point. Nothing is visible to readers before that last
step. :meth:`IndexStore.rollback` discards the buffer.

When a commit would leave more than ``max_segments`` segments, the contiguous
run of segments with the fewest live rows is rewritten as one
``seg_<generation>_merged`` segment in the same commit. Tombstoned rows of the
merged segments are dropped and row order is preserved.

Read path
---------
:meth:`IndexStore.open_reader` loads the latest commit point from disk and
returns an :class:`IndexSnapshot`. Loaded segments are immutable and cached
until a newer commit stops referencing them; text postings are built lazily
per field. A directory with no commit point yields an empty snapshot.
"""

from __future__ import annotations

import heapq
import json
import logging
import os
import re
import threading
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import faiss
import numpy as np
from filelock import FileLock, Timeout
from numpy.typing import NDArray

from .config import IndexConfig
from .lexical import FieldStatistics
from .observability import Observability
from .tokenization import analyze_field, wildcard_to_regex
from .types import IndexEntry

# --- Globals ---

__all__ = (
    "CommitPoint",
    "IndexClosedError",
    "IndexSnapshot",
    "IndexStats",
    "IndexStore",
    "LockHeldError",
    "SegmentInfo",
    "StoreError",
    "StoreIOError",
)

logger = logging.getLogger(__name__)
logging.getLogger("filelock").setLevel(logging.INFO)

COMMIT_POINT_NAME = "segments.json"
LOCK_FILE_NAME = "write.lock"
FORMAT_VERSION = 1
DEFAULT_MAX_SEGMENTS = 8

_SEGMENT_FILE = re.compile(r"^seg_\d+(?:_merged)?\.(?:jsonl|faiss)$")
_TEMP_FILE = re.compile(r"\.tmp\.[0-9a-f]{32}$")
_READER_ATTEMPTS = 5


# --- Errors ---


class StoreError(RuntimeError):
    """Base class for index store failures."""


class LockHeldError(StoreError):
    """Raised when another writer already holds the index directory."""


class IndexClosedError(StoreError):
    """Raised when operating on a closed store, or writing to a read-only one."""


class StoreIOError(StoreError):
    """Raised when segment or commit point I/O fails."""


# --- Commit point ---


@dataclass(frozen=True)
class SegmentInfo:
    """Commit point entry describing one immutable segment."""

    name: str
    rows: int
    deleted: frozenset = field(default_factory=frozenset)

    @property
    def live_rows(self) -> int:
        return self.rows - len(self.deleted)

    def to_json(self) -> Dict[str, Any]:
        return {"name": self.name, "rows": self.rows, "deleted": sorted(self.deleted)}

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "SegmentInfo":
        return cls(
            name=str(payload["name"]),
            rows=int(payload["rows"]),
            deleted=frozenset(int(ordinal) for ordinal in payload.get("deleted", ())),
        )


@dataclass(frozen=True)
class CommitPoint:
    """Published state of the index: generation plus live segments."""

    generation: int
    vector_dim: int
    segments: Tuple[SegmentInfo, ...] = ()

    @property
    def num_rows(self) -> int:
        return sum(info.live_rows for info in self.segments)

    def file_names(self) -> set:
        names = set()
        for info in self.segments:
            names.add(f"{info.name}.jsonl")
            names.add(f"{info.name}.faiss")
        return names

    def to_json(self) -> Dict[str, Any]:
        return {
            "format": FORMAT_VERSION,
            "generation": self.generation,
            "vector_dim": self.vector_dim,
            "segments": [info.to_json() for info in self.segments],
        }

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "CommitPoint":
        version = payload.get("format")
        if version != FORMAT_VERSION:
            raise StoreError(f"Unsupported index format {version!r}; expected {FORMAT_VERSION}")
        return cls(
            generation=int(payload["generation"]),
            vector_dim=int(payload["vector_dim"]),
            segments=tuple(SegmentInfo.from_json(item) for item in payload.get("segments", ())),
        )


@dataclass(frozen=True)
class IndexStats:
    """Summary returned by :meth:`IndexStore.stats`."""

    rows: int
    segments: int
    generation: int
    pending_rows: int
    vector_dim: int
    read_only: bool


# --- Loaded segments ---


@dataclass
class _FieldIndex:
    postings: Dict[str, List[Tuple[int, int]]]
    lengths: List[int]


class _LoadedSegment:
    """Immutable in-memory view of one segment's rows and vectors."""

    def __init__(self, name: str, rows: List[Dict[str, Any]], vectors: Optional[Any]) -> None:
        self.name = name
        self.rows = rows
        self.vectors = vectors
        self._fields: Dict[str, _FieldIndex] = {}
        self._lock = threading.Lock()

    def field_index(self, field_name: str) -> _FieldIndex:
        with self._lock:
            cached = self._fields.get(field_name)
            if cached is None:
                cached = self._build_field_index(field_name)
                self._fields[field_name] = cached
            return cached

    def _build_field_index(self, field_name: str) -> _FieldIndex:
        postings: Dict[str, List[Tuple[int, int]]] = {}
        lengths: List[int] = []
        for ordinal, row in enumerate(self.rows):
            value = row.get(field_name)
            if not isinstance(value, str):
                lengths.append(0)
                continue
            frequencies, length = analyze_field(value)
            lengths.append(length)
            for term, tf in frequencies.items():
                postings.setdefault(term, []).append((ordinal, tf))
        return _FieldIndex(postings=postings, lengths=lengths)


@dataclass
class _SnapshotPart:
    segment: _LoadedSegment
    deleted: frozenset
    rows: Dict[int, int]


# --- Snapshot ---


class IndexSnapshot:
    """Point-in-time, read-only view over the committed rows of an index.

    Rows are numbered densely in index order: segments in commit order, rows
    in insertion order within a segment, tombstoned rows skipped.

    Examples:
        >>> snapshot = IndexSnapshot.empty(128)
        >>> snapshot.num_rows
        0
    """

    def __init__(
        self,
        commit: Optional[CommitPoint],
        segments: Sequence[_LoadedSegment],
        *,
        vector_dim: int,
    ) -> None:
        self._generation = commit.generation if commit is not None else 0
        self._vector_dim = vector_dim
        self._parts: List[_SnapshotPart] = []
        self._locations: List[Tuple[_LoadedSegment, int]] = []
        self._statistics: Dict[str, FieldStatistics] = {}
        infos = commit.segments if commit is not None else ()
        for info, segment in zip(infos, segments):
            mapping: Dict[int, int] = {}
            for ordinal in range(len(segment.rows)):
                if ordinal in info.deleted:
                    continue
                mapping[ordinal] = len(self._locations)
                self._locations.append((segment, ordinal))
            self._parts.append(_SnapshotPart(segment=segment, deleted=info.deleted, rows=mapping))

    @classmethod
    def empty(cls, vector_dim: int) -> "IndexSnapshot":
        return cls(None, (), vector_dim=vector_dim)

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def num_rows(self) -> int:
        return len(self._locations)

    def stored_fields(self, row: int) -> Mapping[str, Any]:
        segment, ordinal = self._locations[row]
        return dict(segment.rows[ordinal])

    def knn_search(self, vector: NDArray[np.float32], k: int) -> List[Tuple[int, float]]:
        """Return up to ``k`` live rows by cosine similarity to ``vector``."""

        if k <= 0 or not self._locations:
            return []
        query = np.ascontiguousarray(np.asarray(vector, dtype=np.float32).reshape(1, -1))
        if query.shape[1] != self._vector_dim:
            raise ValueError(
                f"query vector has dimension {query.shape[1]}, expected {self._vector_dim}"
            )
        query = query.copy()
        faiss.normalize_L2(query)
        candidates: List[Tuple[int, float]] = []
        for part in self._parts:
            index = part.segment.vectors
            if index is None or index.ntotal == 0:
                continue
            depth = min(int(index.ntotal), k + len(part.deleted))
            scores, ids = index.search(query, depth)
            for score, ordinal in zip(scores[0], ids[0]):
                if ordinal < 0:
                    continue
                row = part.rows.get(int(ordinal))
                if row is not None:
                    candidates.append((row, float(score)))
        return heapq.nsmallest(k, candidates, key=lambda item: (-item[1], item[0]))

    def term_postings(self, field_name: str, term: str) -> List[Tuple[int, int]]:
        postings: List[Tuple[int, int]] = []
        for part in self._parts:
            for ordinal, tf in part.segment.field_index(field_name).postings.get(term, ()):
                row = part.rows.get(ordinal)
                if row is not None:
                    postings.append((row, tf))
        return postings

    def expand_wildcard(self, field_name: str, pattern: str) -> Iterator[str]:
        regex = wildcard_to_regex(pattern)
        seen = set()
        for part in self._parts:
            for term in part.segment.field_index(field_name).postings:
                if term not in seen and regex.fullmatch(term):
                    seen.add(term)
        yield from sorted(seen)

    def field_statistics(self, field_name: str) -> FieldStatistics:
        cached = self._statistics.get(field_name)
        if cached is not None:
            return cached
        doc_count = 0
        total_length = 0
        for part in self._parts:
            lengths = part.segment.field_index(field_name).lengths
            for ordinal in part.rows:
                length = lengths[ordinal]
                if length > 0:
                    doc_count += 1
                    total_length += length
        stats = FieldStatistics(doc_count=doc_count, total_length=total_length)
        self._statistics[field_name] = stats
        return stats

    def field_length(self, field_name: str, row: int) -> int:
        segment, ordinal = self._locations[row]
        return segment.field_index(field_name).lengths[ordinal]


# --- Store ---


def _atomic_write(path: Path, payload: bytes) -> None:
    tmp = path.with_name(f"{path.name}.tmp.{uuid.uuid4().hex}")
    try:
        with tmp.open("wb") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp, path)
    except Exception:
        tmp.unlink(missing_ok=True)
        raise


def _encode_rows(rows: Sequence[Mapping[str, Any]]) -> bytes:
    lines = [json.dumps(dict(row), ensure_ascii=False) for row in rows]
    return ("\n".join(lines) + "\n").encode("utf-8")


def _segment_vectors(segment: _LoadedSegment) -> Dict[int, NDArray[np.float32]]:
    """Return the stored vectors of ``segment`` keyed by row ordinal."""

    index = segment.vectors
    if index is None or index.ntotal == 0:
        return {}
    base = index.index if hasattr(index, "index") else index
    ordinals = np.asarray(faiss.vector_to_array(index.id_map), dtype=np.int64)
    if base.ntotal != len(ordinals):
        raise StoreError(f"FAISS id_map of segment {segment.name} is out of sync")
    matrix = np.asarray(base.reconstruct_n(0, base.ntotal), dtype=np.float32)
    return {int(ordinal): matrix[position] for position, ordinal in enumerate(ordinals)}


class IndexStore:
    """Single-writer, multi-reader persistent index.

    Use :meth:`open` (or :meth:`from_config`) rather than the constructor.
    Writer handles hold ``write.lock`` until :meth:`close`; a second writer on
    the same directory fails with :class:`LockHeldError`. Read-only handles
    skip the lock and only allow :meth:`open_reader` and :meth:`stats`.

    Mutations are serialised by an internal lock; readers never block writers.

    Examples:
        >>> store = IndexStore.open("/tmp/hybrid-index", vector_dim=8)  # doctest: +SKIP
        >>> store.open_reader().num_rows  # doctest: +SKIP
        0
        >>> store.close()  # doctest: +SKIP
    """

    def __init__(
        self,
        path: Union[str, Path],
        *,
        vector_dim: int,
        read_only: bool,
        max_segments: int = DEFAULT_MAX_SEGMENTS,
        observability: Optional[Observability] = None,
    ) -> None:
        if vector_dim <= 0:
            raise ValueError("vector_dim must be positive")
        if max_segments <= 0:
            raise ValueError("max_segments must be positive")
        self._path = Path(path)
        self._vector_dim = vector_dim
        self._read_only = read_only
        self._max_segments = max_segments
        self._observability = observability or Observability()
        self._file_lock: Optional[FileLock] = None
        self._mutex = threading.RLock()
        self._cache_lock = threading.Lock()
        self._segment_cache: Dict[str, _LoadedSegment] = {}
        self._commit: Optional[CommitPoint] = None
        self._pending: List[IndexEntry] = []
        self._pending_deletes: List[Tuple[str, int]] = []
        self._closed = True

    @classmethod
    def open(
        cls,
        path: Union[str, Path],
        *,
        vector_dim: int = 128,
        read_only: bool = False,
        lock_timeout: float = 0.0,
        max_segments: int = DEFAULT_MAX_SEGMENTS,
        observability: Optional[Observability] = None,
    ) -> "IndexStore":
        """Open the index directory at ``path``.

        Args:
            path: Index directory; created for writers when missing.
            vector_dim: Dimensionality every stored vector must have.
            read_only: Skip the writer lock and reject mutations.
            lock_timeout: Seconds to wait for ``write.lock`` (``0`` tries once).
            max_segments: Segment count above which a commit merges segments.
            observability: Shared metrics/logging facade.

        Returns:
            An open store.

        Raises:
            LockHeldError: If another writer holds the directory.
            StoreError: If the committed index uses a different ``vector_dim``
                or an unknown format.
            StoreIOError: If the directory or commit point cannot be read.
        """
        store = cls(
            path,
            vector_dim=vector_dim,
            read_only=read_only,
            max_segments=max_segments,
            observability=observability,
        )
        store._open(lock_timeout)
        return store

    @classmethod
    def from_config(
        cls,
        config: IndexConfig,
        *,
        read_only: bool = False,
        observability: Optional[Observability] = None,
    ) -> "IndexStore":
        return cls.open(
            config.path,
            vector_dim=config.vector_dim,
            read_only=read_only,
            lock_timeout=config.lock_timeout,
            max_segments=config.max_segments,
            observability=observability,
        )

    # --- Lifecycle ---

    @property
    def path(self) -> Path:
        return self._path

    @property
    def vector_dim(self) -> int:
        return self._vector_dim

    @property
    def read_only(self) -> bool:
        return self._read_only

    @property
    def max_segments(self) -> int:
        return self._max_segments

    @property
    def closed(self) -> bool:
        return self._closed

    def _open(self, lock_timeout: float) -> None:
        if not self._read_only:
            try:
                self._path.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise StoreIOError(f"Cannot create index directory {self._path}: {exc}") from exc
            file_lock = FileLock(str(self._path / LOCK_FILE_NAME))
            try:
                file_lock.acquire(timeout=lock_timeout)
            except Timeout as exc:
                raise LockHeldError(
                    f"Index at {self._path} is locked by another writer"
                ) from exc
            self._file_lock = file_lock
        try:
            self._commit = self._read_commit_point()
            if not self._read_only:
                self._remove_unreferenced_files()
        except BaseException:
            self._release_lock()
            raise
        self._closed = False
        logger.info(
            "index-open",
            extra={
                "event": {
                    "path": str(self._path),
                    "read_only": self._read_only,
                    "generation": self._commit.generation if self._commit else 0,
                    "rows": self._commit.num_rows if self._commit else 0,
                }
            },
        )

    def close(self) -> None:
        """Commit buffered changes and release the writer lock.

        Calling ``close`` on an already closed store is a no-op.
        """
        with self._mutex:
            if self._closed:
                return
            try:
                if not self._read_only and (self._pending or self._pending_deletes):
                    self.commit()
            finally:
                self._closed = True
                self._release_lock()
                with self._cache_lock:
                    self._segment_cache.clear()
                logger.info("index-close", extra={"event": {"path": str(self._path)}})

    def __enter__(self) -> "IndexStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None and not self._closed and not self._read_only:
            self.rollback()
        self.close()

    def _release_lock(self) -> None:
        if self._file_lock is not None:
            self._file_lock.release()
            self._file_lock = None

    def _ensure_open(self) -> None:
        if self._closed:
            raise IndexClosedError(f"Index at {self._path} is closed")

    def _ensure_writable(self) -> None:
        self._ensure_open()
        if self._read_only:
            raise IndexClosedError(f"Index at {self._path} was opened read-only")

    # --- Writes ---

    def add(self, entry: IndexEntry) -> None:
        """Buffer ``entry`` for the next :meth:`commit`.

        Raises:
            ValueError: If the entry's vector does not match ``vector_dim``.
        """
        if entry.vector is not None:
            shape = np.shape(entry.vector)
            if shape != (self._vector_dim,):
                raise ValueError(
                    f"vector for {entry.parent_id} has shape {shape}, "
                    f"expected ({self._vector_dim},)"
                )
        with self._mutex:
            self._ensure_writable()
            self._pending.append(entry)

    def delete_by_filename(self, filename: str) -> None:
        """Buffer deletion of every row of ``filename`` committed or added so far.

        Rows added after this call are unaffected, so a delete followed by
        re-adding the same document replaces it in a single commit.
        """
        with self._mutex:
            self._ensure_writable()
            self._pending_deletes.append((filename, len(self._pending)))

    def rollback(self) -> int:
        """Discard buffered rows and deletes; return the number of rows dropped."""
        with self._mutex:
            self._ensure_writable()
            dropped = len(self._pending)
            self._pending.clear()
            self._pending_deletes.clear()
        if dropped:
            logger.info("index-rollback", extra={"event": {"dropped_rows": dropped}})
        return dropped

    def commit(self) -> int:
        """Publish buffered changes atomically and return the new generation.

        Raises:
            StoreIOError: If writing the segment or the commit point fails.
                Buffered changes are kept so the caller can retry or roll back.
        """
        with self._mutex:
            self._ensure_writable()
            if self._commit is not None and not self._pending and not self._pending_deletes:
                return self._commit.generation
            base = self._commit or CommitPoint(generation=0, vector_dim=self._vector_dim)
            generation = base.generation + 1
            with self._observability.trace("index_commit"):
                try:
                    segments = self._apply_deletes(base.segments)
                    survivors = self._surviving_pending()
                    if survivors:
                        name = f"seg_{generation:08d}"
                        self._write_segment(name, survivors)
                        segments.append(SegmentInfo(name=name, rows=len(survivors)))
                    segments = self._merge_segments(segments, generation)
                    commit = CommitPoint(
                        generation=generation,
                        vector_dim=self._vector_dim,
                        segments=tuple(segments),
                    )
                    self._write_commit_point(commit)
                except OSError as exc:
                    raise StoreIOError(f"Commit to {self._path} failed: {exc}") from exc
            self._commit = commit
            added = len(survivors)
            self._pending.clear()
            self._pending_deletes.clear()
            self._remove_unreferenced_files()
        self._observability.metrics.increment("index_commits")
        logger.info(
            "index-commit",
            extra={
                "event": {
                    "generation": generation,
                    "added_rows": added,
                    "rows": commit.num_rows,
                    "segments": len(commit.segments),
                }
            },
        )
        return generation

    def delete_all(self) -> None:
        """Remove every row and commit immediately; the store stays open."""
        with self._mutex:
            self._ensure_writable()
            generation = (self._commit.generation if self._commit else 0) + 1
            commit = CommitPoint(generation=generation, vector_dim=self._vector_dim)
            try:
                self._write_commit_point(commit)
            except OSError as exc:
                raise StoreIOError(f"Clearing {self._path} failed: {exc}") from exc
            self._commit = commit
            self._pending.clear()
            self._pending_deletes.clear()
            self._remove_unreferenced_files()
        self._observability.metrics.increment("index_delete_all")
        logger.info("index-delete-all", extra={"event": {"generation": generation}})

    def _surviving_pending(self) -> List[IndexEntry]:
        survivors: List[IndexEntry] = []
        for position, entry in enumerate(self._pending):
            if any(
                filename == entry.filename and position < upto
                for filename, upto in self._pending_deletes
            ):
                continue
            survivors.append(entry)
        return survivors

    def _apply_deletes(self, segments: Sequence[SegmentInfo]) -> List[SegmentInfo]:
        filenames = {filename for filename, _ in self._pending_deletes}
        if not filenames:
            return list(segments)
        updated: List[SegmentInfo] = []
        for info in segments:
            loaded = self._segment(info.name)
            deleted = set(info.deleted)
            for ordinal, row in enumerate(loaded.rows):
                if row.get("filename") in filenames:
                    deleted.add(ordinal)
            if len(deleted) >= info.rows:
                continue
            updated.append(SegmentInfo(name=info.name, rows=info.rows, deleted=frozenset(deleted)))
        return updated

    def _merge_window(self, segments: Sequence[SegmentInfo]) -> Optional[Tuple[int, int]]:
        """Return the contiguous ``[start, stop)`` run of segments to merge, if any.

        The run is just long enough to bring the count back to ``max_segments``
        and is the one holding the fewest live rows; ties go to newer segments.
        """
        width = len(segments) - self._max_segments + 1
        if width < 2:
            return None
        best: Optional[Tuple[int, int]] = None
        for start in range(len(segments) - width + 1):
            live = sum(info.live_rows for info in segments[start : start + width])
            if best is None or live <= best[0]:
                best = (live, start)
        if best is None:
            return None
        return best[1], best[1] + width

    def _merge_segments(self, segments: List[SegmentInfo], generation: int) -> List[SegmentInfo]:
        window = self._merge_window(segments)
        if window is None:
            return segments
        start, stop = window
        rows: List[Mapping[str, Any]] = []
        vectors: Dict[int, NDArray[np.float32]] = {}
        for info in segments[start:stop]:
            loaded = self._segment(info.name)
            stored = _segment_vectors(loaded)
            for ordinal, row in enumerate(loaded.rows):
                if ordinal in info.deleted:
                    continue
                vector = stored.get(ordinal)
                if vector is not None:
                    vectors[len(rows)] = vector
                rows.append(row)
        name = f"seg_{generation:08d}_merged"
        self._write_segment_files(name, rows, vectors)
        logger.info(
            "index-merge",
            extra={
                "event": {
                    "segment": name,
                    "merged": [info.name for info in segments[start:stop]],
                    "rows": len(rows),
                }
            },
        )
        return segments[:start] + [SegmentInfo(name=name, rows=len(rows))] + segments[stop:]

    def _write_segment(self, name: str, entries: Sequence[IndexEntry]) -> None:
        rows = [entry.stored_fields() for entry in entries]
        vectors = {
            ordinal: np.asarray(entry.vector, dtype=np.float32)
            for ordinal, entry in enumerate(entries)
            if entry.vector is not None
        }
        self._write_segment_files(name, rows, vectors)

    def _write_segment_files(
        self,
        name: str,
        rows: Sequence[Mapping[str, Any]],
        vectors: Mapping[int, NDArray[np.float32]],
    ) -> None:
        _atomic_write(self._path / f"{name}.jsonl", _encode_rows(rows))
        index = None
        if vectors:
            ordinals = sorted(vectors)
            matrix = np.ascontiguousarray(
                np.vstack([np.asarray(vectors[ordinal], dtype=np.float32) for ordinal in ordinals])
            )
            faiss.normalize_L2(matrix)
            index = faiss.IndexIDMap2(faiss.IndexFlatIP(self._vector_dim))
            index.add_with_ids(matrix, np.asarray(ordinals, dtype=np.int64))
            payload = bytes(faiss.serialize_index(index))
            _atomic_write(self._path / f"{name}.faiss", payload)
        # A retried commit rewrites the same name, so replace any cached copy.
        loaded = _LoadedSegment(name, [dict(row) for row in rows], index)
        with self._cache_lock:
            self._segment_cache[name] = loaded

    def _write_commit_point(self, commit: CommitPoint) -> None:
        payload = json.dumps(commit.to_json(), indent=2).encode("utf-8")
        _atomic_write(self._path / COMMIT_POINT_NAME, payload)

    def _remove_unreferenced_files(self) -> None:
        referenced = self._commit.file_names() if self._commit else set()
        try:
            candidates = list(self._path.iterdir())
        except FileNotFoundError:
            return
        for candidate in candidates:
            name = candidate.name
            if name in referenced:
                continue
            if not (_SEGMENT_FILE.match(name) or _TEMP_FILE.search(name)):
                continue
            try:
                candidate.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning(
                    "index-file-remove-failed",
                    extra={"event": {"file": name, "error": str(exc)}},
                )
                continue
            logger.debug("index-file-removed", extra={"event": {"file": name}})
        self._prune_segment_cache(self._commit)

    def _prune_segment_cache(self, commit: Optional[CommitPoint]) -> None:
        """Drop cached segments that ``commit`` no longer references."""
        live = {info.name for info in commit.segments} if commit is not None else set()
        with self._cache_lock:
            for stale in set(self._segment_cache) - live:
                del self._segment_cache[stale]

    # --- Reads ---

    def open_reader(self) -> IndexSnapshot:
        """Return a snapshot of the latest commit on disk.

        An index that was never committed yields an empty snapshot.

        Raises:
            IndexClosedError: If the store is closed.
            StoreIOError: If committed files cannot be read.
        """
        self._ensure_open()
        for _ in range(_READER_ATTEMPTS):
            commit = self._read_commit_point()
            if commit is None:
                self._prune_segment_cache(None)
                return IndexSnapshot.empty(self._vector_dim)
            try:
                segments = [self._segment(info.name) for info in commit.segments]
            except FileNotFoundError:
                # A concurrent commit removed files of an older generation.
                continue
            except OSError as exc:
                raise StoreIOError(f"Cannot read segments of {self._path}: {exc}") from exc
            self._prune_segment_cache(commit)
            return IndexSnapshot(commit, segments, vector_dim=self._vector_dim)
        raise StoreIOError(f"Commit point of {self._path} changed during every read attempt")

    def stats(self) -> IndexStats:
        with self._mutex:
            self._ensure_open()
            commit = self._commit if not self._read_only else self._read_commit_point()
            return IndexStats(
                rows=commit.num_rows if commit else 0,
                segments=len(commit.segments) if commit else 0,
                generation=commit.generation if commit else 0,
                pending_rows=len(self._pending),
                vector_dim=self._vector_dim,
                read_only=self._read_only,
            )

    def _read_commit_point(self) -> Optional[CommitPoint]:
        path = self._path / COMMIT_POINT_NAME
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StoreIOError(f"Cannot read commit point {path}: {exc}") from exc
        try:
            commit = CommitPoint.from_json(json.loads(raw.decode("utf-8")))
        except (ValueError, KeyError, TypeError) as exc:
            raise StoreIOError(f"Corrupt commit point {path}: {exc}") from exc
        if commit.vector_dim != self._vector_dim:
            raise StoreError(
                f"Index at {self._path} stores {commit.vector_dim}-dimensional vectors; "
                f"configured dimension is {self._vector_dim}. Rebuild the index."
            )
        return commit

    def _segment(self, name: str) -> _LoadedSegment:
        with self._cache_lock:
            cached = self._segment_cache.get(name)
        if cached is not None:
            return cached
        loaded = self._load_segment(name)
        with self._cache_lock:
            return self._segment_cache.setdefault(name, loaded)

    def _load_segment(self, name: str) -> _LoadedSegment:
        rows_path = self._path / f"{name}.jsonl"
        with rows_path.open("r", encoding="utf-8") as handle:
            rows = [json.loads(line) for line in handle if line.strip()]
        vectors = None
        vectors_path = self._path / f"{name}.faiss"
        if vectors_path.exists():
            payload = vectors_path.read_bytes()
            vectors = faiss.deserialize_index(np.frombuffer(payload, dtype=np.uint8))
        return _LoadedSegment(name, rows, vectors)

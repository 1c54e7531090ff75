"""Lifecycle, commit visibility, and persistence of ``IndexStore``."""

from __future__ import annotations

import json
import logging

import numpy as np
import pytest

from DocsToIndex.HybridIndex import store as store_module
from DocsToIndex.HybridIndex.config import IndexConfig
from DocsToIndex.HybridIndex.store import (
    IndexClosedError,
    IndexStore,
    LockHeldError,
    StoreError,
    StoreIOError,
)
from DocsToIndex.HybridIndex.types import IndexEntry

DIM = 16


def _unit(index: int, dim: int = DIM) -> np.ndarray:
    vector = np.zeros(dim, dtype=np.float32)
    vector[index] = 1.0
    return vector


def _entry(filename: str, parent: int = 0, child: int = 0, *, vector=None, text="hello world"):
    return IndexEntry(
        filename=filename,
        parent_id=f"{filename}#s0p{parent}",
        content=text,
        child_content=text,
        chunk_id=child,
        vector=vector,
    )


def test_fresh_store_has_empty_snapshot(store):
    snapshot = store.open_reader()

    assert snapshot.num_rows == 0
    assert snapshot.knn_search(_unit(0), 5) == []
    assert store.stats().rows == 0
    assert store.stats().generation == 0


def test_rows_become_visible_only_after_commit(store):
    store.add(_entry("a.txt"))

    assert store.open_reader().num_rows == 0
    assert store.stats().pending_rows == 1

    generation = store.commit()

    snapshot = store.open_reader()
    assert generation == 1
    assert snapshot.num_rows == 1
    assert snapshot.stored_fields(0)["filename"] == "a.txt"
    assert store.stats().pending_rows == 0


def test_commit_without_changes_keeps_generation(store):
    store.add(_entry("a.txt"))
    first = store.commit()

    assert store.commit() == first


def test_empty_commit_initialises_commit_point(store, index_path):
    store.commit()

    payload = json.loads((index_path / "segments.json").read_text())
    assert payload["generation"] == 1
    assert payload["vector_dim"] == DIM
    assert payload["segments"] == []


def test_second_writer_is_rejected(store, index_path):
    with pytest.raises(LockHeldError):
        IndexStore.open(index_path, vector_dim=DIM)


def test_lock_is_released_on_close(index_path):
    first = IndexStore.open(index_path, vector_dim=DIM)
    first.close()

    second = IndexStore.open(index_path, vector_dim=DIM)
    second.close()


def test_close_is_idempotent_and_blocks_further_use(index_path):
    handle = IndexStore.open(index_path, vector_dim=DIM)
    handle.close()
    handle.close()

    assert handle.closed
    with pytest.raises(IndexClosedError):
        handle.open_reader()
    with pytest.raises(IndexClosedError):
        handle.add(_entry("a.txt"))


def test_close_commits_buffered_rows(index_path):
    with IndexStore.open(index_path, vector_dim=DIM) as handle:
        handle.add(_entry("a.txt"))

    reader = IndexStore.open(index_path, vector_dim=DIM, read_only=True)
    assert reader.open_reader().num_rows == 1
    reader.close()


def test_read_only_store_sees_writer_commits_and_rejects_writes(store, index_path):
    reader = IndexStore.open(index_path, vector_dim=DIM, read_only=True)
    assert reader.open_reader().num_rows == 0

    store.add(_entry("a.txt"))
    store.commit()

    assert reader.open_reader().num_rows == 1
    assert reader.stats().rows == 1
    with pytest.raises(IndexClosedError):
        reader.add(_entry("b.txt"))
    reader.close()


def test_read_only_store_on_missing_directory_is_empty(tmp_path):
    reader = IndexStore.open(tmp_path / "never-created", vector_dim=DIM, read_only=True)

    assert reader.open_reader().num_rows == 0
    reader.close()


def test_rows_and_vectors_survive_reopen(index_path):
    with IndexStore.open(index_path, vector_dim=DIM) as handle:
        handle.add(_entry("a.txt", vector=_unit(0)))
        handle.add(_entry("b.txt", vector=_unit(1)))
        handle.add(_entry("c.txt"))
        handle.commit()

    with IndexStore.open(index_path, vector_dim=DIM) as handle:
        snapshot = handle.open_reader()
        assert snapshot.num_rows == 3
        neighbours = snapshot.knn_search(_unit(1), 5)
        assert neighbours[0] == (1, pytest.approx(1.0))
        assert {row for row, _ in neighbours} == {0, 1}


def test_knn_orders_by_cosine(store):
    mixed = (_unit(0) + _unit(1)) / np.sqrt(2.0)
    store.add(_entry("a.txt", vector=_unit(0) * 3.0))
    store.add(_entry("b.txt", vector=_unit(1)))
    store.add(_entry("c.txt", vector=mixed.astype(np.float32)))
    store.commit()

    neighbours = store.open_reader().knn_search(_unit(0), 2)

    assert [row for row, _ in neighbours] == [0, 2]
    assert neighbours[0][1] == pytest.approx(1.0, abs=1e-5)
    assert neighbours[1][1] == pytest.approx(np.sqrt(0.5), abs=1e-5)


def test_vector_shape_is_validated(store):
    with pytest.raises(ValueError):
        store.add(_entry("a.txt", vector=np.ones(DIM + 1, dtype=np.float32)))


def test_delete_by_filename_then_readd_replaces_in_one_commit(store):
    store.add(_entry("a.txt", text="old text", vector=_unit(0)))
    store.add(_entry("b.txt", text="other"))
    store.commit()

    store.delete_by_filename("a.txt")
    store.add(_entry("a.txt", text="new text", vector=_unit(2)))
    store.commit()

    snapshot = store.open_reader()
    contents = sorted(snapshot.stored_fields(row)["content"] for row in range(snapshot.num_rows))
    assert contents == ["new text", "other"]
    neighbours = snapshot.knn_search(_unit(0), 5)
    assert all(snapshot.stored_fields(row)["content"] != "old text" for row, _ in neighbours)


def test_delete_applies_to_rows_buffered_before_it(store):
    store.add(_entry("a.txt", text="first draft"))
    store.delete_by_filename("a.txt")
    store.add(_entry("a.txt", text="second draft"))
    store.commit()

    snapshot = store.open_reader()
    assert snapshot.num_rows == 1
    assert snapshot.stored_fields(0)["content"] == "second draft"


def test_fully_deleted_segments_are_dropped(store, index_path):
    store.add(_entry("a.txt", vector=_unit(0)))
    store.commit()
    store.delete_by_filename("a.txt")
    store.commit()

    assert store.stats().segments == 0
    assert not list(index_path.glob("seg_*"))


def test_rollback_discards_buffered_changes(store):
    store.add(_entry("a.txt"))
    store.commit()

    store.delete_by_filename("a.txt")
    store.add(_entry("b.txt"))
    assert store.rollback() == 1
    store.commit()

    snapshot = store.open_reader()
    assert snapshot.num_rows == 1
    assert snapshot.stored_fields(0)["filename"] == "a.txt"


def test_delete_all_clears_rows_and_files(store, index_path):
    store.add(_entry("a.txt", vector=_unit(0)))
    store.add(_entry("b.txt"))
    store.commit()

    store.delete_all()

    assert store.open_reader().num_rows == 0
    assert not store.closed
    assert not list(index_path.glob("seg_*"))
    store.add(_entry("c.txt"))
    store.commit()
    assert store.open_reader().num_rows == 1


def test_vector_dim_mismatch_requires_rebuild(index_path):
    with IndexStore.open(index_path, vector_dim=DIM) as handle:
        handle.commit()

    with pytest.raises(StoreError, match="Rebuild"):
        IndexStore.open(index_path, vector_dim=DIM * 2)

    # the failed open released the writer lock
    IndexStore.open(index_path, vector_dim=DIM).close()


def test_commit_failure_raises_store_io_error_and_keeps_buffer(store, monkeypatch):
    store.add(_entry("a.txt"))

    def _fail(path, payload):
        raise OSError("disk full")

    monkeypatch.setattr(store_module, "_atomic_write", _fail)

    with pytest.raises(StoreIOError, match="disk full"):
        store.commit()

    assert store.stats().pending_rows == 1
    assert store.open_reader().num_rows == 0
    store.rollback()


def test_writer_removes_orphaned_segment_files(index_path):
    index_path.mkdir(parents=True)
    orphan = index_path / "seg_00000042.jsonl"
    orphan.write_text("{}\n")
    unrelated = index_path / "notes.md"
    unrelated.write_text("keep me")

    IndexStore.open(index_path, vector_dim=DIM).close()

    assert not orphan.exists()
    assert unrelated.exists()


def test_text_postings_skip_deleted_rows(store):
    store.add(_entry("a.txt", text="shared term"))
    store.add(_entry("b.txt", text="shared term"))
    store.commit()
    store.delete_by_filename("a.txt")
    store.commit()

    snapshot = store.open_reader()
    postings = snapshot.term_postings("content", "shared")
    assert postings == [(0, 1)]
    assert snapshot.stored_fields(0)["filename"] == "b.txt"
    assert snapshot.field_statistics("content").doc_count == 1


def test_from_config_uses_index_settings(tmp_path):
    config = IndexConfig(path=str(tmp_path / "configured"), vector_dim=8, max_segments=4)

    handle = IndexStore.from_config(config)
    try:
        assert handle.vector_dim == 8
        assert handle.max_segments == 4
        assert handle.path == tmp_path / "configured"
    finally:
        handle.close()


def test_commit_logs_structured_event(store, caplog):
    caplog.set_level(logging.INFO, logger=store_module.logger.name)
    store.add(_entry("a.txt"))
    store.commit()

    records = [record for record in caplog.records if record.message == "index-commit"]
    assert records
    assert records[-1].event["added_rows"] == 1
    assert records[-1].event["generation"] == 1


def test_read_only_cache_drops_segments_of_old_commits(store, index_path):
    reader = IndexStore.open(index_path, vector_dim=DIM, read_only=True)
    try:
        for round_index in range(5):
            store.add(_entry(f"r{round_index}.txt", vector=_unit(0)))
            store.commit()
            held = reader.open_reader()
            assert held.num_rows == 1
            assert len(reader._segment_cache) == 1

            store.delete_all()

            assert reader.open_reader().num_rows == 0
            assert len(reader._segment_cache) == 0
            assert held.stored_fields(0)["filename"] == f"r{round_index}.txt"
    finally:
        reader.close()


def _ramp(index: int) -> np.ndarray:
    vector = _unit(0)
    vector[1] = 0.3 * index
    return vector


def _fill(handle):
    for index in range(10):
        handle.add(_entry(f"doc{index}.txt", vector=_ramp(index), text=f"shared word{index}"))
        handle.commit()
    handle.delete_by_filename("doc3.txt")
    handle.commit()


def test_commits_merge_segments_beyond_limit(tmp_path, caplog):
    caplog.set_level(logging.INFO, logger=store_module.logger.name)
    merged = IndexStore.open(tmp_path / "merged", vector_dim=DIM, max_segments=3)
    plain = IndexStore.open(tmp_path / "plain", vector_dim=DIM, max_segments=100)
    try:
        _fill(merged)
        _fill(plain)

        assert merged.stats().segments <= 3
        assert plain.stats().segments == 9
        assert any(record.message == "index-merge" for record in caplog.records)
        assert len(list((tmp_path / "merged").glob("seg_*"))) == 2 * merged.stats().segments

        left, right = merged.open_reader(), plain.open_reader()
        assert left.num_rows == right.num_rows == 9
        assert [left.stored_fields(row) for row in range(9)] == [
            right.stored_fields(row) for row in range(9)
        ]
        assert left.term_postings("content", "shared") == right.term_postings("content", "shared")
        for query in (_unit(0), _unit(1), _ramp(5)):
            expected = right.knn_search(query, 3)
            actual = left.knn_search(query, 3)
            assert [row for row, _ in actual] == [row for row, _ in expected]
            assert [score for _, score in actual] == pytest.approx(
                [score for _, score in expected], abs=1e-6
            )
    finally:
        merged.close()
        plain.close()

    with IndexStore.open(tmp_path / "merged", vector_dim=DIM, read_only=True) as reopened:
        snapshot = reopened.open_reader()
        assert snapshot.num_rows == 9
        [(row, score)] = snapshot.knn_search(_unit(0), 1)
        assert snapshot.stored_fields(row)["filename"] == "doc0.txt"
        assert score == pytest.approx(1.0, abs=1e-6)

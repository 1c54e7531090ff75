"""Request handlers for upload, search, and clear."""

from __future__ import annotations

from http import HTTPStatus

import pytest

from DocsToIndex.HybridIndex.api import DocumentIndexAPI
from DocsToIndex.HybridIndex.config import HybridIndexConfig, IndexConfig
from DocsToIndex.HybridIndex.embedding import HashingEmbeddingProvider
from DocsToIndex.HybridIndex.pipeline import DocumentIndexer
from DocsToIndex.HybridIndex.service import HybridSearcher
from DocsToIndex.HybridIndex.store import LockHeldError


@pytest.fixture
def api(tmp_path):
    config = HybridIndexConfig(index=IndexConfig(path=str(tmp_path / "api-index"), vector_dim=16))
    handle = DocumentIndexAPI.open(config, HashingEmbeddingProvider(dim=16))
    try:
        yield handle
    finally:
        handle.close()


def _document(filename, *texts, **metadata):
    return {
        "filename": filename,
        "segments": [{"content": text, "metadata": dict(metadata)} for text in texts],
    }


def test_upload_then_search_round_trip(api):
    status, body = api.post_documents(
        {"documents": [_document("x.pdf", "Budget overview.", page_number=1)]}
    )

    assert status == HTTPStatus.OK
    assert body == {"success": True, "successCount": 1, "failCount": 0}

    status, records = api.get_search({"q": "x.pdf"})
    assert status == HTTPStatus.OK
    assert records[0]["filename"] == "x.pdf"
    assert records[0]["anchor"] == "Page 1"
    assert isinstance(records[0]["score"], float)


def test_upload_reports_per_document_failures(api):
    status, body = api.post_documents(
        {
            "documents": [
                _document("good.txt", "Fine text."),
                {"filename": "bad.txt", "segments": "not a list"},
                {"filename": "worse.txt", "segments": [{"content": 42}]},
            ]
        }
    )

    assert status == HTTPStatus.OK
    assert body["success"] is False
    assert body["successCount"] == 1
    assert body["failCount"] == 2
    assert "bad.txt: " in body["error"]
    assert "worse.txt: " in body["error"]
    assert api.store.stats().rows == 1


@pytest.mark.parametrize("payload", [None, {}, {"documents": "x"}])
def test_upload_rejects_malformed_payload(api, payload):
    status, body = api.post_documents(payload)

    assert status == HTTPStatus.BAD_REQUEST
    assert "error" in body


@pytest.mark.parametrize("params", [{}, {"q": 5}, None])
def test_search_rejects_missing_query(api, params):
    status, body = api.get_search(params)

    assert status == HTTPStatus.BAD_REQUEST
    assert "error" in body


def test_search_on_empty_index_returns_empty_list(api):
    assert api.get_search({"q": "anything"}) == (HTTPStatus.OK, [])


def test_delete_index_clears_documents(api):
    api.post_documents({"documents": [_document("a.txt", "Alpha beta.")]})

    status, body = api.delete_index()

    assert status == HTTPStatus.OK
    assert body["success"] is True
    assert api.get_search({"q": "alpha beta"}) == (HTTPStatus.OK, [])


def test_open_holds_writer_lock(api):
    with pytest.raises(LockHeldError):
        DocumentIndexAPI.open(
            HybridIndexConfig(index=IndexConfig(path=str(api.store.path), vector_dim=16))
        )


def test_constructor_validates_collaborators(store):
    with pytest.raises(TypeError):
        DocumentIndexAPI(object(), HybridSearcher(store))
    with pytest.raises(TypeError):
        DocumentIndexAPI(DocumentIndexer(store), object())

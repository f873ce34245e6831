# tests/test_chroma_store.py

import numpy as np
import pytest

from passage_rag.domain.errors import ConfigurationError, EmbeddingDimensionError
from passage_rag.domain.models import IndexedPoint
from passage_rag.infrastructure.chroma_store import ChromaVectorStore


DIM = 4


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture
def store(tmp_path) -> ChromaVectorStore:
    """Fresh ChromaVectorStore backed by a temp directory for each test."""
    return ChromaVectorStore(
        vector_size=DIM,
        collection_name="test_passages",
        persist_directory=str(tmp_path / "chroma_test"),
    )


def _point(pid: str, document_id: str, index: int, vector) -> IndexedPoint:
    return IndexedPoint(
        point_id=pid,
        vector=list(vector),
        document_id=document_id,
        title=f"Title {document_id}",
        passage_index=index,
        passage_text=f"passage {index} of {document_id}",
    )


def _unit_points(document_id: str = "doc-a") -> list:
    """DIM points with orthogonal unit vectors."""
    eye = np.eye(DIM, dtype=np.float32)
    return [_point(f"{document_id}-p{i}", document_id, i, eye[i]) for i in range(DIM)]


# ── Tests ─────────────────────────────────────────────────────────────────────

def test_ensure_collection_is_idempotent(store):
    store.ensure_collection()
    store.ensure_collection()

    assert store.list_collections().count("test_passages") == 1
    assert store.count() == 0


def test_upsert_persists_every_point(store):
    store.upsert(_unit_points())
    assert store.count() == DIM


def test_upsert_same_ids_replaces_points(store):
    store.upsert(_unit_points())
    store.upsert(_unit_points())
    assert store.count() == DIM


def test_upsert_rejects_wrong_dimensionality(store):
    bad = _point("x", "doc-a", 0, [1.0, 0.0])
    with pytest.raises(EmbeddingDimensionError):
        store.upsert([bad])
    assert store.count() == 0


def test_search_on_empty_collection_returns_nothing(store):
    assert store.search(np.ones(DIM, dtype=np.float32), limit=5) == []


def test_search_limit_larger_than_collection(store):
    store.upsert(_unit_points())
    hits = store.search(np.ones(DIM, dtype=np.float32), limit=50)
    assert len(hits) == DIM


def test_search_top_hit_is_most_similar_with_cosine_score(store):
    store.upsert(_unit_points())

    hits = store.search(np.array([1.0, 0.1, 0.0, 0.0], dtype=np.float32), limit=3)

    assert len(hits) == 3
    top = hits[0]
    assert top.passage_id == "doc-a-p0"
    assert top.document_id == "doc-a"
    assert top.title == "Title doc-a"
    assert top.passage_index == 0
    assert top.passage_text == "passage 0 of doc-a"
    assert top.score == pytest.approx(1.0 / np.sqrt(1.01), abs=1e-3)


def test_search_scores_are_non_increasing(store):
    store.upsert(_unit_points())
    hits = store.search(np.array([0.9, 0.5, 0.2, 0.1], dtype=np.float32), limit=4)

    scores = [h.score for h in hits]
    assert scores == sorted(scores, reverse=True)
    assert all(-1.0 - 1e-6 <= s <= 1.0 + 1e-6 for s in scores)


def test_delete_by_document_removes_only_that_document(store):
    store.upsert(_unit_points("doc-a") + [_point("b0", "doc-b", 0, [1.0, 1.0, 0.0, 0.0])])

    store.delete_by_document("doc-a")

    hits = store.search(np.ones(DIM, dtype=np.float32), limit=10)
    assert [h.document_id for h in hits] == ["doc-b"]


def test_delete_unknown_document_is_a_noop(store):
    store.upsert(_unit_points())
    store.delete_by_document("never-indexed")
    store.delete_by_document("never-indexed")
    assert store.count() == DIM


def test_reopening_with_other_vector_size_fails(tmp_path):
    path = str(tmp_path / "chroma_dim")
    ChromaVectorStore(vector_size=DIM, persist_directory=path).ensure_collection()

    with pytest.raises(ConfigurationError, match="vector size"):
        ChromaVectorStore(vector_size=DIM * 2, persist_directory=path).ensure_collection()


def test_persist_path_that_is_a_file_is_rejected(tmp_path):
    path = tmp_path / "not_a_dir"
    path.write_text("x")

    with pytest.raises(ConfigurationError, match="is a file"):
        ChromaVectorStore(vector_size=DIM, persist_directory=str(path))

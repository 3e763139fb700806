"""
Test suite for the Knowledge Store

This module tests:
- Cosine similarity properties
- Document insertion and duplicate handling
- Similarity search ordering, thresholds and tie-breaks
- Binary persistence round trips and corrupt file recovery
"""

import os
import struct
from datetime import datetime, timezone

import numpy as np
import pytest

from rag_assistant.binary_codec import HEADER
from rag_assistant.exceptions import DuplicateDocumentError, InvalidVectorDimensionError
from rag_assistant.knowledge_store import MAGIC, KnowledgeStore
from rag_assistant.models import Document, EmbeddingVector, cosine_similarity


@pytest.fixture
def store_path(temp_dir):
    return os.path.join(temp_dir, "knowledge_base.bin")


@pytest.fixture
def store(store_path):
    return KnowledgeStore(store_path)


def make_doc(doc_id, content=None, source="test"):
    return Document(content=content or f"content of {doc_id}", source=source, id=doc_id)


class TestCosineSimilarity:
    """Test cases for cosine similarity"""

    def test_self_similarity_is_one(self):
        rng = np.random.default_rng(7)
        for _ in range(10):
            v = rng.normal(size=16)
            assert cosine_similarity(v, v) == pytest.approx(1.0)

    def test_zero_vector_yields_zero(self):
        assert cosine_similarity([0.0, 0.0, 0.0], [0.0, 0.0, 0.0]) == 0.0
        assert cosine_similarity([0.0, 0.0, 0.0], [1.0, 2.0, 3.0]) == 0.0

    def test_symmetry(self):
        rng = np.random.default_rng(11)
        a, b = rng.normal(size=8), rng.normal(size=8)
        assert cosine_similarity(a, b) == cosine_similarity(b, a)

    def test_orthogonal_and_opposite(self):
        assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
        assert cosine_similarity([1, 0], [-1, 0]) == pytest.approx(-1.0)

    def test_dimension_mismatch_raises(self):
        with pytest.raises(InvalidVectorDimensionError) as exc_info:
            cosine_similarity([1, 0, 0], [1, 0])
        assert exc_info.value.expected == 3
        assert exc_info.value.actual == 2

    def test_norm_cached_at_construction(self):
        vector = EmbeddingVector("a", [3.0, 4.0])
        assert vector.norm == pytest.approx(5.0)
        assert vector.dimension == 2


class TestKnowledgeStore:
    """Test cases for document storage and search"""

    def test_add_document(self, store):
        assert store.add_document(make_doc("a"), [1, 0, 0]) is True
        assert store.get_document_count() == 1
        assert store.get_document("a").embedding.dimension == 3

    def test_search_orders_by_similarity(self, store):
        store.add_document(make_doc("a"), [1, 0, 0])
        store.add_document(make_doc("b"), [0, 1, 0])

        results = store.search_similar([1, 0, 0], top_k=2, threshold=0.0)

        assert [r.document.id for r in results] == ["a", "b"]
        assert results[0].similarity == pytest.approx(1.0)
        assert results[1].similarity == pytest.approx(0.0)

    def test_equal_scores_keep_insertion_order(self, store):
        store.add_document(make_doc("a"), [1, 0, 0])
        store.add_document(make_doc("b"), [0, 1, 0])
        store.add_document(make_doc("c"), [1, 0, 0])

        results = store.search_similar([1, 0, 0], top_k=1, threshold=0.99)

        assert len(results) == 1
        assert results[0].document.id == "a"

        both = store.search_similar([1, 0, 0], top_k=5, threshold=0.99)
        assert [r.document.id for r in both] == ["a", "c"]

    def test_threshold_zero_returns_all_sorted(self, store):
        vectors = {"a": [0.2, 1, 0], "b": [1, 0.1, 0], "c": [0.5, 0.5, 0], "d": [0, 0, 1]}
        for doc_id, vector in vectors.items():
            store.add_document(make_doc(doc_id), vector)

        results = store.search_similar([1, 0, 0], top_k=10, threshold=0.0)

        assert len(results) == 4
        scores = [r.similarity for r in results]
        assert scores == sorted(scores, reverse=True)
        assert results[0].document.id == "b"

    def test_threshold_is_inclusive(self, store):
        store.add_document(make_doc("a"), [1, 1, 0])
        score = cosine_similarity([1, 0, 0], [1, 1, 0])

        assert len(store.search_similar([1, 0, 0], top_k=1, threshold=score)) == 1
        assert store.search_similar([1, 0, 0], top_k=1, threshold=score + 1e-9) == []

    def test_duplicate_id_is_ignored(self, store):
        store.add_document(make_doc("a", "first"), [1, 0, 0])
        assert store.add_document(make_doc("a", "second"), [0, 1, 0]) is False
        assert store.get_document_count() == 1
        assert store.get_document("a").content == "first"

    def test_duplicate_id_rejected_when_strict(self, store):
        store.add_document(make_doc("a", "first"), [1, 0, 0])

        with pytest.raises(DuplicateDocumentError) as exc_info:
            store.add_document(make_doc("a", "second"), [0, 1, 0], strict=True)

        assert exc_info.value.document_id == "a"
        assert store.get_document_count() == 1

    def test_rejected_duplicate_leaves_caller_vector_untouched(self, store):
        store.add_document(make_doc("a"), [1, 0, 0])
        vector = EmbeddingVector("b", [0, 1, 0])

        store.add_document(make_doc("a", "again"), vector)

        assert vector.document_id == "b"

    def test_empty_store_has_no_context(self, store):
        assert store.search_similar([1, 0, 0], top_k=5, threshold=0.0) == []
        assert store.get_context_for_query("anything", [1, 0, 0]) is None

    def test_context_below_threshold_is_absent(self, store):
        store.add_document(make_doc("a"), [0, 1, 0])
        assert store.get_context_for_query("question", [1, 0, 0], top_k=5, threshold=0.5) is None

    def test_context_format(self, store):
        store.add_document(make_doc("a", "Ollama listens on 11434", source="notes"), [1, 0, 0])

        context = store.get_context_for_query("port?", [1, 0, 0], top_k=5, threshold=0.5)

        assert context.startswith("Relevant information from the knowledge base:")
        assert "=== Document from notes ===" in context
        assert "Similarity: 1.000" in context
        assert "Ollama listens on 11434" in context

    def test_dimension_mismatch_rejected(self, store):
        store.add_document(make_doc("a"), [1, 0, 0])
        with pytest.raises(InvalidVectorDimensionError):
            store.search_similar([1, 0], top_k=1, threshold=0.0)

    def test_invalid_top_k(self, store):
        with pytest.raises(ValueError):
            store.search_similar([1, 0, 0], top_k=0)

    def test_memory_usage_is_advisory(self, store_path):
        store = KnowledgeStore(store_path, memory_budget_bytes=5 * 1024)
        store.add_document(make_doc("a"), [1, 0, 0])
        assert store.get_memory_usage_percentage() == pytest.approx(100.0)
        store.add_document(make_doc("b"), [0, 1, 0])
        assert store.get_memory_usage_percentage() == pytest.approx(200.0)
        assert store.get_document_count() == 2

    def test_statistics(self, store):
        store.add_document(make_doc("a"), [1, 0, 0, 0])
        stats = store.get_statistics()
        assert stats["total_documents"] == 1
        assert stats["total_embeddings"] == 1
        assert stats["embedding_dimension"] == 4

    def test_clear(self, store, store_path):
        store.add_document(make_doc("a"), [1, 0, 0])
        store.clear()
        assert store.get_document_count() == 0
        assert KnowledgeStore(store_path).get_document_count() == 0


class TestKnowledgeStorePersistence:
    """Test cases for the binary file format"""

    def test_round_trip(self, store, store_path):
        created = datetime(2024, 5, 17, 9, 30, tzinfo=timezone.utc)
        documents = [
            (Document("plain text", "notes", id="a", created_at=created), [1.0, 0.0, 0.0]),
            (Document("unicode: café ✓ данные", "web", id="b",
                      metadata={"lang": "mixed", "tags": "x,y"}), [0.1, -0.2, 0.3]),
            (Document("", "empty", id="c"), [1e-300, 2.5e10, -7.0]),
        ]
        for document, vector in documents:
            store.add_document(document, vector)

        reloaded = KnowledgeStore(store_path)

        assert reloaded.get_document_count() == 3
        for document, vector in documents:
            loaded = reloaded.get_document(document.id)
            assert loaded.content == document.content
            assert loaded.source == document.source
            assert loaded.metadata == document.metadata
            assert loaded.created_at == document.created_at
            assert np.array_equal(loaded.embedding.values, np.asarray(vector))
        assert [d.id for d in reloaded.list_documents()] == ["a", "b", "c"]

    def test_metadata_keeps_source_and_created(self, store, store_path):
        store.add_document(make_doc("a", source="manual"), [1, 0, 0])
        metadata = KnowledgeStore(store_path).get_document("a").metadata
        assert metadata["source"] == "manual"
        assert "created" in metadata

    def test_header_layout(self, store, store_path):
        store.add_document(make_doc("a"), [1, 0, 0])
        store.add_document(make_doc("b"), [0, 1, 0])
        with open(store_path, "rb") as f:
            magic, version, count, reserved = struct.unpack(">IIII", f.read(HEADER.size))
        assert magic == MAGIC
        assert version == 1
        assert count == 2
        assert reserved == 0

    def test_corrupt_magic_loads_empty(self, store, store_path):
        store.add_document(make_doc("a"), [1, 0, 0])
        store.add_document(make_doc("b"), [0, 1, 0])

        with open(store_path, "r+b") as f:
            f.write(b"XXXX")

        reloaded = KnowledgeStore(store_path)
        assert reloaded.get_document_count() == 0

    def test_corrupt_record_is_skipped(self, store, store_path):
        store.add_document(make_doc("a"), [1, 0, 0])
        store.add_document(make_doc("b"), [0, 1, 0])
        store.add_document(make_doc("c"), [0, 0, 1])

        data = bytearray(open(store_path, "rb").read())
        # Record body of "a" starts with the id length; claim the id is huge
        first_body = HEADER.size + 4
        data[first_body:first_body + 4] = struct.pack(">I", 10_000)
        open(store_path, "wb").write(bytes(data))

        reloaded = KnowledgeStore(store_path)
        assert [d.id for d in reloaded.list_documents()] == ["b", "c"]

    def test_truncated_file_keeps_complete_records(self, store, store_path):
        store.add_document(make_doc("a"), [1, 0, 0])
        store.add_document(make_doc("b"), [0, 1, 0])

        data = open(store_path, "rb").read()
        open(store_path, "wb").write(data[:-10])

        reloaded = KnowledgeStore(store_path)
        assert [d.id for d in reloaded.list_documents()] == ["a"]

    def test_missing_and_empty_files(self, store_path):
        assert KnowledgeStore(store_path).get_document_count() == 0
        open(store_path, "wb").close()
        assert KnowledgeStore(store_path).get_document_count() == 0

    def test_write_failure_keeps_memory_state(self, temp_dir):
        # A directory in place of the file makes every write fail
        blocked = os.path.join(temp_dir, "blocked")
        os.mkdir(blocked)
        store = KnowledgeStore(blocked, autoload=False)

        assert store.add_document(make_doc("a"), [1, 0, 0]) is True
        assert store.get_document_count() == 1
        assert store.save() is False

"""
Test suite for Utility Scripts

This module tests the knowledge seeding script:
- File collection
- Concurrent embedding with ordered insertion
- Command-line entry point
"""

import os
from pathlib import Path
from unittest.mock import Mock

import pytest

from rag_assistant.assistant import INITIAL_KNOWLEDGE, Assistant
from scripts import seed_knowledge

from fakes import FakeEmbeddingService, FakeGenerator, RecordingNarrator


def build_assistant(config):
    return Assistant(config, embedding_service=FakeEmbeddingService(dimension=8),
                     ollama_client=FakeGenerator(), narrator=RecordingNarrator())


@pytest.fixture
def notes_dir(temp_dir):
    root = Path(temp_dir) / "notes"
    (root / "nested").mkdir(parents=True)
    (root / "b.md").write_text("# Second\nMarkdown note.", encoding="utf-8")
    (root / "a.txt").write_text("First note.", encoding="utf-8")
    (root / "nested" / "c.txt").write_text("Nested note.", encoding="utf-8")
    (root / "empty.txt").write_text("   ", encoding="utf-8")
    (root / "image.png").write_bytes(b"\x89PNG")
    return root


@pytest.fixture
def patched_script(monkeypatch):
    monkeypatch.setattr(seed_knowledge, "create_assistant", build_assistant)
    monkeypatch.setattr(seed_knowledge, "configure_logging", Mock())


class TestSeedKnowledgeScript:
    """Test cases for seed_knowledge.py"""

    def test_collect_files(self, notes_dir):
        files = seed_knowledge.collect_files(notes_dir)
        assert [p.relative_to(notes_dir).as_posix() for p in files] == \
            ["a.txt", "b.md", "empty.txt", "nested/c.txt"]

    def test_seed_directory_keeps_file_order(self, config, notes_dir):
        assistant = build_assistant(config)

        added = seed_knowledge.seed_directory(assistant, notes_dir, workers=4)

        assert added == 3
        documents = assistant.knowledge_store.list_documents()
        assert [d.source for d in documents] == ["a.txt", "b.md", "c.txt"]
        assert documents[0].metadata["path"].endswith("a.txt")

    def test_seed_directory_with_source_label(self, config, notes_dir):
        assistant = build_assistant(config)
        seed_knowledge.seed_directory(assistant, notes_dir, source="project notes", workers=1)
        assert {d.source for d in assistant.knowledge_store.list_documents()} == {"project notes"}

    def test_main_loads_built_in_facts(self, patched_script, tmp_path):
        assert seed_knowledge.main([]) == 0
        assert os.path.exists(tmp_path / "knowledge_base.bin")

        reloaded = build_assistant(seed_knowledge.AssistantConfig.from_env())
        assert reloaded.knowledge_store.get_document_count() == len(INITIAL_KNOWLEDGE)

    def test_undecodable_file_is_skipped(self, config, notes_dir):
        (notes_dir / "latin1.txt").write_bytes("Caf\xe9 notes.".encode("latin-1"))
        assistant = build_assistant(config)

        added = seed_knowledge.seed_directory(assistant, notes_dir, workers=2)

        assert added == 3
        assert "latin1.txt" not in {d.source for d in assistant.knowledge_store.list_documents()}

    def test_main_with_directory(self, patched_script, notes_dir):
        assert seed_knowledge.main(["--dir", str(notes_dir), "--workers", "2"]) == 0

    def test_main_with_missing_directory(self, patched_script, tmp_path):
        assert seed_knowledge.main(["--dir", str(tmp_path / "nope")]) == 1

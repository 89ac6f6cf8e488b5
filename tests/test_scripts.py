"""
Tests pour les scripts opérateur (ingestion de fichiers, rejeu de l'outbox).
"""

from __future__ import annotations

import sys
from unittest.mock import patch

from content_assistant.domain.knowledge import KnowledgeSource
from content_assistant.services.kb_sync import ReplayReport
from scripts import ingest_documents, replay_kb_outbox


def test_load_items_skips_empty_files(tmp_path) -> None:
    full = tmp_path / "guide.md"
    full.write_text("# Guide\nContenu", encoding="utf-8")
    empty = tmp_path / "vide.txt"
    empty.write_text("  \n", encoding="utf-8")
    items = ingest_documents.load_items([str(full), str(empty)], KnowledgeSource.USER_UPLOAD)
    assert len(items) == 1
    assert items[0].metadata == {"filename": "guide.md"}
    assert items[0].source == KnowledgeSource.USER_UPLOAD


def test_ingest_missing_file_exits_2(tmp_path) -> None:
    argv = ["ingest_documents", "--project-id", "p1", str(tmp_path / "absent.txt")]
    with patch.object(sys, "argv", argv):
        assert ingest_documents.main() == 2


def test_replay_exit_code_reflects_failures() -> None:
    async def failing(max_items):
        return ReplayReport(succeeded=1, failed=2)

    async def clean(max_items):
        return ReplayReport(succeeded=3)

    with patch.object(sys, "argv", ["replay_kb_outbox", "--max-items", "10"]):
        with patch.object(replay_kb_outbox, "_replay", failing):
            assert replay_kb_outbox.main() == 1
        with patch.object(replay_kb_outbox, "_replay", clean):
            assert replay_kb_outbox.main() == 0

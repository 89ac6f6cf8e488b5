"""
In-memory knowledge store adapter.

Implements KnowledgeStore for tests and lightweight environments. Same semantics as the SQL store
(cosine similarity, project/session scoping, direct-fetch ordering) and integrates with the
knowledge base metrics.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import UTC, datetime

from content_assistant.app.metrics import KB_ENTRIES_WRITTEN
from content_assistant.domain.knowledge import (
    KnowledgeBaseEntry,
    KnowledgeFilter,
    KnowledgeUpdate,
    NewKnowledgeEntry,
)
from content_assistant.infra.vecstores.base import (
    KnowledgeStore,
    direct_fetch_order,
    rank_by_similarity,
    source_label,
)


class MemoryKnowledgeStore(KnowledgeStore):
    """In-memory store keyed by entry id."""

    backend = "memory"

    def __init__(self) -> None:
        """Initialize an empty in-memory store."""
        self._entries: dict[str, KnowledgeBaseEntry] = {}

    def _materialize(self, entry: NewKnowledgeEntry) -> KnowledgeBaseEntry:
        row = KnowledgeBaseEntry(
            id=str(uuid.uuid4()),
            created_at=datetime.now(UTC),
            **entry.model_dump(),
        )
        self._entries[row.id] = row
        return row

    async def insert(self, entry: NewKnowledgeEntry) -> KnowledgeBaseEntry:
        row = self._materialize(entry)
        KB_ENTRIES_WRITTEN.labels(source=row.source.value, op="insert").inc()
        return row

    async def bulk_insert(self, entries: Sequence[NewKnowledgeEntry]) -> list[KnowledgeBaseEntry]:
        rows = [self._materialize(e) for e in entries]
        for row in rows:
            KB_ENTRIES_WRITTEN.labels(source=row.source.value, op="insert").inc()
        return rows

    async def update(self, flt: KnowledgeFilter, changes: KnowledgeUpdate) -> int:
        fields = changes.fields()
        if not fields:
            return 0
        fields["updated_at"] = datetime.now(UTC)
        touched = 0
        for entry_id, entry in list(self._entries.items()):
            if flt.matches(entry):
                self._entries[entry_id] = entry.model_copy(update=fields)
                touched += 1
        if touched:
            KB_ENTRIES_WRITTEN.labels(source=source_label(flt), op="update").inc(touched)
        return touched

    async def delete(self, flt: KnowledgeFilter) -> int:
        doomed = [entry_id for entry_id, e in self._entries.items() if flt.matches(e)]
        for entry_id in doomed:
            del self._entries[entry_id]
        if doomed:
            KB_ENTRIES_WRITTEN.labels(source=source_label(flt), op="delete").inc(len(doomed))
        return len(doomed)

    async def similarity_search(
        self,
        project_id: str,
        session_id: str | None,
        query_embedding: Sequence[float],
        threshold: float,
        limit: int,
    ) -> list[KnowledgeBaseEntry]:
        flt = KnowledgeFilter(project_id=project_id, session_id=session_id)
        candidates = [e for e in self._entries.values() if flt.matches(e)]
        return rank_by_similarity(candidates, query_embedding, threshold, limit)

    async def list_entries(
        self, flt: KnowledgeFilter, limit: int | None = None
    ) -> list[KnowledgeBaseEntry]:
        rows = direct_fetch_order(e for e in self._entries.values() if flt.matches(e))
        return rows if limit is None else rows[: max(0, limit)]

    async def count(self, flt: KnowledgeFilter) -> int:
        return sum(1 for e in self._entries.values() if flt.matches(e))

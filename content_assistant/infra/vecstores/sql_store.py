"""
SQL knowledge store (SQLAlchemy async).

Persists entries in the `knowledge_base` table; similarity is computed as cosine over the stored
embeddings with numpy. Every driver failure is surfaced as `StoreError` so the retrieval pipeline
can fall back.
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from datetime import UTC, datetime

import structlog
from sqlalchemy import delete as sa_delete
from sqlalchemy import func, select
from sqlalchemy import update as sa_update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from content_assistant.app.metrics import KB_ENTRIES_WRITTEN
from content_assistant.core.http_constants import HTTP_SERVICE_UNAVAILABLE
from content_assistant.domain.errors import StoreError
from content_assistant.domain.knowledge import (
    KnowledgeBaseEntry,
    KnowledgeFilter,
    KnowledgeSource,
    KnowledgeUpdate,
    NewKnowledgeEntry,
)
from content_assistant.infra.repo.db import as_utc, session_scope
from content_assistant.infra.repo.models import KnowledgeBaseORM
from content_assistant.infra.vecstores.base import KnowledgeStore, rank_by_similarity, source_label

log = structlog.get_logger(__name__).bind(component="sql_store")


def _to_domain(row: KnowledgeBaseORM) -> KnowledgeBaseEntry:
    return KnowledgeBaseEntry(
        id=row.id,
        project_id=row.project_id,
        session_id=row.session_id,
        content=row.content,
        source=KnowledgeSource(row.source),
        metadata=dict(row.meta or {}),
        embedding=list(row.embedding or []),
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def _to_row(entry: NewKnowledgeEntry) -> KnowledgeBaseORM:
    return KnowledgeBaseORM(
        project_id=entry.project_id,
        session_id=entry.session_id,
        content=entry.content,
        source=entry.source.value,
        meta=dict(entry.metadata),
        embedding=list(entry.embedding),
    )


def _conditions(flt: KnowledgeFilter) -> list:
    conds = [KnowledgeBaseORM.project_id == flt.project_id]
    if flt.session_id is not None:
        conds.append(KnowledgeBaseORM.session_id == flt.session_id)
    if flt.source is not None:
        conds.append(KnowledgeBaseORM.source == flt.source.value)
    if flt.entry_id is not None:
        conds.append(KnowledgeBaseORM.id == flt.entry_id)
    return conds


class SqlKnowledgeStore(KnowledgeStore):
    """Store de connaissances adossé à SQLAlchemy."""

    backend = "sql"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Construit le store à partir d'une factory de sessions asynchrones."""
        self._factory = session_factory

    def _wrap(self, op: str, exc: SQLAlchemyError) -> StoreError:
        log.warning("store_operation_failed", op=op, error_type=type(exc).__name__)
        return StoreError(HTTP_SERVICE_UNAVAILABLE, f"knowledge store {op} failed")

    async def insert(self, entry: NewKnowledgeEntry) -> KnowledgeBaseEntry:
        rows = await self.bulk_insert([entry])
        return rows[0]

    async def bulk_insert(self, entries: Sequence[NewKnowledgeEntry]) -> list[KnowledgeBaseEntry]:
        """Insère toutes les entrées dans une seule transaction."""
        if not entries:
            return []
        try:
            async with session_scope(self._factory) as session:
                rows = [_to_row(e) for e in entries]
                session.add_all(rows)
                await session.flush()
                persisted = [_to_domain(r) for r in rows]
        except SQLAlchemyError as exc:
            raise self._wrap("insert", exc) from exc
        for row in persisted:
            KB_ENTRIES_WRITTEN.labels(source=row.source.value, op="insert").inc()
        return persisted

    async def update(self, flt: KnowledgeFilter, changes: KnowledgeUpdate) -> int:
        fields = changes.fields()
        if not fields:
            return 0
        values: dict = {"updated_at": datetime.now(UTC)}
        if "content" in fields:
            values["content"] = fields["content"]
        if "embedding" in fields:
            values["embedding"] = fields["embedding"]
        if "metadata" in fields:
            values["meta"] = fields["metadata"]
        stmt = (
            sa_update(KnowledgeBaseORM)
            .where(*_conditions(flt))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            async with session_scope(self._factory) as session:
                result = await session.execute(stmt)
                touched = int(result.rowcount or 0)
        except SQLAlchemyError as exc:
            raise self._wrap("update", exc) from exc
        if touched:
            KB_ENTRIES_WRITTEN.labels(source=source_label(flt), op="update").inc(touched)
        return touched

    async def delete(self, flt: KnowledgeFilter) -> int:
        stmt = (
            sa_delete(KnowledgeBaseORM)
            .where(*_conditions(flt))
            .execution_options(synchronize_session=False)
        )
        try:
            async with session_scope(self._factory) as session:
                result = await session.execute(stmt)
                removed = int(result.rowcount or 0)
        except SQLAlchemyError as exc:
            raise self._wrap("delete", exc) from exc
        if removed:
            KB_ENTRIES_WRITTEN.labels(source=source_label(flt), op="delete").inc(removed)
        return removed

    async def similarity_search(
        self,
        project_id: str,
        session_id: str | None,
        query_embedding: Sequence[float],
        threshold: float,
        limit: int,
    ) -> list[KnowledgeBaseEntry]:
        """Charge les candidats du périmètre puis les classe par similarité cosinus."""
        start = time.perf_counter()
        flt = KnowledgeFilter(project_id=project_id, session_id=session_id)
        stmt = select(KnowledgeBaseORM).where(*_conditions(flt))
        try:
            async with session_scope(self._factory) as session:
                rows = (await session.execute(stmt)).scalars().all()
                candidates = [_to_domain(r) for r in rows]
        except SQLAlchemyError as exc:
            raise self._wrap("search", exc) from exc
        ranked = rank_by_similarity(candidates, query_embedding, threshold, limit)
        log.debug(
            "similarity_search_done",
            candidates=len(candidates),
            hits=len(ranked),
            elapsed_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return ranked

    async def list_entries(
        self, flt: KnowledgeFilter, limit: int | None = None
    ) -> list[KnowledgeBaseEntry]:
        stmt = (
            select(KnowledgeBaseORM)
            .where(*_conditions(flt))
            .order_by(KnowledgeBaseORM.source.asc(), KnowledgeBaseORM.created_at.desc())
        )
        if limit is not None:
            stmt = stmt.limit(max(0, limit))
        try:
            async with session_scope(self._factory) as session:
                rows = (await session.execute(stmt)).scalars().all()
                return [_to_domain(r) for r in rows]
        except SQLAlchemyError as exc:
            raise self._wrap("list", exc) from exc

    async def count(self, flt: KnowledgeFilter) -> int:
        stmt = select(func.count()).select_from(KnowledgeBaseORM).where(*_conditions(flt))
        try:
            async with session_scope(self._factory) as session:
                return int((await session.execute(stmt)).scalar() or 0)
        except SQLAlchemyError as exc:
            raise self._wrap("count", exc) from exc

"""Derived-index reconciliation for published content (outbox + replay).

The version rows are the source of truth. `KnowledgeSyncReconciler.reconcile` derives the single
`published_content` knowledge entry of a (project, session) pair from them; a failed sync is
recorded in the `kb_sync_outbox` table and replayed later (`scripts/replay_kb_outbox.py`).

- Items past `max_attempts` or older than `ttl_s` are dropped (counted).
- Outbox failures never propagate to the primary transition.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import structlog
from pydantic import BaseModel
from sqlalchemy import delete as sa_delete
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from content_assistant.app.metrics import (
    KB_SYNC_FAILURES,
    KB_SYNC_OUTBOX_DROPPED,
    KB_SYNC_OUTBOX_SIZE,
)
from content_assistant.core.http_constants import HTTP_SERVICE_UNAVAILABLE
from content_assistant.domain.content_version import ContentVersion
from content_assistant.domain.errors import CollaboratorError, EmbeddingError, StoreError
from content_assistant.domain.knowledge import (
    KnowledgeBaseEntry,
    KnowledgeFilter,
    KnowledgeSource,
    KnowledgeUpdate,
    NewKnowledgeEntry,
)
from content_assistant.domain.timeouts import bounded
from content_assistant.infra.embeddings.base import Embeddings
from content_assistant.infra.repo.content_version_repo import ContentVersionRepo
from content_assistant.infra.repo.db import as_utc, session_scope
from content_assistant.infra.repo.models import KbSyncOutboxORM
from content_assistant.infra.vecstores.base import KnowledgeStore

log = structlog.get_logger(__name__).bind(component="kb_sync")


class OutboxItem(BaseModel):
    """Resynchronisation en attente pour un couple (projet, session)."""

    id: int
    project_id: str
    session_id: str
    reason: str
    attempts: int = 0
    last_error: str | None = None
    created_at: datetime


class ReplayReport(BaseModel):
    """Bilan d'un rejeu de l'outbox."""

    succeeded: int = 0
    failed: int = 0
    dropped: int = 0


def _item(row: KbSyncOutboxORM) -> OutboxItem:
    return OutboxItem(
        id=row.id,
        project_id=row.project_id,
        session_id=row.session_id,
        reason=row.reason,
        attempts=row.attempts,
        last_error=row.last_error,
        created_at=as_utc(row.created_at),
    )


class KnowledgeSyncOutbox:
    """Outbox persistée (table `kb_sync_outbox`), une ligne par couple (projet, session)."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_attempts: int = 5,
        ttl_s: float = 86400.0,
    ) -> None:
        self._factory = session_factory
        self.max_attempts = max_attempts
        self.ttl_s = ttl_s

    async def enqueue(
        self, project_id: str, session_id: str, reason: str, error: str | None = None
    ) -> None:
        """Ajoute la resynchronisation du couple.

        Un couple déjà en attente repart de zéro (tentatives et ancienneté): le nouvel échec doit
        être rejoué au moins une fois.
        """
        try:
            async with session_scope(self._factory) as session:
                session.add(
                    KbSyncOutboxORM(
                        project_id=project_id,
                        session_id=session_id,
                        reason=reason,
                        last_error=error,
                    )
                )
        except IntegrityError:
            async with session_scope(self._factory) as session:
                row = await self._find(session, project_id, session_id)
                if row is not None:
                    row.reason = reason
                    row.last_error = error
                    row.attempts = 0
                    row.created_at = datetime.now(UTC)
                    row.updated_at = row.created_at
        await self._refresh_gauge()

    async def _find(
        self, session: AsyncSession, project_id: str, session_id: str
    ) -> KbSyncOutboxORM | None:
        stmt = select(KbSyncOutboxORM).where(
            KbSyncOutboxORM.project_id == project_id,
            KbSyncOutboxORM.session_id == session_id,
        )
        return (await session.execute(stmt)).scalars().first()

    async def pending(self, limit: int | None = None) -> list[OutboxItem]:
        """Retourne les éléments en attente, du plus ancien au plus récent."""
        stmt = select(KbSyncOutboxORM).order_by(
            KbSyncOutboxORM.created_at.asc(), KbSyncOutboxORM.id.asc()
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        async with session_scope(self._factory) as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_item(r) for r in rows]

    async def remove(self, item_id: int) -> None:
        async with session_scope(self._factory) as session:
            await session.execute(sa_delete(KbSyncOutboxORM).where(KbSyncOutboxORM.id == item_id))
        await self._refresh_gauge()

    async def record_failure(self, item_id: int, error: str) -> None:
        async with session_scope(self._factory) as session:
            row = await session.get(KbSyncOutboxORM, item_id)
            if row is not None:
                row.attempts = (row.attempts or 0) + 1
                row.last_error = error
                row.updated_at = datetime.now(UTC)

    async def size(self) -> int:
        async with session_scope(self._factory) as session:
            stmt = select(func.count()).select_from(KbSyncOutboxORM)
            return int((await session.execute(stmt)).scalar() or 0)

    def is_expired(self, item: OutboxItem, now: datetime | None = None) -> bool:
        """Élément trop ancien ou ayant épuisé ses tentatives."""
        now = now or datetime.now(UTC)
        if item.attempts >= self.max_attempts:
            return True
        return now - item.created_at > timedelta(seconds=self.ttl_s)

    async def _refresh_gauge(self) -> None:
        KB_SYNC_OUTBOX_SIZE.set(await self.size())


class KnowledgeSyncReconciler:
    """Aligne l'entrée `published_content` d'une session sur les versions publiées."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        store: KnowledgeStore,
        embedder: Embeddings,
        outbox: KnowledgeSyncOutbox,
        timeout_s: float | None = 15.0,
    ) -> None:
        """Initialise le réconciliateur.

        Args:
            session_factory: Factory de sessions (lecture des versions).
            store: Store de connaissances (index dérivé).
            embedder: Générateur d'embeddings du contenu publié.
            outbox: File des resynchronisations en échec.
            timeout_s: Délai maximal de chaque appel externe.
        """
        self._factory = session_factory
        self.store = store
        self.embedder = embedder
        self.outbox = outbox
        self.timeout_s = timeout_s

    async def _published_versions(self, project_id: str, session_id: str) -> list[ContentVersion]:
        try:
            async with session_scope(self._factory) as session:
                repo = ContentVersionRepo(session)
                return await repo.published_for_session(project_id, session_id)
        except SQLAlchemyError as exc:
            raise StoreError(HTTP_SERVICE_UNAVAILABLE, "content versions unavailable") from exc

    async def _call(self, awaitable, operation: str):
        return await bounded(awaitable, self.timeout_s, operation, StoreError)

    async def reconcile(self, project_id: str, session_id: str) -> str:
        """
        Dérive l'entrée publiée du couple à partir des versions.

        - aucune version publiée: suppression de toutes les entrées `published_content`
        - sinon: une seule entrée (contenu, embedding frais, métadonnées), doublons supprimés

        Returns:
            str: Action effectuée (`deleted`, `inserted`, `updated`, `unchanged`).

        Raises:
            CollaboratorError: Échec du store ou des embeddings.
        """
        flt = KnowledgeFilter(
            project_id=project_id, session_id=session_id, source=KnowledgeSource.PUBLISHED_CONTENT
        )
        versions = await self._published_versions(project_id, session_id)
        if not versions:
            removed = await self._call(self.store.delete(flt), "store delete")
            log.info(
                "kb_sync_deleted", project_id=project_id, session_id=session_id, removed=removed
            )
            return "deleted"

        target = versions[0]
        existing = await self._call(self.store.list_entries(flt), "store list")
        keep = _pick_entry(existing, target.id)
        duplicates = [e for e in existing if keep is None or e.id != keep.id]
        for dup in duplicates:
            await self._call(
                self.store.delete(flt.model_copy(update={"entry_id": dup.id})), "store delete"
            )

        if keep is not None and _in_sync(keep, target):
            return "unchanged"

        embedding = await bounded(
            self.embedder.embed(target.content), self.timeout_s, "embedding", EmbeddingError
        )
        now = datetime.now(UTC).isoformat()
        metadata = {
            "type": KnowledgeSource.PUBLISHED_CONTENT.value,
            "title": target.title,
            "author": target.author,
            "content_version_id": target.id,
        }
        if keep is None:
            metadata["published_at"] = (
                target.published_at.isoformat() if target.published_at else now
            )
            entry = NewKnowledgeEntry(
                project_id=project_id,
                session_id=session_id,
                content=target.content,
                source=KnowledgeSource.PUBLISHED_CONTENT,
                metadata=metadata,
                embedding=embedding,
            )
            await self._call(self.store.insert(entry), "store insert")
            log.info("kb_sync_inserted", project_id=project_id, session_id=session_id)
            return "inserted"

        metadata["updated_at"] = now
        changes = KnowledgeUpdate(content=target.content, metadata=metadata, embedding=embedding)
        await self._call(
            self.store.update(flt.model_copy(update={"entry_id": keep.id}), changes), "store update"
        )
        log.info("kb_sync_updated", project_id=project_id, session_id=session_id)
        return "updated"

    async def sync_or_enqueue(self, project_id: str, session_id: str, reason: str) -> bool:
        """Réconcilie; en cas d'échec, journalise, compte et met le couple en outbox.

        Returns:
            bool: True si l'index dérivé est aligné à l'issue de l'appel.
        """
        try:
            await self.reconcile(project_id, session_id)
            return True
        except CollaboratorError as exc:
            KB_SYNC_FAILURES.labels(op=reason).inc()
            log.warning(
                "kb_sync_failed",
                project_id=project_id,
                session_id=session_id,
                reason=reason,
                error_type=type(exc).__name__,
                status_code=exc.status_code,
            )
            try:
                await self.outbox.enqueue(project_id, session_id, reason, exc.message)
            except SQLAlchemyError as outbox_exc:
                log.error(
                    "kb_sync_outbox_enqueue_failed",
                    project_id=project_id,
                    session_id=session_id,
                    error_type=type(outbox_exc).__name__,
                )
            return False

    async def replay(self, limit: int | None = None) -> ReplayReport:
        """Rejoue les éléments en attente de l'outbox.

        Succès: élément retiré. Échec: tentative comptée. Trop ancien ou trop de tentatives:
        élément abandonné.
        """
        report = ReplayReport()
        for item in await self.outbox.pending(limit):
            if self.outbox.is_expired(item):
                await self.outbox.remove(item.id)
                KB_SYNC_OUTBOX_DROPPED.inc()
                report.dropped += 1
                log.warning(
                    "kb_sync_outbox_dropped",
                    project_id=item.project_id,
                    session_id=item.session_id,
                    attempts=item.attempts,
                )
                continue
            try:
                await self.reconcile(item.project_id, item.session_id)
            except CollaboratorError as exc:
                await self.outbox.record_failure(item.id, exc.message)
                report.failed += 1
                continue
            await self.outbox.remove(item.id)
            report.succeeded += 1
        log.info("kb_sync_replayed", **report.model_dump())
        return report


def _pick_entry(entries: list[KnowledgeBaseEntry], version_id: str) -> KnowledgeBaseEntry | None:
    for entry in entries:
        if entry.metadata.get("content_version_id") == version_id:
            return entry
    return entries[0] if entries else None


def _in_sync(entry: KnowledgeBaseEntry, version: ContentVersion) -> bool:
    meta = entry.metadata
    return (
        entry.content == version.content
        and meta.get("content_version_id") == version.id
        and meta.get("title") == version.title
        and meta.get("author") == version.author
    )

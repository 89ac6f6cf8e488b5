# ============================================================
# Module : content_assistant/infra/repo/content_version_repo.py
# Objet  : Accès SQL (CRUD) pour ContentVersion.
# Notes  : la session (AsyncSession) est fournie par l'appelant, qui porte la transaction.
# ============================================================

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from content_assistant.domain.content_version import ContentVersion, NewContentVersion
from content_assistant.infra.repo.db import as_utc
from content_assistant.infra.repo.models import ContentVersionORM


def _to_domain(row: ContentVersionORM) -> ContentVersion:
    return ContentVersion(
        id=row.id,
        session_id=row.session_id,
        project_id=row.project_id,
        message_id=row.message_id,
        version_number=row.version_number,
        title=row.title,
        author=row.author,
        content=row.content,
        published=bool(row.published),
        published_at=as_utc(row.published_at),
        document_id=row.document_id,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


class ContentVersionRepo:
    """CRUD pour ContentVersion."""

    def __init__(self, session: AsyncSession) -> None:
        """Construit le repo avec une session (SQLAlchemy)."""
        self._session = session

    async def max_version_number(self, session_id: str) -> int:
        """Retourne le plus grand numéro de version de la session (0 si aucune)."""
        stmt = select(func.max(ContentVersionORM.version_number)).where(
            ContentVersionORM.session_id == session_id
        )
        value = (await self._session.execute(stmt)).scalar()
        return int(value or 0)

    async def insert(self, new: NewContentVersion, version_number: int) -> ContentVersion:
        """Crée une ligne en base. Lève IntegrityError sur doublon unique.

        Contrainte d'unicité: (session_id, version_number).
        """
        row = ContentVersionORM(
            session_id=new.session_id,
            project_id=new.project_id,
            message_id=new.message_id,
            version_number=version_number,
            title=new.title,
            author=new.author,
            content=new.content,
            published=False,
        )
        self._session.add(row)
        try:
            await self._session.flush()
        except IntegrityError:
            await self._session.rollback()
            raise
        return _to_domain(row)

    async def get(self, version_id: str) -> ContentVersion | None:
        """Retourne une version par identifiant."""
        row = await self._session.get(ContentVersionORM, version_id)
        return _to_domain(row) if row else None

    async def list_by_session(self, session_id: str) -> list[ContentVersion]:
        """Retourne les versions d'une session, du numéro le plus élevé au plus bas."""
        stmt = (
            select(ContentVersionORM)
            .where(ContentVersionORM.session_id == session_id)
            .order_by(ContentVersionORM.version_number.desc())
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_to_domain(r) for r in rows]

    async def latest(self, session_id: str) -> ContentVersion | None:
        """Retourne la version de numéro maximal pour une session."""
        stmt = (
            select(ContentVersionORM)
            .where(ContentVersionORM.session_id == session_id)
            .order_by(ContentVersionORM.version_number.desc())
            .limit(1)
        )
        row = (await self._session.execute(stmt)).scalars().first()
        return _to_domain(row) if row else None

    async def published_for_session(self, project_id: str, session_id: str) -> list[ContentVersion]:
        """Retourne les versions publiées d'un couple (projet, session)."""
        stmt = (
            select(ContentVersionORM)
            .where(
                ContentVersionORM.project_id == project_id,
                ContentVersionORM.session_id == session_id,
                ContentVersionORM.published.is_(True),
            )
            .order_by(ContentVersionORM.version_number.desc())
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_to_domain(r) for r in rows]

    async def published_for_project(self, project_id: str) -> list[ContentVersion]:
        """Retourne les versions publiées d'un projet (publication la plus récente d'abord)."""
        stmt = (
            select(ContentVersionORM)
            .where(
                ContentVersionORM.project_id == project_id,
                ContentVersionORM.published.is_(True),
            )
            .order_by(ContentVersionORM.published_at.desc())
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_to_domain(r) for r in rows]

    async def unpublish_others(
        self, project_id: str, session_id: str, exclude_id: str | None = None
    ) -> int:
        """Repasse en brouillon toutes les versions publiées du couple, sauf `exclude_id`.

        Returns:
            int: Nombre de versions dépubliées.
        """
        conditions = [
            ContentVersionORM.project_id == project_id,
            ContentVersionORM.session_id == session_id,
            ContentVersionORM.published.is_(True),
        ]
        if exclude_id is not None:
            conditions.append(ContentVersionORM.id != exclude_id)
        stmt = (
            update(ContentVersionORM)
            .where(*conditions)
            .values(published=False, published_at=None, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return int(result.rowcount or 0)

    async def set_published(
        self,
        version_id: str,
        published: bool,
        published_at: datetime | None = None,
        document_id: str | None = None,
    ) -> ContentVersion | None:
        """Met à jour l'état de publication; `document_id` n'est modifié que s'il est fourni."""
        row = await self._session.get(ContentVersionORM, version_id)
        if row is None:
            return None
        now = datetime.now(UTC)
        row.published = published
        row.published_at = (published_at or now) if published else None
        if document_id is not None:
            row.document_id = document_id
        row.updated_at = now
        await self._session.flush()
        return _to_domain(row)

    async def update_content(
        self, version_id: str, content: str, title: str | None = None
    ) -> ContentVersion | None:
        """Remplace le contenu (et optionnellement le titre) d'une version."""
        row = await self._session.get(ContentVersionORM, version_id)
        if row is None:
            return None
        row.content = content
        if title is not None:
            row.title = title
        row.updated_at = datetime.now(UTC)
        await self._session.flush()
        return _to_domain(row)

    async def existing_published_document_id(self, project_id: str, session_id: str) -> str | None:
        """Retourne la référence du document publié pour le couple, s'il en existe une."""
        stmt = (
            select(ContentVersionORM.document_id)
            .where(
                ContentVersionORM.project_id == project_id,
                ContentVersionORM.session_id == session_id,
                ContentVersionORM.document_id.is_not(None),
            )
            .order_by(ContentVersionORM.version_number.desc())
            .limit(1)
        )
        return (await self._session.execute(stmt)).scalar()

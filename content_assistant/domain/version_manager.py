# ============================================================
# Module : content_assistant/domain/version_manager.py
# Objet  : Cycle de vie des versions de contenu (brouillon / publié / dépublié).
# Contexte : la ligne de version fait foi; l'entrée `published_content` de la base de
#            connaissances est un index dérivé, réconcilié après chaque transition.
# Invariants :
#  - version_number strictement croissant par session, à partir de 1 (verrou + contrainte unique).
#  - au plus une version publiée par (session, projet) après une publication.
#  - un échec de synchronisation ne fait jamais échouer la transition primaire.
# ============================================================

from __future__ import annotations

from datetime import datetime

import pydantic
import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from content_assistant.app.metrics import CONTENT_VERSIONS
from content_assistant.core.http_constants import HTTP_CONFLICT, HTTP_SERVICE_UNAVAILABLE
from content_assistant.domain.content_version import (
    ContentVersion,
    NewContentVersion,
    PublishResult,
    UnpublishResult,
)
from content_assistant.domain.errors import StoreError, ValidationError, VersionNotFoundError
from content_assistant.infra.locks import SessionLocks, make_lock_key
from content_assistant.infra.repo.content_version_repo import ContentVersionRepo
from content_assistant.infra.repo.db import session_scope
from content_assistant.services.kb_sync import KnowledgeSyncReconciler

log = structlog.get_logger(__name__).bind(component="version_manager")


def _store_error(op: str, exc: SQLAlchemyError) -> StoreError:
    log.error("content_version_write_failed", op=op, error_type=type(exc).__name__)
    return StoreError(HTTP_SERVICE_UNAVAILABLE, f"content version {op} failed")


class ContentVersionManager:
    """Gestionnaire des versions de contenu d'une session."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        locks: SessionLocks,
        reconciler: KnowledgeSyncReconciler,
        max_create_retries: int = 3,
    ) -> None:
        """Initialise le gestionnaire.

        Args:
            session_factory: Factory de sessions asynchrones (système de référence des versions).
            locks: Verrous par session (sérialisation création / publication).
            reconciler: Synchronisation de l'index dérivé `published_content`.
            max_create_retries: Tentatives sur collision de numéro de version.
        """
        self._factory = session_factory
        self.locks = locks
        self.reconciler = reconciler
        self.max_create_retries = max(1, max_create_retries)

    # ----------------------------------------------------------- création

    async def create_version(
        self,
        session_id: str,
        project_id: str,
        message_id: str | None,
        title: str,
        author: str,
        content: str,
    ) -> ContentVersion:
        """
        Crée un brouillon au numéro `max + 1` de la session.

        Raises:
            ValidationError: Champ requis manquant.
            StoreError: Écriture impossible (y compris collisions répétées).
        """
        try:
            new = NewContentVersion(
                session_id=session_id,
                project_id=project_id,
                message_id=message_id,
                title=title,
                author=author,
                content=content,
            )
        except pydantic.ValidationError as exc:
            raise ValidationError(f"invalid content version: {exc.errors()[0]['loc']}") from exc

        async with self.locks.hold(make_lock_key(project_id, session_id)):
            for attempt in range(1, self.max_create_retries + 1):
                try:
                    async with session_scope(self._factory) as session:
                        repo = ContentVersionRepo(session)
                        number = await repo.max_version_number(session_id) + 1
                        version = await repo.insert(new, number)
                except IntegrityError:
                    log.warning(
                        "content_version_number_collision",
                        session_id=session_id,
                        attempt=attempt,
                    )
                    continue
                except SQLAlchemyError as exc:
                    raise _store_error("create", exc) from exc
                CONTENT_VERSIONS.labels(op="create").inc()
                log.info(
                    "content_version_created",
                    session_id=session_id,
                    version_number=version.version_number,
                )
                return version
        raise StoreError(HTTP_CONFLICT, "could not allocate a version number")

    # ----------------------------------------------------------- lecture

    async def get_version(self, version_id: str) -> ContentVersion:
        """Retourne une version; `VersionNotFoundError` si elle n'existe pas."""
        async with session_scope(self._factory) as session:
            version = await ContentVersionRepo(session).get(version_id)
        if version is None:
            raise VersionNotFoundError(version_id)
        return version

    async def list_versions(self, session_id: str) -> list[ContentVersion]:
        """Versions d'une session, du numéro le plus élevé au plus bas."""
        async with session_scope(self._factory) as session:
            return await ContentVersionRepo(session).list_by_session(session_id)

    async def latest_version(self, session_id: str) -> ContentVersion | None:
        async with session_scope(self._factory) as session:
            return await ContentVersionRepo(session).latest(session_id)

    async def published_versions(self, project_id: str) -> list[ContentVersion]:
        async with session_scope(self._factory) as session:
            return await ContentVersionRepo(session).published_for_project(project_id)

    async def existing_published_document_id(self, session_id: str, project_id: str) -> str | None:
        async with session_scope(self._factory) as session:
            return await ContentVersionRepo(session).existing_published_document_id(
                project_id, session_id
            )

    # ----------------------------------------------------------- transitions

    async def unpublish_all_previous(
        self, session_id: str, project_id: str, exclude_version_id: str | None = None
    ) -> UnpublishResult:
        """
        Repasse en brouillon toutes les versions publiées du couple, sauf `exclude_version_id`.

        Les entrées `published_content` correspondantes sont supprimées au mieux; un échec est
        journalisé et mis en outbox.
        """
        try:
            async with session_scope(self._factory) as session:
                count = await ContentVersionRepo(session).unpublish_others(
                    project_id, session_id, exclude_version_id
                )
        except SQLAlchemyError as exc:
            raise _store_error("unpublish", exc) from exc
        CONTENT_VERSIONS.labels(op="unpublish").inc(count)
        synced = await self.reconciler.sync_or_enqueue(project_id, session_id, "unpublish")
        log.info(
            "content_versions_unpublished",
            session_id=session_id,
            unpublished=count,
            knowledge_synced=synced,
        )
        return UnpublishResult(unpublished_count=count, knowledge_synced=synced)

    async def mark_published(
        self,
        version_id: str,
        document_id: str | None = None,
        published_at: datetime | None = None,
        published: bool = True,
    ) -> ContentVersion:
        """
        Met à jour l'état de publication d'une version puis réconcilie l'index dérivé.

        L'appelant qui publie doit d'abord appeler `unpublish_all_previous` (voir `publish`).
        Avec `published=False`, l'entrée `published_content` de la session est supprimée si
        aucune autre version n'y reste publiée.
        """
        try:
            async with session_scope(self._factory) as session:
                version = await ContentVersionRepo(session).set_published(
                    version_id, published, published_at, document_id
                )
        except SQLAlchemyError as exc:
            raise _store_error("publish", exc) from exc
        if version is None:
            raise VersionNotFoundError(version_id)
        CONTENT_VERSIONS.labels(op="publish" if published else "unpublish").inc()
        await self.reconciler.sync_or_enqueue(
            version.project_id, version.session_id, "publish" if published else "unpublish"
        )
        return version

    async def publish(
        self,
        version_id: str,
        document_id: str | None = None,
        published_at: datetime | None = None,
    ) -> PublishResult:
        """
        Publie une version en remplaçant la précédente (transition atomique sous verrou).

        Le retrait des versions précédentes et la publication sont écrits dans la même
        transaction; l'index dérivé est ensuite réconcilié une seule fois.
        """
        current = await self.get_version(version_id)
        async with self.locks.hold(make_lock_key(current.project_id, current.session_id)):
            try:
                async with session_scope(self._factory) as session:
                    repo = ContentVersionRepo(session)
                    count = await repo.unpublish_others(
                        current.project_id, current.session_id, version_id
                    )
                    version = await repo.set_published(version_id, True, published_at, document_id)
            except SQLAlchemyError as exc:
                raise _store_error("publish", exc) from exc
            if version is None:
                raise VersionNotFoundError(version_id)
            CONTENT_VERSIONS.labels(op="publish").inc()
            CONTENT_VERSIONS.labels(op="unpublish").inc(count)
            synced = await self.reconciler.sync_or_enqueue(
                version.project_id, version.session_id, "publish"
            )
        log.info(
            "content_version_published",
            session_id=version.session_id,
            version_number=version.version_number,
            superseded=count,
            knowledge_synced=synced,
        )
        return PublishResult(version=version, unpublished_count=count, knowledge_synced=synced)

    async def update_content(
        self, version_id: str, content: str, title: str | None = None
    ) -> ContentVersion:
        """
        Remplace le contenu d'une version.

        Si la version est publiée, l'entrée `published_content` est rafraîchie (contenu et
        embedding) pour ne jamais diverger de la ligne de version.
        """
        if not content or not content.strip():
            raise ValidationError("content must not be empty")
        if title is not None and not title.strip():
            raise ValidationError("title must not be empty")
        try:
            async with session_scope(self._factory) as session:
                repo = ContentVersionRepo(session)
                version = await repo.update_content(version_id, content, title)
        except SQLAlchemyError as exc:
            raise _store_error("update", exc) from exc
        if version is None:
            raise VersionNotFoundError(version_id)
        CONTENT_VERSIONS.labels(op="update").inc()
        if version.published:
            await self.reconciler.sync_or_enqueue(
                version.project_id, version.session_id, "update_content"
            )
        return version

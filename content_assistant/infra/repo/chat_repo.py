# ============================================================
# Module : content_assistant/infra/repo/chat_repo.py
# Objet  : Accès SQL aux sessions et messages de chat.
# ============================================================

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from content_assistant.core.http_constants import HTTP_SERVICE_UNAVAILABLE
from content_assistant.domain.chat import ChatMessage, ChatRole, ChatSession
from content_assistant.domain.errors import StoreError, ValidationError
from content_assistant.infra.repo.db import as_utc, session_scope
from content_assistant.infra.repo.models import ChatMessageORM, ChatSessionORM


def _session_to_domain(row: ChatSessionORM) -> ChatSession:
    return ChatSession(
        id=row.id,
        project_id=row.project_id,
        title=row.title,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def _message_to_domain(row: ChatMessageORM) -> ChatMessage:
    return ChatMessage(
        id=row.id,
        session_id=row.session_id,
        role=ChatRole(row.role),
        content=row.content,
        attachments=list(row.attachments or []),
        created_at=as_utc(row.created_at),
    )


def _check_project(row: ChatSessionORM, project_id: str) -> None:
    if row.project_id != project_id:
        raise ValidationError(f"chat session {row.id} does not belong to project {project_id}")


class ChatRepo:
    """Journal des messages par session (ajout et lecture)."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_session(self, session_id: str) -> ChatSession | None:
        row = await self._session.get(ChatSessionORM, session_id)
        return _session_to_domain(row) if row else None

    async def get_or_create_session(self, session_id: str, project_id: str) -> ChatSession:
        """Retourne la session, en la créant si elle n'existe pas encore.

        Raises:
            ValidationError: La session existe dans un autre projet.
        """
        row = await self._session.get(ChatSessionORM, session_id)
        if row is None:
            row = ChatSessionORM(id=session_id, project_id=project_id)
            self._session.add(row)
            await self._session.flush()
        _check_project(row, project_id)
        return _session_to_domain(row)

    async def set_title(self, session_id: str, title: str) -> None:
        row = await self._session.get(ChatSessionORM, session_id)
        if row is None:
            return
        row.title = title
        row.updated_at = datetime.now(UTC)
        await self._session.flush()

    async def add_message(
        self,
        session_id: str,
        role: ChatRole,
        content: str,
        attachments: list[dict[str, Any]] | None = None,
    ) -> ChatMessage:
        """Ajoute un message à la fin du journal de la session."""
        row = ChatMessageORM(
            session_id=session_id,
            role=role.value,
            content=content,
            attachments=attachments or [],
        )
        self._session.add(row)
        await self._session.flush()
        return _message_to_domain(row)

    async def recent_messages(
        self, session_id: str, limit: int = 10, project_id: str | None = None
    ) -> list[ChatMessage]:
        """Retourne les `limit` derniers messages, dans l'ordre chronologique.

        Avec `project_id`, une session rattachée à un autre projet lève `ValidationError`.
        """
        if project_id is not None:
            row = await self._session.get(ChatSessionORM, session_id)
            if row is not None:
                _check_project(row, project_id)
        stmt = (
            select(ChatMessageORM)
            .where(ChatMessageORM.session_id == session_id)
            .order_by(ChatMessageORM.created_at.desc(), ChatMessageORM.id.desc())
            .limit(limit)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_message_to_domain(r) for r in reversed(rows)]


class SqlChatHistory:
    """Accès au journal de chat avec une transaction par appel.

    Les erreurs du pilote sont traduites en `StoreError`.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._factory = session_factory

    async def recent_messages(
        self, session_id: str, limit: int = 10, project_id: str | None = None
    ) -> list[ChatMessage]:
        try:
            async with session_scope(self._factory) as session:
                return await ChatRepo(session).recent_messages(session_id, limit, project_id)
        except SQLAlchemyError as exc:
            raise StoreError(HTTP_SERVICE_UNAVAILABLE, "chat history unavailable") from exc

    async def append(
        self,
        session_id: str,
        project_id: str,
        role: ChatRole,
        content: str,
        attachments: list[dict[str, Any]] | None = None,
    ) -> ChatMessage:
        """Ajoute un message (la session est créée au premier message)."""
        try:
            async with session_scope(self._factory) as session:
                repo = ChatRepo(session)
                await repo.get_or_create_session(session_id, project_id)
                return await repo.add_message(session_id, role, content, attachments)
        except SQLAlchemyError as exc:
            raise StoreError(HTTP_SERVICE_UNAVAILABLE, "chat message not stored") from exc

    async def get_session(self, session_id: str) -> ChatSession | None:
        try:
            async with session_scope(self._factory) as session:
                return await ChatRepo(session).get_session(session_id)
        except SQLAlchemyError as exc:
            raise StoreError(HTTP_SERVICE_UNAVAILABLE, "chat session unavailable") from exc

    async def set_title(self, session_id: str, title: str) -> None:
        try:
            async with session_scope(self._factory) as session:
                await ChatRepo(session).set_title(session_id, title)
        except SQLAlchemyError as exc:
            raise StoreError(HTTP_SERVICE_UNAVAILABLE, "chat session not updated") from exc

"""SQLAlchemy models for persistence layer (knowledge base, versions, chat, sync outbox)."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase


def _new_id() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Classe de base pour tous les modèles SQLAlchemy."""

    metadata = MetaData()


class KnowledgeBaseORM(Base):
    """Modèle ORM pour les entrées de la base de connaissances."""

    __tablename__ = "knowledge_base"

    id = Column(String(36), primary_key=True, default=_new_id)
    project_id = Column(String(64), nullable=False)
    session_id = Column(String(64), nullable=True)
    content = Column(Text, nullable=False)
    source = Column(String(64), nullable=False)
    # "metadata" est réservé par la déclaration SQLAlchemy
    meta = Column("metadata", JSON, nullable=False, default=dict)
    embedding = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_kb_project_session", "project_id", "session_id"),
        Index("ix_kb_project_source", "project_id", "source"),
    )


class ContentVersionORM(Base):
    """Modèle ORM pour les versions de contenu."""

    __tablename__ = "content_versions"

    id = Column(String(36), primary_key=True, default=_new_id)
    session_id = Column(String(64), nullable=False)
    project_id = Column(String(64), nullable=False)
    message_id = Column(String(64), nullable=True)
    version_number = Column(Integer, nullable=False)
    title = Column(String(512), nullable=False)
    author = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    published = Column(Boolean, nullable=False, default=False)
    published_at = Column(DateTime(timezone=True), nullable=True)
    document_id = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("session_id", "version_number", name="uq_session_version_number"),
        Index("ix_cv_project_session", "project_id", "session_id"),
    )


class ChatSessionORM(Base):
    """Modèle ORM pour les sessions de chat."""

    __tablename__ = "chat_sessions"

    id = Column(String(64), primary_key=True, default=_new_id)
    project_id = Column(String(64), nullable=False)
    title = Column(String(512), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=True)


class ChatMessageORM(Base):
    """Modèle ORM pour les messages de chat."""

    __tablename__ = "chat_messages"

    id = Column(String(36), primary_key=True, default=_new_id)
    session_id = Column(String(64), ForeignKey("chat_sessions.id"), nullable=False)
    role = Column(String(16), nullable=False)
    content = Column(Text, nullable=False)
    attachments = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)

    __table_args__ = (Index("ix_chat_messages_session_created", "session_id", "created_at"),)


class KbSyncOutboxORM(Base):
    """Modèle ORM pour la file des resynchronisations KB en attente."""

    __tablename__ = "kb_sync_outbox"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(String(64), nullable=False)
    session_id = Column(String(64), nullable=False)
    reason = Column(String(255), nullable=False)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("project_id", "session_id", name="uq_outbox_project_session"),
    )

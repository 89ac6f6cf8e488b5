"""Types des sessions et messages de chat (journal ordonné par session)."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ChatRole(StrEnum):
    """Rôle de l'auteur d'un message."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ChatSession(BaseModel):
    """Session de chat rattachée à un projet."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    project_id: str
    title: str | None = None
    created_at: datetime
    updated_at: datetime | None = None


class ChatMessage(BaseModel):
    """Message d'une session, étiqueté par rôle."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    session_id: str
    role: ChatRole
    content: str
    attachments: list[dict[str, Any]] = Field(default_factory=list)
    created_at: datetime

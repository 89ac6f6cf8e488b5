"""Schémas Pydantic des requêtes et réponses HTTP.

Les vecteurs d'embedding ne sont jamais renvoyés par l'API.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from content_assistant.domain.knowledge import ContentItem, KnowledgeBaseEntry, KnowledgeSource
from content_assistant.services.web_ingest import ScrapeResult

MAX_SEARCH_LIMIT = 50
MAX_SCRAPE_URLS = 20


class KnowledgeEntryOut(BaseModel):
    """Entrée de connaissance exposée (sans embedding)."""

    id: str
    project_id: str
    session_id: str | None = None
    content: str
    source: KnowledgeSource
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    similarity: float | None = None

    @classmethod
    def from_entry(cls, entry: KnowledgeBaseEntry) -> KnowledgeEntryOut:
        return cls(**entry.model_dump(exclude={"embedding", "updated_at"}))


class StoreKnowledgeRequest(BaseModel):
    project_id: str = Field(min_length=1)
    session_id: str | None = None
    content: str = Field(min_length=1)
    source: KnowledgeSource
    metadata: dict[str, Any] = Field(default_factory=dict)


class BulkKnowledgeRequest(BaseModel):
    """Payload pour l'ingestion en masse."""

    project_id: str = Field(min_length=1)
    session_id: str | None = None
    items: list[ContentItem] = Field(min_length=1)


class BulkKnowledgeResponse(BaseModel):
    stored: int
    entries: list[KnowledgeEntryOut]


class CleanupRequest(BaseModel):
    project_id: str = Field(min_length=1)
    source: KnowledgeSource = KnowledgeSource.GENERATED_CONTENT
    session_id: str | None = None


class CleanupResponse(BaseModel):
    removed: int


class ScrapeRequest(BaseModel):
    """Payload pour l'ingestion de pages web."""

    project_id: str = Field(min_length=1)
    session_id: str | None = None
    urls: list[str] = Field(min_length=1, max_length=MAX_SCRAPE_URLS)


class ScrapeResponse(BaseModel):
    results: list[ScrapeResult]
    total_processed: int
    success_count: int


class SearchRequest(BaseModel):
    """Payload pour la recherche de connaissances."""

    project_id: str = Field(min_length=1)
    query: str = Field(min_length=1)
    limit: int | None = Field(default=None, ge=1, le=MAX_SEARCH_LIMIT)
    session_id: str | None = None


class SearchResponse(BaseModel):
    results: list[KnowledgeEntryOut]


class CreateVersionRequest(BaseModel):
    session_id: str
    project_id: str
    message_id: str | None = None
    title: str
    author: str
    content: str


class UpdateContentRequest(BaseModel):
    content: str
    title: str | None = None


class PublishRequest(BaseModel):
    document_id: str | None = None
    published_at: datetime | None = None


class MarkPublishedRequest(PublishRequest):
    published: bool = True


class UnpublishPreviousRequest(BaseModel):
    session_id: str = Field(min_length=1)
    project_id: str = Field(min_length=1)
    exclude_version_id: str | None = None


class RagContextRequest(BaseModel):
    project_id: str = Field(min_length=1)
    session_id: str = Field(min_length=1)
    query: str = Field(min_length=1)
    has_attachments: bool = False
    include_schema: bool = False


class ChatMessageOut(BaseModel):
    id: str
    role: str
    content: str
    created_at: datetime


class RagContextResponse(BaseModel):
    chat_history: list[ChatMessageOut]
    relevant_knowledge: list[KnowledgeEntryOut]
    schema_data: list[dict[str, Any]] | None = None


class ChatRequest(BaseModel):
    """Payload pour un message de chat."""

    project_id: str = Field(min_length=1)
    message: str = Field(min_length=1)
    has_attachments: bool = False
    attachments: list[dict[str, Any]] = Field(default_factory=list)

"""
Types de données pour la base de connaissances.

Ce module définit les modèles Pydantic des entrées de connaissance (contenu, source, métadonnées,
embedding), des filtres de sélection et des mises à jour, validés à la frontière du store.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, model_validator


class KnowledgeSource(StrEnum):
    """Origine d'une entrée de connaissance (énumération fermée)."""

    GENERATED_CONTENT = "generated_content"
    PUBLISHED_CONTENT = "published_content"
    SCHEMA_COMPONENTS = "schema_components"
    SCHEMA_GLOBAL_SEO = "schema_global_seo"
    SCHEMA_PAGES = "schema_pages"
    USER_UPLOAD = "user_upload"
    WEB_SCRAPING = "web_scraping"


class NewKnowledgeEntry(BaseModel):
    """Entrée à insérer: l'embedding est celui du contenu exact."""

    project_id: str = Field(min_length=1)
    session_id: str | None = None
    content: str
    source: KnowledgeSource
    metadata: dict[str, Any] = Field(default_factory=dict)
    embedding: list[float]


class KnowledgeBaseEntry(NewKnowledgeEntry):
    """
    Entrée persistée de la base de connaissances.

    `session_id` à None signifie une entrée de portée projet. `similarity` n'est renseigné que pour
    les résultats d'une recherche vectorielle.
    """

    id: str
    created_at: datetime
    updated_at: datetime | None = None
    similarity: float | None = None


class KnowledgeFilter(BaseModel):
    """Sélecteur d'entrées: `session_id` à None ne filtre pas sur la session."""

    project_id: str = Field(min_length=1)
    session_id: str | None = None
    source: KnowledgeSource | None = None
    entry_id: str | None = None

    def matches(self, entry: KnowledgeBaseEntry) -> bool:
        """Indique si une entrée satisfait le filtre."""
        if entry.project_id != self.project_id:
            return False
        if self.session_id is not None and entry.session_id != self.session_id:
            return False
        if self.source is not None and entry.source != self.source:
            return False
        return self.entry_id is None or entry.id == self.entry_id


class KnowledgeUpdate(BaseModel):
    """Champs modifiables d'une entrée.

    Un changement de contenu doit s'accompagner de l'embedding recalculé sur ce contenu.
    """

    content: str | None = None
    metadata: dict[str, Any] | None = None
    embedding: list[float] | None = None

    @model_validator(mode="after")
    def _content_requires_embedding(self) -> KnowledgeUpdate:
        if self.content is not None and self.embedding is None:
            raise ValueError("content update requires a fresh embedding")
        return self

    def fields(self) -> dict[str, Any]:
        """Retourne uniquement les champs renseignés."""
        return self.model_dump(exclude_none=True)


class ContentItem(BaseModel):
    """Élément brut soumis à l'ingestion en masse."""

    content: str
    source: KnowledgeSource = KnowledgeSource.USER_UPLOAD
    metadata: dict[str, Any] = Field(default_factory=dict)

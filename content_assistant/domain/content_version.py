"""
Modèle de gouvernance des versions de contenu généré.

Ce module définit le modèle de domaine ContentVersion (brouillon ou publié) ainsi que les résultats
des transitions de publication.
"""

# ============================================================
# Module : content_assistant/domain/content_version.py
# Objet  : Versions de contenu (brouillon / publié) par session.
# ============================================================

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ContentVersion(BaseModel):
    """
    Version de contenu rattachée à une session de chat.

    Attributs
    - version_number: numéro strictement croissant par session, à partir de 1.
    - published: au plus une version publiée par (session_id, project_id).
    - document_id: référence du document publié en externe (optionnel).
    """

    model_config = ConfigDict(from_attributes=True)

    id: str
    session_id: str
    project_id: str
    message_id: str | None = None
    version_number: int = Field(ge=1)
    title: str
    author: str
    content: str
    published: bool = False
    published_at: datetime | None = None
    document_id: str | None = None
    created_at: datetime
    updated_at: datetime | None = None


class NewContentVersion(BaseModel):
    """Données requises pour créer une version."""

    session_id: str = Field(min_length=1)
    project_id: str = Field(min_length=1)
    message_id: str | None = None
    title: str = Field(min_length=1)
    author: str = Field(min_length=1)
    content: str = Field(min_length=1)


class UnpublishResult(BaseModel):
    """Résultat de `unpublish_all_previous`."""

    unpublished_count: int = 0
    knowledge_synced: bool = True


class PublishResult(BaseModel):
    """Résultat d'une publication complète (retrait des précédentes + publication)."""

    version: ContentVersion
    unpublished_count: int = 0
    knowledge_synced: bool = True

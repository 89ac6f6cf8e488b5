"""Assemblage du contexte RAG (historique + connaissances + données de schéma).

L'historique et la recherche sont lancés en parallèle. Avec des pièces jointes, les résultats de
la session passent devant ceux du projet (dédoublonnés par identifiant) jusqu'au plafond commun.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Protocol

import structlog
from pydantic import BaseModel, Field

from content_assistant.domain.chat import ChatMessage
from content_assistant.domain.errors import CollaboratorError
from content_assistant.domain.knowledge import KnowledgeBaseEntry, KnowledgeSource
from content_assistant.domain.retrieval import RetrievalPipeline

DEFAULT_HISTORY_WINDOW = 10
DEFAULT_ATTACHMENT_CAP = 8
DEFAULT_SCHEMA_LIMIT = 10


class SchemaSearchResult(BaseModel):
    """Résultat de recherche dans les données structurées (articles, auteurs, catégories)."""

    table_name: str
    id: str
    title: str
    content: str = ""
    slug: str | None = None
    created_at: datetime | None = None


class SchemaSearch(Protocol):
    """Recherche textuelle dans les données structurées."""

    async def search(
        self, project_id: str, query: str, limit: int = DEFAULT_SCHEMA_LIMIT
    ) -> list[SchemaSearchResult]:
        ...


class ChatHistoryReader(Protocol):
    """Lecture des derniers messages d'une session (ordre chronologique)."""

    async def recent_messages(
        self,
        session_id: str,
        limit: int = DEFAULT_HISTORY_WINDOW,
        project_id: str | None = None,
    ) -> list[ChatMessage]:
        ...


class RagContext(BaseModel):
    """Contexte transmis à la couche de prompt."""

    chat_history: list[ChatMessage] = Field(default_factory=list)
    relevant_knowledge: list[KnowledgeBaseEntry] = Field(default_factory=list)
    schema_data: list[SchemaSearchResult] | None = None


def merge_with_priority(
    first: list[KnowledgeBaseEntry], second: list[KnowledgeBaseEntry], cap: int
) -> list[KnowledgeBaseEntry]:
    """Concatène `first` puis `second` sans doublon d'identifiant, tronqué à `cap`."""
    merged: list[KnowledgeBaseEntry] = []
    seen: set[str] = set()
    for entry in [*first, *second]:
        if entry.id in seen:
            continue
        seen.add(entry.id)
        merged.append(entry)
        if len(merged) >= cap:
            break
    return merged


class RagContextAssembler:
    """Compose l'historique de chat, les connaissances retrouvées et les données de schéma."""

    def __init__(
        self,
        retrieval: RetrievalPipeline,
        history: ChatHistoryReader,
        schema_search: SchemaSearch | None = None,
        history_window: int = DEFAULT_HISTORY_WINDOW,
        attachment_cap: int = DEFAULT_ATTACHMENT_CAP,
    ) -> None:
        self.retrieval = retrieval
        self.history = history
        self.schema_search = schema_search
        self.history_window = history_window
        self.attachment_cap = attachment_cap
        self._log = structlog.get_logger(__name__).bind(component="rag_context")

    async def build(
        self,
        project_id: str,
        session_id: str,
        query: str,
        has_attachments: bool = False,
        include_schema: bool = False,
    ) -> RagContext:
        """
        Construit le contexte RAG d'une requête.

        Args:
            project_id: Projet courant.
            session_id: Session de chat courante.
            query: Message de l'utilisateur.
            has_attachments: L'utilisateur a joint des fichiers (priorité aux résultats de session).
            include_schema: Ajoute les résultats de recherche dans les données structurées.

        Returns:
            RagContext: Historique (10 derniers messages), connaissances, données de schéma.
        """
        history, knowledge = await asyncio.gather(
            self.history.recent_messages(
                session_id, self.history_window, project_id=project_id
            ),
            self._knowledge(project_id, session_id, query, has_attachments),
        )
        schema_data = await self._schema(project_id, query) if include_schema else None
        self._log.info(
            "rag_context_built",
            project_id=project_id,
            history=len(history),
            knowledge=len(knowledge),
            published=sum(1 for k in knowledge if k.source == KnowledgeSource.PUBLISHED_CONTENT),
            has_attachments=has_attachments,
        )
        return RagContext(
            chat_history=history[-self.history_window :],
            relevant_knowledge=knowledge,
            schema_data=schema_data,
        )

    async def _knowledge(
        self, project_id: str, session_id: str, query: str, has_attachments: bool
    ) -> list[KnowledgeBaseEntry]:
        if not has_attachments:
            return await self.retrieval.retrieve(project_id, query)
        session_results, project_results = await asyncio.gather(
            self.retrieval.retrieve_session_specific(project_id, session_id, query),
            self.retrieval.retrieve(project_id, query),
        )
        return merge_with_priority(session_results, project_results, self.attachment_cap)

    async def _schema(self, project_id: str, query: str) -> list[SchemaSearchResult] | None:
        if self.schema_search is None:
            return None
        try:
            return await self.schema_search.search(project_id, query, DEFAULT_SCHEMA_LIMIT)
        except CollaboratorError as exc:
            self._log.warning("schema_search_failed", error_type=type(exc).__name__)
            return None

# ============================================================
# Module : content_assistant/domain/ingestion.py
# Objet  : Ingestion dans la base de connaissances (découpage, embeddings, écriture).
# Contexte : les embeddings d'un lot sont calculés en parallèle (sémaphore), puis écrits
#            en une seule insertion groupée.
# ============================================================

from __future__ import annotations

from typing import Any

import structlog

from content_assistant.domain.chunking import (
    DEFAULT_MAX_CHUNK_SIZE,
    DEFAULT_OVERLAP_SIZE,
    chunk_text,
)
from content_assistant.domain.errors import EmbeddingError, StoreError, ValidationError
from content_assistant.domain.knowledge import (
    ContentItem,
    KnowledgeBaseEntry,
    KnowledgeFilter,
    KnowledgeSource,
    NewKnowledgeEntry,
)
from content_assistant.domain.timeouts import bounded
from content_assistant.infra.embeddings.base import Embeddings
from content_assistant.infra.vecstores.base import KnowledgeStore


class KnowledgeIngestor:
    """Écrit du contenu brut dans la base de connaissances."""

    def __init__(
        self,
        store: KnowledgeStore,
        embedder: Embeddings,
        max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE,
        overlap_size: int = DEFAULT_OVERLAP_SIZE,
        concurrency: int = 8,
        timeout_s: float | None = 15.0,
    ) -> None:
        """Initialise l'ingestor.

        Args:
            store: Store de connaissances cible.
            embedder: Générateur d'embeddings.
            max_chunk_size: Taille maximale d'un segment.
            overlap_size: Recouvrement entre segments coupés arbitrairement.
            concurrency: Nombre maximal d'embeddings calculés simultanément.
            timeout_s: Délai maximal de chaque appel au store ou aux embeddings.
        """
        self.knowledge_store = store
        self.embedder = embedder
        self.max_chunk_size = max_chunk_size
        self.overlap_size = overlap_size
        self.concurrency = concurrency
        self.timeout_s = timeout_s
        self._log = structlog.get_logger(__name__).bind(component="knowledge_ingestor")

    async def store(
        self,
        project_id: str,
        session_id: str | None,
        content: str,
        source: KnowledgeSource,
        metadata: dict[str, Any] | None = None,
    ) -> KnowledgeBaseEntry:
        """Écrit une entrée unique (sans découpage).

        Raises:
            ValidationError: Contenu vide.
            EmbeddingError, StoreError: Échec d'un collaborateur (propagé).
        """
        if not content.strip():
            raise ValidationError("content must not be empty")
        embedding = await bounded(
            self.embedder.embed(content), self.timeout_s, "embedding", EmbeddingError
        )
        entry = NewKnowledgeEntry(
            project_id=project_id,
            session_id=session_id,
            content=content,
            source=source,
            metadata=metadata or {},
            embedding=embedding,
        )
        row = await bounded(
            self.knowledge_store.insert(entry), self.timeout_s, "store insert", StoreError
        )
        self._log.info("knowledge_stored", project_id=project_id, source=source.value)
        return row

    def _expand(
        self, items: list[ContentItem]
    ) -> list[tuple[str, KnowledgeSource, dict[str, Any]]]:
        pieces: list[tuple[str, KnowledgeSource, dict[str, Any]]] = []
        for item in items:
            if not item.content.strip():
                continue
            if len(item.content) <= self.max_chunk_size:
                pieces.append((item.content, item.source, dict(item.metadata)))
                continue
            chunks = chunk_text(item.content, self.max_chunk_size, self.overlap_size)
            for index, chunk in enumerate(chunks):
                meta = {**item.metadata, "chunk_index": index, "total_chunks": len(chunks)}
                pieces.append((chunk, item.source, meta))
        return pieces

    async def store_bulk(
        self, project_id: str, session_id: str | None, items: list[ContentItem]
    ) -> list[KnowledgeBaseEntry]:
        """Découpe, vectorise en parallèle et écrit un lot d'éléments.

        Les éléments plus longs que la taille de segment sont découpés; chaque segment reçoit
        `chunk_index` et `total_chunks` dans ses métadonnées.

        Returns:
            list[KnowledgeBaseEntry]: Entrées persistées, dans l'ordre des segments.
        """
        if not project_id:
            raise ValidationError("project_id is required")
        pieces = self._expand(items)
        if not pieces:
            return []
        embeddings = await self.embedder.embed_many(
            [p[0] for p in pieces], concurrency=self.concurrency, timeout_s=self.timeout_s
        )
        entries = [
            NewKnowledgeEntry(
                project_id=project_id,
                session_id=session_id,
                content=content,
                source=source,
                metadata=meta,
                embedding=vector,
            )
            for (content, source, meta), vector in zip(pieces, embeddings, strict=True)
        ]
        rows = await bounded(
            self.knowledge_store.bulk_insert(entries),
            self.timeout_s,
            "store bulk insert",
            StoreError,
        )
        self._log.info(
            "knowledge_bulk_stored",
            project_id=project_id,
            items=len(items),
            entries=len(rows),
        )
        return rows

    async def cleanup_source(
        self, project_id: str, source: KnowledgeSource, session_id: str | None = None
    ) -> int:
        """Supprime toutes les entrées d'une source (optionnellement d'une session).

        Returns:
            int: Nombre d'entrées supprimées.
        """
        flt = KnowledgeFilter(project_id=project_id, session_id=session_id, source=source)
        removed = await bounded(
            self.knowledge_store.delete(flt), self.timeout_s, "store delete", StoreError
        )
        self._log.info(
            "knowledge_source_cleaned", project_id=project_id, source=source.value, removed=removed
        )
        return removed

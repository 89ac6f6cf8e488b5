# ============================================================
# Module : content_assistant/domain/retrieval.py
# Objet  : Recherche de connaissances avec replis en cascade.
# Contexte : 1) similarité vectorielle; 2) lecture directe si la recherche échoue;
#            3) lecture directe élargie (limit x 2) si la recherche ne renvoie rien.
# Invariants :
#  - Aucune erreur de collaborateur ne remonte à l'appelant.
#  - Liste vide seulement si le store est injoignable à chaque étape.
# ============================================================

from __future__ import annotations

import time

import structlog

from content_assistant.app.metrics import (
    RETRIEVAL_FALLBACKS,
    RETRIEVAL_LATENCY,
    RETRIEVAL_REQUESTS,
)
from content_assistant.domain.errors import (
    CollaboratorError,
    EmbeddingError,
    StoreError,
    ValidationError,
)
from content_assistant.domain.knowledge import KnowledgeBaseEntry, KnowledgeFilter
from content_assistant.domain.timeouts import bounded
from content_assistant.infra.embeddings.base import Embeddings
from content_assistant.infra.vecstores.base import KnowledgeStore

DEFAULT_LIMIT = 5
DEFAULT_THRESHOLD = 0.3
DEFAULT_SESSION_THRESHOLD = 0.2
BROADEN_FACTOR = 2


class RetrievalPipeline:
    """Pipeline de recherche: embedding de la requête, similarité, replis."""

    def __init__(
        self,
        store: KnowledgeStore,
        embedder: Embeddings,
        threshold: float = DEFAULT_THRESHOLD,
        session_threshold: float = DEFAULT_SESSION_THRESHOLD,
        default_limit: int = DEFAULT_LIMIT,
        timeout_s: float | None = 15.0,
    ) -> None:
        """Initialise le pipeline.

        Args:
            store: Store de connaissances interrogé.
            embedder: Générateur d'embeddings pour la requête.
            threshold: Seuil de similarité pour la recherche projet.
            session_threshold: Seuil (plus bas) pour la recherche restreinte à une session.
            default_limit: Nombre de résultats par défaut.
            timeout_s: Délai maximal de chaque appel externe.
        """
        self.store = store
        self.embedder = embedder
        self.threshold = threshold
        self.session_threshold = session_threshold
        self.default_limit = default_limit
        self.timeout_s = timeout_s
        self._log = structlog.get_logger(__name__).bind(component="retrieval")

    async def retrieve(
        self,
        project_id: str,
        query: str,
        limit: int | None = None,
        session_id: str | None = None,
        threshold: float | None = None,
    ) -> list[KnowledgeBaseEntry]:
        """Recherche les connaissances pertinentes pour `query`.

        Args:
            project_id: Projet interrogé.
            query: Texte de la requête.
            limit: Nombre maximal de résultats (None: `default_limit`; 0: aucun résultat).
            session_id: None pour tout le projet, sinon restreint à la session.
            threshold: Seuil de similarité (défaut: seuil projet).

        Returns:
            list[KnowledgeBaseEntry]: Résultats; jamais d'exception de collaborateur.
        """
        scope = "project" if session_id is None else "session"
        return await self._run(
            project_id,
            query,
            self.default_limit if limit is None else limit,
            session_id,
            self.threshold if threshold is None else threshold,
            scope,
        )

    async def retrieve_session_specific(
        self,
        project_id: str,
        session_id: str,
        query: str,
        limit: int | None = None,
        threshold: float | None = None,
    ) -> list[KnowledgeBaseEntry]:
        """Variante restreinte à une session (identifiant obligatoire, seuil plus bas)."""
        if not session_id:
            raise ValidationError("session_id is required for session-specific retrieval")
        return await self._run(
            project_id,
            query,
            self.default_limit if limit is None else limit,
            session_id,
            self.session_threshold if threshold is None else threshold,
            "session",
        )

    async def _run(
        self,
        project_id: str,
        query: str,
        limit: int,
        session_id: str | None,
        threshold: float,
        scope: str,
    ) -> list[KnowledgeBaseEntry]:
        start = time.perf_counter()
        RETRIEVAL_REQUESTS.labels(scope=scope).inc()
        try:
            results = await self._similarity(project_id, query, limit, session_id, threshold)
        except CollaboratorError as exc:
            self._log.warning(
                "retrieval_similarity_failed",
                project_id=project_id,
                scope=scope,
                error_type=type(exc).__name__,
                status_code=exc.status_code,
            )
            RETRIEVAL_FALLBACKS.labels(stage="direct").inc()
            results = await self._direct_fetch(project_id, session_id, limit)
        else:
            if not results:
                self._log.info("retrieval_similarity_empty", project_id=project_id, scope=scope)
                RETRIEVAL_FALLBACKS.labels(stage="broadened").inc()
                results = await self._direct_fetch(project_id, session_id, limit * BROADEN_FACTOR)
        RETRIEVAL_LATENCY.labels(scope=scope).observe(time.perf_counter() - start)
        return results

    async def _similarity(
        self,
        project_id: str,
        query: str,
        limit: int,
        session_id: str | None,
        threshold: float,
    ) -> list[KnowledgeBaseEntry]:
        embedding = await bounded(
            self.embedder.embed(query), self.timeout_s, "query embedding", EmbeddingError
        )
        return await bounded(
            self.store.similarity_search(project_id, session_id, embedding, threshold, limit),
            self.timeout_s,
            "similarity search",
            StoreError,
        )

    async def _direct_fetch(
        self, project_id: str, session_id: str | None, limit: int
    ) -> list[KnowledgeBaseEntry]:
        """Lecture directe (source croissante, récence); liste vide si le store est injoignable."""
        flt = KnowledgeFilter(project_id=project_id, session_id=session_id)
        try:
            return await bounded(
                self.store.list_entries(flt, limit=limit),
                self.timeout_s,
                "direct fetch",
                StoreError,
            )
        except CollaboratorError as exc:
            self._log.warning(
                "retrieval_direct_fetch_failed",
                project_id=project_id,
                error_type=type(exc).__name__,
            )
            RETRIEVAL_FALLBACKS.labels(stage="exhausted").inc()
            return []

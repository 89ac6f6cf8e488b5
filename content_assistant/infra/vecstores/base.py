"""Interface de base pour les stores de connaissances.

Ce module définit l'interface abstraite (asynchrone) que doivent implémenter tous les stores de la
base de connaissances: écriture, mise à jour/suppression par filtre, recherche par similarité et
lecture directe (repli de la recherche).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence

import numpy as np

from content_assistant.domain.knowledge import (
    KnowledgeBaseEntry,
    KnowledgeFilter,
    KnowledgeUpdate,
    NewKnowledgeEntry,
)


class KnowledgeStore(ABC):
    """Interface abstraite pour les stores de connaissances."""

    backend: str = "unknown"

    @abstractmethod
    async def insert(self, entry: NewKnowledgeEntry) -> KnowledgeBaseEntry:
        """Insère une entrée et retourne la ligne persistée."""
        raise NotImplementedError

    @abstractmethod
    async def bulk_insert(self, entries: Sequence[NewKnowledgeEntry]) -> list[KnowledgeBaseEntry]:
        """Insère plusieurs entrées en une seule opération."""
        raise NotImplementedError

    @abstractmethod
    async def update(self, flt: KnowledgeFilter, changes: KnowledgeUpdate) -> int:
        """Met à jour les entrées sélectionnées et retourne leur nombre."""
        raise NotImplementedError

    @abstractmethod
    async def delete(self, flt: KnowledgeFilter) -> int:
        """Supprime les entrées sélectionnées et retourne leur nombre."""
        raise NotImplementedError

    @abstractmethod
    async def similarity_search(
        self,
        project_id: str,
        session_id: str | None,
        query_embedding: Sequence[float],
        threshold: float,
        limit: int,
    ) -> list[KnowledgeBaseEntry]:
        """Recherche les entrées les plus proches (similarité décroissante, >= threshold).

        Args:
            project_id: Projet interrogé.
            session_id: None pour tout le projet, sinon restreint à la session.
            query_embedding: Vecteur de la requête.
            threshold: Similarité cosinus minimale.
            limit: Nombre maximal de résultats.

        Returns:
            list[KnowledgeBaseEntry]: Entrées avec `similarity` renseigné.
        """
        raise NotImplementedError

    @abstractmethod
    async def list_entries(
        self, flt: KnowledgeFilter, limit: int | None = None
    ) -> list[KnowledgeBaseEntry]:
        """Lecture directe: source croissante, puis date de création décroissante."""
        raise NotImplementedError

    @abstractmethod
    async def count(self, flt: KnowledgeFilter) -> int:
        """Compte les entrées sélectionnées."""
        raise NotImplementedError


def cosine_scores(query: Sequence[float], vectors: Iterable[Sequence[float]]) -> list[float]:
    """Similarité cosinus entre la requête et chaque vecteur.

    Un vecteur nul ou de dimension différente obtient un score de 0.0.
    """
    q = np.asarray(query, dtype="float32")
    vectors = list(vectors)
    scores = np.zeros(len(vectors), dtype="float32")
    q_norm = float(np.linalg.norm(q))
    if q_norm == 0.0 or q.ndim != 1:
        return scores.tolist()

    rows = [i for i, vec in enumerate(vectors) if len(vec) == q.shape[0]]
    if rows:
        xb = np.array([vectors[i] for i in rows], dtype="float32")
        norms = np.linalg.norm(xb, axis=1)
        dots = xb @ q
        with np.errstate(divide="ignore", invalid="ignore"):
            sims = np.where(norms > 0.0, dots / (norms * q_norm), 0.0)
        scores[rows] = sims
    return scores.tolist()


def rank_by_similarity(
    entries: Sequence[KnowledgeBaseEntry],
    query_embedding: Sequence[float],
    threshold: float,
    limit: int,
) -> list[KnowledgeBaseEntry]:
    """Filtre par seuil, trie par similarité décroissante et tronque à `limit`."""
    scores = cosine_scores(query_embedding, (e.embedding for e in entries))
    ranked = [
        e.model_copy(update={"similarity": s})
        for e, s in zip(entries, scores, strict=True)
        if s >= threshold
    ]
    ranked.sort(key=lambda e: e.similarity or 0.0, reverse=True)
    return ranked[: max(0, limit)]


def direct_fetch_order(entries: Iterable[KnowledgeBaseEntry]) -> list[KnowledgeBaseEntry]:
    """Ordonne par source croissante puis par date de création décroissante."""
    by_recency = sorted(entries, key=lambda e: e.created_at, reverse=True)
    return sorted(by_recency, key=lambda e: e.source.value)


def source_label(flt: KnowledgeFilter) -> str:
    """Étiquette de métrique pour un filtre (source ciblée ou `any`)."""
    return flt.source.value if flt.source is not None else "any"

"""
Interface de base pour les générateurs d'embeddings.

Ce module définit l'interface abstraite (asynchrone) que doivent implémenter tous les générateurs
d'embeddings vectoriels, utilisés à l'ingestion comme à la recherche.
"""

import asyncio
from abc import ABC, abstractmethod

from content_assistant.domain.errors import EmbeddingError
from content_assistant.domain.timeouts import bounded


class Embeddings(ABC):
    """Interface abstraite pour les générateurs d'embeddings."""

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Génère le vecteur d'un texte. Lève `EmbeddingError` en cas d'échec."""
        ...

    async def embed_many(
        self, texts: list[str], concurrency: int = 8, timeout_s: float | None = None
    ) -> list[list[float]]:
        """Génère les vecteurs d'une liste de textes en parallèle (borné), dans l'ordre.

        Args:
            texts: Textes à vectoriser.
            concurrency: Nombre maximal d'appels simultanés.
            timeout_s: Délai maximal de chaque appel (None: pas de borne).

        Raises:
            EmbeddingError: Premier échec rencontré (statut 504 si un appel dépasse son délai).
        """
        semaphore = asyncio.Semaphore(max(1, concurrency))

        async def _one(text: str) -> list[float]:
            async with semaphore:
                return await bounded(self.embed(text), timeout_s, "embedding", EmbeddingError)

        return list(await asyncio.gather(*(_one(t) for t in texts)))

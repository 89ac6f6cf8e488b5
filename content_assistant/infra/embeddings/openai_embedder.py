"""
Embedder OpenAI pour la génération d'embeddings.

Ce module implémente un embedder utilisant l'API OpenAI (SDK asynchrone). Les échecs du SDK sont
traduits en `EmbeddingError` portant un statut de type HTTP.
"""

from __future__ import annotations

import httpx
import openai
from openai import AsyncOpenAI

from content_assistant.core.http_constants import (
    HTTP_BAD_GATEWAY,
    HTTP_GATEWAY_TIMEOUT,
    HTTP_SERVICE_UNAVAILABLE,
)
from content_assistant.domain.errors import EmbeddingError
from content_assistant.infra.embeddings.base import Embeddings


class OpenAIEmbedder(Embeddings):
    """
    Embedder OpenAI pour la génération d'embeddings.

    Sans clé API, chaque appel lève `EmbeddingError(503)`: la recherche bascule alors sur ses
    stratégies de repli au lieu de travailler sur des vecteurs factices.
    """

    def __init__(
        self,
        api_key: str | None,
        model: str = "text-embedding-3-small",
        timeout_s: float = 15.0,
        base_url: str | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        """
        Initialise l'embedder OpenAI avec la clé API.

        Args:
            api_key: Clé API OpenAI (None désactive le client).
            model: Nom du modèle d'embedding.
            timeout_s: Délai maximal de chaque appel.
            base_url: URL alternative de l'API (proxy, compatible OpenAI).
            client: Client pré-construit (tests).
        """
        self.model = model
        if client is not None:
            self.client: AsyncOpenAI | None = client
        elif api_key:
            self.client = AsyncOpenAI(
                api_key=api_key,
                base_url=base_url,
                timeout=httpx.Timeout(timeout_s, connect=5.0),
                max_retries=2,
            )
        else:
            self.client = None

    async def embed(self, text: str) -> list[float]:
        """
        Génère un embedding vectoriel via l'API OpenAI.

        Args:
            text: Texte à convertir en embedding.

        Returns:
            list[float]: Vecteur d'embedding.

        Raises:
            EmbeddingError: Service non configuré, injoignable ou réponse non-2xx.
        """
        if self.client is None:
            raise EmbeddingError(HTTP_SERVICE_UNAVAILABLE, "embedding service not configured")
        try:
            resp = await self.client.embeddings.create(model=self.model, input=text)
        except openai.APITimeoutError as exc:
            raise EmbeddingError(HTTP_GATEWAY_TIMEOUT, "embedding request timed out") from exc
        except openai.APIStatusError as exc:
            raise EmbeddingError(exc.status_code, f"OpenAI API error: {exc.status_code}") from exc
        except openai.APIError as exc:
            raise EmbeddingError(HTTP_BAD_GATEWAY, str(exc)) from exc
        if not resp.data:
            raise EmbeddingError(HTTP_BAD_GATEWAY, "empty embedding response")
        return list(resp.data[0].embedding)

"""Interface de base pour les modèles de langage."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any

from pydantic import BaseModel, Field


class AssistantMessage(BaseModel):
    """Message produit par le modèle (texte, appels d'outils, usage)."""

    content: str = ""
    tool_calls: list[dict[str, Any]] = Field(default_factory=list)
    usage: dict[str, int] = Field(default_factory=dict)


class LLM(ABC):
    """Interface abstraite pour les modèles de langage."""

    model: str = "unknown"

    @abstractmethod
    async def complete(
        self,
        messages: list[dict[str, str]],
        *,
        tools: list[dict[str, Any]] | None = None,
        tool_choice: str | None = None,
    ) -> AssistantMessage:
        """Génère un message assistant. Lève `CompletionError` en cas d'échec."""
        ...

    @abstractmethod
    def stream(self, messages: list[dict[str, str]]) -> AsyncIterator[str]:
        """Produit les fragments de texte au fil de l'eau; l'itération s'arrête à la fin du flux."""
        ...

# ============================================================
# Module : content_assistant/domain/errors.py
# Objet  : Taxonomie des erreurs du cœur (collaborateurs, intégrité).
# Invariants :
#  - Les erreurs de collaborateurs portent un statut de type HTTP.
#  - Les erreurs d'intégrité remontent telles quelles à l'appelant.
# ============================================================
"""Erreurs typées du cœur RAG / versions de contenu.

Trois familles:
- `CollaboratorError` : transport (embeddings, complétion, store, verrou) indisponible ou non-2xx.
- `DataIntegrityError` : champ manquant, référence inexistante (erreur client).
- les erreurs d'effets secondaires ne sont pas modélisées: elles sont journalisées puis ignorées.
"""

from __future__ import annotations

from content_assistant.core.http_constants import (
    HTTP_BAD_GATEWAY,
    HTTP_BAD_REQUEST,
    HTTP_GATEWAY_TIMEOUT,
    HTTP_NOT_FOUND,
)


class ContentAssistantError(Exception):
    """Racine de toutes les erreurs du cœur."""


class CollaboratorError(ContentAssistantError):
    """Erreur de transport d'un collaborateur externe (avec code explicite)."""

    def __init__(self, status_code: int = HTTP_BAD_GATEWAY, message: str | None = None) -> None:
        """Initialize collaborator error with an HTTP-like status."""
        self.status_code = status_code
        self.message = message or f"collaborator error: {status_code}"
        super().__init__(self.message)

    @classmethod
    def timeout(cls, operation: str) -> CollaboratorError:
        """Construit l'erreur correspondant à un dépassement de délai."""
        return cls(HTTP_GATEWAY_TIMEOUT, f"{operation} timed out")


class EmbeddingError(CollaboratorError):
    """Échec du service d'embeddings."""


class CompletionError(CollaboratorError):
    """Échec du service de complétion (LLM)."""


class StoreError(CollaboratorError):
    """Échec du store documentaire / vectoriel."""


class SessionLockError(CollaboratorError):
    """Verrou de session indisponible dans le délai imparti."""


class DataIntegrityError(ContentAssistantError):
    """Erreur client: données invalides ou référence inexistante."""

    status_code = HTTP_BAD_REQUEST


class ValidationError(DataIntegrityError):
    """Champ requis manquant ou paramètre hors bornes."""


class NotFoundError(DataIntegrityError):
    """Entité référencée inexistante."""

    status_code = HTTP_NOT_FOUND


class VersionNotFoundError(NotFoundError):
    """Version de contenu inexistante."""

    def __init__(self, version_id: str) -> None:
        self.version_id = version_id
        super().__init__(f"content version not found: {version_id}")

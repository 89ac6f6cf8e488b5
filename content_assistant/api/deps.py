"""Dépendances partagées pour les routes de l'API.

Le conteneur est construit au démarrage de l'application et conservé dans `app.state`; les routes
le reçoivent par injection FastAPI (remplaçable dans les tests via `dependency_overrides`).
"""

from fastapi import Request

from content_assistant.core.container import Container


def get_container(request: Request) -> Container:
    """Retourne le conteneur de l'application courante."""
    return request.app.state.container

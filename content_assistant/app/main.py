"""
Application principale FastAPI.

Ce module assemble tous les composants de l'application : middlewares, routes, métriques et
gestion des erreurs de l'assistant de contenu.

Responsabilités du module:
- Initialiser le logging structuré
- Construire l'application FastAPI avec son titre/debug
- Construire le conteneur au démarrage (lifespan) et le libérer à l'arrêt
- Ajouter les middlewares (CORS, request id, métriques, timing)
- Monter les routers (santé, connaissances, versions, RAG, chat, métriques)
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from content_assistant.api.errors import register_error_handlers
from content_assistant.api.routes_chat import router as chat_router
from content_assistant.api.routes_content_versions import router as content_versions_router
from content_assistant.api.routes_health import router as health_router
from content_assistant.api.routes_knowledge import router as knowledge_router
from content_assistant.api.routes_rag import router as rag_router
from content_assistant.app.metrics import PrometheusMiddleware, metrics_router
from content_assistant.core.container import Container, build_container
from content_assistant.core.logging import setup_logging
from content_assistant.core.settings import Settings, get_settings
from content_assistant.middlewares.request_id import RequestIDMiddleware
from content_assistant.middlewares.timing import TimingMiddleware

log = structlog.get_logger(__name__).bind(component="app")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Construit le conteneur si besoin, prépare la base puis libère les ressources."""
    owned = app.state.container is None
    if owned:
        app.state.container = build_container(app.state.settings)
    container: Container = app.state.container
    await container.startup()
    log.info("app_started", storage=container.storage_backend)
    try:
        yield
    finally:
        if owned:
            await container.aclose()
        log.info("app_stopped")


def create_app(container: Container | None = None, settings: Settings | None = None) -> FastAPI:
    """
    Construit et retourne l'application FastAPI prête à l'usage.

    Args:
        container: Conteneur déjà construit (tests); sinon construit au démarrage.
        settings: Paramètres à utiliser à défaut de ceux du conteneur.

    Étapes:
    - Configure le logging structuré (structlog)
    - Ajoute les middlewares utiles au debug/traçabilité
    - Enregistre les gestionnaires d'erreurs (enveloppe JSON)
    - Publie les routes
    """
    settings = container.settings if container is not None else (settings or get_settings())
    setup_logging(settings.LOG_LEVEL, settings.LOG_JSON)
    app = FastAPI(title=settings.APP_NAME, debug=settings.APP_DEBUG, lifespan=lifespan)
    app.state.settings = settings
    app.state.container = container
    if settings.CORS_ORIGINS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=[str(o).rstrip("/") for o in settings.CORS_ORIGINS],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(PrometheusMiddleware)
    app.add_middleware(TimingMiddleware)
    register_error_handlers(app)
    app.include_router(health_router)
    app.include_router(knowledge_router)
    app.include_router(content_versions_router)
    app.include_router(rag_router)
    app.include_router(chat_router)
    app.include_router(metrics_router)
    return app


app = create_app()

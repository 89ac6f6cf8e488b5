"""
Endpoint de santé pour vérifier la disponibilité de l'API et du stockage.

Expose `/health` pour signaler l'état général de l'application, du store de connaissances et de
l'outbox de synchronisation.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError

from content_assistant.api.deps import get_container
from content_assistant.core.container import Container

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(container: Container = Depends(get_container)):
    """Vérifie la disponibilité de l'API et le backend de stockage."""
    try:
        pending = await container.outbox.size()
        database = "ok"
    except SQLAlchemyError:
        pending = None
        database = "unavailable"
    return {
        "status": "ok" if database == "ok" else "degraded",
        "storage": container.storage_backend,
        "database": database,
        "kb_sync_pending": pending,
        "redis_url": bool(container.settings.REDIS_URL),
    }

# ============================================================
# Module : content_assistant/api/routes_content_versions.py
# Objet  : Endpoints /content-versions/* (création, lecture, édition, publication).
# ============================================================

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from content_assistant.api.deps import get_container
from content_assistant.api.schemas import (
    CreateVersionRequest,
    MarkPublishedRequest,
    PublishRequest,
    UnpublishPreviousRequest,
    UpdateContentRequest,
)
from content_assistant.core.container import Container
from content_assistant.core.http_constants import HTTP_CREATED
from content_assistant.domain.content_version import (
    ContentVersion,
    PublishResult,
    UnpublishResult,
)

router = APIRouter(prefix="/content-versions", tags=["content-versions"])


@router.post("", status_code=HTTP_CREATED, response_model=ContentVersion)
async def create_version(
    req: CreateVersionRequest, container: Container = Depends(get_container)
) -> ContentVersion:
    """Crée un brouillon au numéro suivant de la session."""
    return await container.versions.create_version(
        req.session_id, req.project_id, req.message_id, req.title, req.author, req.content
    )


@router.get("", response_model=list[ContentVersion])
async def list_versions(
    session_id: str = Query(min_length=1), container: Container = Depends(get_container)
) -> list[ContentVersion]:
    return await container.versions.list_versions(session_id)


@router.get("/latest", response_model=ContentVersion | None)
async def latest_version(
    session_id: str = Query(min_length=1), container: Container = Depends(get_container)
) -> ContentVersion | None:
    return await container.versions.latest_version(session_id)


@router.get("/published", response_model=list[ContentVersion])
async def published_versions(
    project_id: str = Query(min_length=1), container: Container = Depends(get_container)
) -> list[ContentVersion]:
    return await container.versions.published_versions(project_id)


@router.get("/published-document")
async def published_document(
    session_id: str = Query(min_length=1),
    project_id: str = Query(min_length=1),
    container: Container = Depends(get_container),
) -> dict:
    """Référence du document publié en externe pour la session, s'il existe."""
    document_id = await container.versions.existing_published_document_id(session_id, project_id)
    return {"document_id": document_id}


@router.post("/unpublish-previous", response_model=UnpublishResult)
async def unpublish_previous(
    req: UnpublishPreviousRequest, container: Container = Depends(get_container)
) -> UnpublishResult:
    return await container.versions.unpublish_all_previous(
        req.session_id, req.project_id, req.exclude_version_id
    )


@router.get("/{version_id}", response_model=ContentVersion)
async def get_version(
    version_id: str, container: Container = Depends(get_container)
) -> ContentVersion:
    return await container.versions.get_version(version_id)


@router.patch("/{version_id}/content", response_model=ContentVersion)
async def update_content(
    version_id: str, req: UpdateContentRequest, container: Container = Depends(get_container)
) -> ContentVersion:
    """Remplace le contenu; rafraîchit la base de connaissances si la version est publiée."""
    return await container.versions.update_content(version_id, req.content, req.title)


@router.post("/{version_id}/mark-published", response_model=ContentVersion)
async def mark_published(
    version_id: str, req: MarkPublishedRequest, container: Container = Depends(get_container)
) -> ContentVersion:
    return await container.versions.mark_published(
        version_id, req.document_id, req.published_at, req.published
    )


@router.post("/{version_id}/publish", response_model=PublishResult)
async def publish(
    version_id: str,
    req: PublishRequest | None = None,
    container: Container = Depends(get_container),
) -> PublishResult:
    """Publie la version en remplaçant la précédente publication de la session."""
    req = req or PublishRequest()
    return await container.versions.publish(version_id, req.document_id, req.published_at)

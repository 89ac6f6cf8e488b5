# ============================================================
# Module : content_assistant/api/routes_knowledge.py
# Objet  : Endpoints /knowledge/* (ingestion, pages web, nettoyage, recherche).
# ============================================================
"""Routes de la base de connaissances.

L'ingestion propage les erreurs de collaborateurs (enveloppe 502/504); la recherche ne lève jamais
et se dégrade en liste vide.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from content_assistant.api.deps import get_container
from content_assistant.api.schemas import (
    BulkKnowledgeRequest,
    BulkKnowledgeResponse,
    CleanupRequest,
    CleanupResponse,
    KnowledgeEntryOut,
    ScrapeRequest,
    ScrapeResponse,
    SearchRequest,
    SearchResponse,
    StoreKnowledgeRequest,
)
from content_assistant.core.container import Container
from content_assistant.core.http_constants import HTTP_CREATED

router = APIRouter(prefix="/knowledge", tags=["knowledge"])


@router.post("/entries", status_code=HTTP_CREATED, response_model=KnowledgeEntryOut)
async def store_entry(
    req: StoreKnowledgeRequest, container: Container = Depends(get_container)
) -> KnowledgeEntryOut:
    """Écrit une entrée unique (sans découpage)."""
    entry = await container.ingestor.store(
        req.project_id, req.session_id, req.content, req.source, req.metadata
    )
    return KnowledgeEntryOut.from_entry(entry)


@router.post("/bulk", status_code=HTTP_CREATED, response_model=BulkKnowledgeResponse)
async def store_bulk(
    req: BulkKnowledgeRequest, container: Container = Depends(get_container)
) -> BulkKnowledgeResponse:
    """Découpe, vectorise et écrit un lot d'éléments.

    Returns:
        BulkKnowledgeResponse: {"stored": n, "entries": [...]}
    """
    rows = await container.ingestor.store_bulk(req.project_id, req.session_id, req.items)
    return BulkKnowledgeResponse(
        stored=len(rows), entries=[KnowledgeEntryOut.from_entry(r) for r in rows]
    )


@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup(
    req: CleanupRequest, container: Container = Depends(get_container)
) -> CleanupResponse:
    """Supprime toutes les entrées d'une source (par défaut le contenu généré)."""
    removed = await container.ingestor.cleanup_source(req.project_id, req.source, req.session_id)
    return CleanupResponse(removed=removed)


@router.post("/scrape", response_model=ScrapeResponse)
async def scrape(
    req: ScrapeRequest, container: Container = Depends(get_container)
) -> ScrapeResponse:
    """Récupère des pages web et les ingère (source `web_scraping`).

    Une URL en échec est signalée dans son résultat; les autres sont ingérées normalement.
    """
    report = await container.scraper.scrape(req.project_id, req.session_id, req.urls)
    return ScrapeResponse(
        results=report.results,
        total_processed=len(report.results),
        success_count=report.success_count,
    )


@router.post("/search", response_model=SearchResponse)
async def search(
    req: SearchRequest, container: Container = Depends(get_container)
) -> SearchResponse:
    """Recherche les connaissances pertinentes (avec replis)."""
    if req.session_id:
        rows = await container.retrieval.retrieve_session_specific(
            req.project_id, req.session_id, req.query, limit=req.limit
        )
    else:
        rows = await container.retrieval.retrieve(req.project_id, req.query, limit=req.limit)
    return SearchResponse(results=[KnowledgeEntryOut.from_entry(r) for r in rows])

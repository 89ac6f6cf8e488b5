"""
Métriques Prometheus pour l'application.

Ce module définit les métriques Prometheus du cœur RAG (recherche, base de connaissances,
versions de contenu, appels LLM) ainsi que l'exposition `/metrics` et le middleware HTTP.
"""

import time

from fastapi import APIRouter, Request
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

metrics_router = APIRouter()

REQUEST_COUNT = Counter(
    "http_requests_total", "Total HTTP requests", ["method", "route", "status"]
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds", "Latency of HTTP requests", ["route"]
)

# Retrieval-specific metrics
RETRIEVAL_REQUESTS = Counter(
    "retrieval_requests_total",
    "Total retrieval operations",
    ["scope"],
)
RETRIEVAL_FALLBACKS = Counter(
    "retrieval_fallbacks_total",
    "Retrieval fallbacks taken, by stage",
    ["stage"],
)
RETRIEVAL_LATENCY = Histogram(
    "retrieval_latency_seconds",
    "Latency of retrieval operations",
    ["scope"],
)

# Knowledge base writes and derived-index sync
KB_ENTRIES_WRITTEN = Counter(
    "kb_entries_written_total",
    "Knowledge base entries written",
    ["source", "op"],
)
KB_SYNC_FAILURES = Counter(
    "kb_sync_failures_total",
    "Knowledge base synchronization failures (non fatal)",
    ["op"],
)
KB_SYNC_OUTBOX_SIZE = Gauge(
    "kb_sync_outbox_size",
    "Current size of the knowledge base sync outbox",
)
KB_SYNC_OUTBOX_DROPPED = Counter(
    "kb_sync_outbox_dropped_total",
    "Outbox items dropped (max attempts or TTL exceeded)",
)

# Content versions
CONTENT_VERSIONS = Counter(
    "content_versions_total",
    "Content version transitions",
    ["op"],
)

# Business/chat metrics
LLM_REQUESTS = Counter(
    "llm_requests_total",
    "Total completion requests",
    ["kind", "outcome"],
)


@metrics_router.get("/metrics")
def metrics():
    """
    Expose les métriques Prometheus au format texte.

    Returns:
        Response: Réponse HTTP contenant les métriques au format Prometheus.
    """
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """
    Middleware Prometheus pour mesurer les métriques HTTP.

    Collecte les métriques de comptage des requêtes et de latence par route (gabarit de route
    quand il est connu, pour borner la cardinalité).
    """

    async def dispatch(self, request: Request, call_next):
        """
        Traite une requête HTTP et collecte les métriques.

        Args:
            request: Requête HTTP entrante.
            call_next: Fonction pour appeler le middleware suivant.

        Returns:
            Response: Réponse HTTP avec métriques collectées.
        """
        start = time.perf_counter()
        response: Response = await call_next(request)
        route_obj = request.scope.get("route")
        route = getattr(route_obj, "path", None) or request.scope.get("path", "unknown")
        REQUEST_COUNT.labels(request.method, route, str(response.status_code)).inc()
        REQUEST_LATENCY.labels(route).observe(time.perf_counter() - start)
        return response

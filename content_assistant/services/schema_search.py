"""Recherche textuelle dans les données de schéma indexées (pages, composants, SEO global).

Les données structurées du site sont ingérées dans la base de connaissances sous les sources
`schema_*`; cette recherche les filtre par sous-chaîne (titre ou contenu, insensible à la casse).
"""

from __future__ import annotations

import structlog

from content_assistant.domain.errors import StoreError
from content_assistant.domain.knowledge import KnowledgeBaseEntry, KnowledgeFilter, KnowledgeSource
from content_assistant.domain.rag_context import DEFAULT_SCHEMA_LIMIT, SchemaSearchResult
from content_assistant.domain.timeouts import bounded
from content_assistant.infra.vecstores.base import KnowledgeStore

SCHEMA_SOURCES = (
    KnowledgeSource.SCHEMA_PAGES,
    KnowledgeSource.SCHEMA_COMPONENTS,
    KnowledgeSource.SCHEMA_GLOBAL_SEO,
)
TITLE_PREVIEW_CHARS = 80


def _title(entry: KnowledgeBaseEntry) -> str:
    meta = entry.metadata
    title = meta.get("title") or meta.get("name")
    if title:
        return str(title)
    return entry.content[:TITLE_PREVIEW_CHARS].strip()


class KnowledgeSchemaSearch:
    """Implémentation de `SchemaSearch` adossée au store de connaissances."""

    def __init__(self, store: KnowledgeStore, timeout_s: float | None = 15.0) -> None:
        self.store = store
        self.timeout_s = timeout_s
        self._log = structlog.get_logger(__name__).bind(component="schema_search")

    async def search(
        self, project_id: str, query: str, limit: int = DEFAULT_SCHEMA_LIMIT
    ) -> list[SchemaSearchResult]:
        """Retourne au plus `limit` résultats contenant `query` (ordre des sources, récence)."""
        needle = query.strip().lower()
        results: list[SchemaSearchResult] = []
        for source in SCHEMA_SOURCES:
            flt = KnowledgeFilter(project_id=project_id, source=source)
            entries = await bounded(
                self.store.list_entries(flt), self.timeout_s, "schema search", StoreError
            )
            for entry in entries:
                title = _title(entry)
                if needle and needle not in title.lower() and needle not in entry.content.lower():
                    continue
                results.append(
                    SchemaSearchResult(
                        table_name=source.value,
                        id=entry.id,
                        title=title,
                        content=entry.content,
                        slug=str(entry.metadata["slug"]) if entry.metadata.get("slug") else None,
                        created_at=entry.created_at,
                    )
                )
        self._log.debug("schema_search_done", project_id=project_id, hits=len(results))
        return results[:limit]

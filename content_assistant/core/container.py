"""
Conteneur d'injection de dépendances.

Instancie une fois, au démarrage, les collaborateurs (moteur SQL, embeddings, LLM, store de
connaissances, verrous) et les services du cœur qui les reçoivent par constructeur. L'application
FastAPI le conserve dans `app.state.container`; les tests le construisent avec des doublures.
"""

from __future__ import annotations

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncEngine

from content_assistant.core.settings import Settings, get_settings
from content_assistant.domain.chat_orchestrator import ChatOrchestrator
from content_assistant.domain.ingestion import KnowledgeIngestor
from content_assistant.domain.rag_context import RagContextAssembler
from content_assistant.domain.retrieval import RetrievalPipeline
from content_assistant.domain.version_manager import ContentVersionManager
from content_assistant.infra.embeddings.base import Embeddings
from content_assistant.infra.embeddings.openai_embedder import OpenAIEmbedder
from content_assistant.infra.llm.base import LLM
from content_assistant.infra.llm.openai_client import OpenAILLM
from content_assistant.infra.locks import build_session_locks
from content_assistant.infra.repo.chat_repo import SqlChatHistory
from content_assistant.infra.repo.db import create_all, get_engine, get_session_factory
from content_assistant.infra.vecstores.base import KnowledgeStore
from content_assistant.infra.vecstores.memory_adapter import MemoryKnowledgeStore
from content_assistant.infra.vecstores.sql_store import SqlKnowledgeStore
from content_assistant.services.kb_sync import KnowledgeSyncOutbox, KnowledgeSyncReconciler
from content_assistant.services.schema_search import KnowledgeSchemaSearch
from content_assistant.services.web_ingest import WebScrapeIngestor

log = structlog.get_logger(__name__).bind(component="container")


class Container:
    """Graphe des composants de l'application."""

    def __init__(
        self,
        settings: Settings,
        engine: AsyncEngine | None = None,
        embedder: Embeddings | None = None,
        llm: LLM | None = None,
        store: KnowledgeStore | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Construit le graphe; chaque collaborateur peut être remplacé (tests)."""
        self.settings = settings
        timeout_s = settings.COLLABORATOR_TIMEOUT_S

        self.engine = engine or get_engine(settings.DATABASE_URL)
        self.session_factory = get_session_factory(self.engine)

        self.embedder = embedder or OpenAIEmbedder(
            api_key=settings.OPENAI_API_KEY,
            model=settings.EMBEDDINGS_MODEL,
            timeout_s=timeout_s,
            base_url=settings.OPENAI_BASE_URL,
        )
        self.llm = llm or OpenAILLM(
            api_key=settings.OPENAI_API_KEY,
            model=settings.CHAT_MODEL,
            temperature=settings.CHAT_TEMPERATURE,
            max_tokens=settings.CHAT_MAX_TOKENS,
            timeout_s=timeout_s,
            base_url=settings.OPENAI_BASE_URL,
        )
        if store is not None:
            self.store = store
        elif settings.KNOWLEDGE_STORE_BACKEND.lower() == "memory":
            self.store = MemoryKnowledgeStore()
        else:
            self.store = SqlKnowledgeStore(self.session_factory)
        self.storage_backend = self.store.backend

        self.chat_history = SqlChatHistory(self.session_factory)
        self.locks = build_session_locks(settings.REDIS_URL, settings.SESSION_LOCK_TIMEOUT_S)

        self.outbox = KnowledgeSyncOutbox(
            self.session_factory,
            max_attempts=settings.KB_OUTBOX_MAX_ATTEMPTS,
            ttl_s=settings.KB_OUTBOX_TTL_S,
        )
        self.reconciler = KnowledgeSyncReconciler(
            self.session_factory, self.store, self.embedder, self.outbox, timeout_s=timeout_s
        )
        self.ingestor = KnowledgeIngestor(
            self.store,
            self.embedder,
            max_chunk_size=settings.CHUNK_MAX_SIZE,
            overlap_size=settings.CHUNK_OVERLAP,
            concurrency=settings.EMBEDDING_CONCURRENCY,
            timeout_s=timeout_s,
        )
        self.scraper = WebScrapeIngestor(
            self.ingestor,
            client=http_client,
            timeout_s=timeout_s,
            max_chars=settings.SCRAPE_MAX_CHARS,
            user_agent=settings.SCRAPE_USER_AGENT,
        )
        self.retrieval = RetrievalPipeline(
            self.store,
            self.embedder,
            threshold=settings.RAG_SIMILARITY_THRESHOLD,
            session_threshold=settings.RAG_SESSION_SIMILARITY_THRESHOLD,
            default_limit=settings.RAG_DEFAULT_LIMIT,
            timeout_s=timeout_s,
        )
        self.versions = ContentVersionManager(
            self.session_factory,
            self.locks,
            self.reconciler,
            max_create_retries=settings.VERSION_CREATE_MAX_RETRIES,
        )
        self.schema_search = KnowledgeSchemaSearch(self.store, timeout_s=timeout_s)
        self.assembler = RagContextAssembler(
            self.retrieval,
            self.chat_history,
            schema_search=self.schema_search,
            history_window=settings.RAG_HISTORY_WINDOW,
            attachment_cap=settings.RAG_ATTACHMENT_CAP,
        )
        self.chat = ChatOrchestrator(
            self.assembler, self.llm, self.chat_history, timeout_s=timeout_s
        )

    async def startup(self) -> None:
        """Crée les tables si la configuration le demande (dev/tests)."""
        if self.settings.DB_AUTO_CREATE:
            await create_all(self.engine)
        log.info("container_started", storage_backend=self.storage_backend)

    async def aclose(self) -> None:
        """Libère le client HTTP du scraper et les connexions du moteur SQL."""
        await self.scraper.aclose()
        await self.engine.dispose()


def build_container(settings: Settings | None = None, **overrides) -> Container:
    """Construit le conteneur à partir des paramètres (ou de l'environnement)."""
    return Container(settings or get_settings(), **overrides)

"""
Fakes et doublures pour les tests unitaires.

Ce module fournit des implémentations factices des interfaces Embeddings, LLM, KnowledgeStore et
historique de chat, au comportement déterministe et sans I/O réseau.
"""

from __future__ import annotations

import asyncio
import re
import uuid
import zlib
from collections.abc import AsyncIterator, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

from content_assistant.domain.chat import ChatMessage, ChatRole, ChatSession
from content_assistant.domain.errors import (
    CompletionError,
    EmbeddingError,
    StoreError,
    ValidationError,
)
from content_assistant.domain.knowledge import (
    KnowledgeBaseEntry,
    KnowledgeFilter,
    KnowledgeUpdate,
    NewKnowledgeEntry,
)
from content_assistant.infra.embeddings.base import Embeddings
from content_assistant.infra.llm.base import LLM, AssistantMessage
from content_assistant.infra.vecstores.base import KnowledgeStore
from content_assistant.infra.vecstores.memory_adapter import MemoryKnowledgeStore

FAKE_DIM = 64
_WORD = re.compile(r"\w+")


class FakeEmbeddings(Embeddings):
    """
    Implémentation factice d'Embeddings pour les tests.

    Sac de mots haché (crc32) dans un vecteur de dimension fixe: deux textes identiques ont une
    similarité de 1.0. Un vecteur fixe peut être imposé pour toutes les requêtes.
    """

    def __init__(
        self, fixed: list[float] | None = None, fail: bool = False, delay_s: float = 0.0
    ) -> None:
        self.fixed = fixed
        self.fail = fail
        self.delay_s = delay_s
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.fail:
            raise EmbeddingError(503, "embedding service down")
        if self.fixed is not None:
            return list(self.fixed)
        vec = [0.0] * FAKE_DIM
        for word in _WORD.findall(text.lower()):
            vec[zlib.crc32(word.encode("utf-8")) % FAKE_DIM] += 1.0
        return vec


class FakeLLM(LLM):
    """
    Implémentation factice de LLM pour les tests.

    Retourne les réponses prédéfinies dans l'ordre (la dernière est répétée). `fail_from` fait
    échouer les appels à partir de l'index donné; `delay_s` ralentit chaque fragment du streaming.
    """

    model = "fake-llm"

    def __init__(
        self,
        replies: list[str] | None = None,
        fail_from: int | None = None,
        status_code: int = 502,
        delay_s: float = 0.0,
    ) -> None:
        self.replies = replies or ["Bonjour, voici la réponse."]
        self.delay_s = delay_s
        self.fail_from = fail_from
        self.status_code = status_code
        self.calls: list[list[dict[str, str]]] = []

    def _next(self, messages: list[dict[str, str]]) -> str:
        index = len(self.calls)
        self.calls.append(messages)
        if self.fail_from is not None and index >= self.fail_from:
            raise CompletionError(self.status_code, "completion service failed")
        return self.replies[min(index, len(self.replies) - 1)]

    async def complete(
        self,
        messages: list[dict[str, str]],
        *,
        tools: list[dict[str, Any]] | None = None,
        tool_choice: str | None = None,
    ) -> AssistantMessage:
        content = self._next(messages)
        return AssistantMessage(content=content, usage={"total_tokens": len(content.split())})

    async def stream(self, messages: list[dict[str, str]]) -> AsyncIterator[str]:
        content = self._next(messages)
        for word in content.split(" "):
            if self.delay_s:
                await asyncio.sleep(self.delay_s)
            yield word + " "


class FlakyStore(KnowledgeStore):
    """Store mémoire dont chaque opération peut être mise en échec (ou ralentie)."""

    backend = "flaky"

    def __init__(self, inner: KnowledgeStore | None = None, delay_s: float = 0.0) -> None:
        self.inner = inner or MemoryKnowledgeStore()
        self.delay_s = delay_s
        self.failing: set[str] = set()

    async def _gate(self, op: str) -> None:
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if op in self.failing:
            raise StoreError(503, f"{op} unavailable")

    async def insert(self, entry: NewKnowledgeEntry) -> KnowledgeBaseEntry:
        await self._gate("insert")
        return await self.inner.insert(entry)

    async def bulk_insert(self, entries: Sequence[NewKnowledgeEntry]) -> list[KnowledgeBaseEntry]:
        await self._gate("insert")
        return await self.inner.bulk_insert(entries)

    async def update(self, flt: KnowledgeFilter, changes: KnowledgeUpdate) -> int:
        await self._gate("update")
        return await self.inner.update(flt, changes)

    async def delete(self, flt: KnowledgeFilter) -> int:
        await self._gate("delete")
        return await self.inner.delete(flt)

    async def similarity_search(
        self,
        project_id: str,
        session_id: str | None,
        query_embedding: Sequence[float],
        threshold: float,
        limit: int,
    ) -> list[KnowledgeBaseEntry]:
        await self._gate("similarity")
        return await self.inner.similarity_search(
            project_id, session_id, query_embedding, threshold, limit
        )

    async def list_entries(
        self, flt: KnowledgeFilter, limit: int | None = None
    ) -> list[KnowledgeBaseEntry]:
        await self._gate("list")
        return await self.inner.list_entries(flt, limit)

    async def count(self, flt: KnowledgeFilter) -> int:
        await self._gate("count")
        return await self.inner.count(flt)


class FakeChatHistory:
    """Journal de chat en mémoire (lecture et écriture)."""

    def __init__(self, messages: list[ChatMessage] | None = None, fail: bool = False) -> None:
        self.messages = list(messages or [])
        self.sessions: dict[str, ChatSession] = {}
        self.fail = fail
        self.requested_limits: list[int] = []

    async def recent_messages(
        self, session_id: str, limit: int = 10, project_id: str | None = None
    ) -> list[ChatMessage]:
        self.requested_limits.append(limit)
        if self.fail:
            raise StoreError(503, "history unavailable")
        session = self.sessions.get(session_id)
        if project_id is not None and session is not None and session.project_id != project_id:
            raise ValidationError(f"chat session {session_id} belongs to another project")
        return [m for m in self.messages if m.session_id == session_id]

    async def append(
        self,
        session_id: str,
        project_id: str,
        role: ChatRole,
        content: str,
        attachments: list[dict[str, Any]] | None = None,
    ) -> ChatMessage:
        self.sessions.setdefault(
            session_id,
            ChatSession(id=session_id, project_id=project_id, created_at=datetime.now(UTC)),
        )
        message = ChatMessage(
            id=str(uuid.uuid4()),
            session_id=session_id,
            role=role,
            content=content,
            attachments=attachments or [],
            created_at=datetime.now(UTC),
        )
        self.messages.append(message)
        return message

    async def get_session(self, session_id: str) -> ChatSession | None:
        return self.sessions.get(session_id)

    async def set_title(self, session_id: str, title: str) -> None:
        session = self.sessions[session_id]
        self.sessions[session_id] = session.model_copy(update={"title": title})


def make_messages(session_id: str, count: int) -> list[ChatMessage]:
    """Construit `count` messages alternés user/assistant, du plus ancien au plus récent."""
    base = datetime(2026, 1, 1, tzinfo=UTC)
    return [
        ChatMessage(
            id=f"m{i}",
            session_id=session_id,
            role=ChatRole.USER if i % 2 == 0 else ChatRole.ASSISTANT,
            content=f"message {i}",
            created_at=base + timedelta(seconds=i),
        )
        for i in range(count)
    ]


def make_entry(
    entry_id: str,
    project_id: str = "p1",
    session_id: str | None = None,
    content: str = "contenu",
    source: str = "user_upload",
    embedding: list[float] | None = None,
) -> KnowledgeBaseEntry:
    """Entrée de connaissance prête à l'emploi (pour les tests de fusion)."""
    return KnowledgeBaseEntry(
        id=entry_id,
        project_id=project_id,
        session_id=session_id,
        content=content,
        source=source,
        embedding=embedding or [1.0, 0.0],
        created_at=datetime.now(UTC),
    )

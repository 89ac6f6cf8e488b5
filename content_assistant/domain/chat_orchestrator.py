"""Orchestrateur de chat de l'assistant de contenu.

Ce module coordonne l'assemblage du contexte RAG, la génération des réponses (complète ou en
streaming) et la tenue du journal de conversation. Le titre de session est un effet secondaire:
son échec est journalisé puis ignoré.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any, Protocol

import structlog
from pydantic import BaseModel, Field

from content_assistant.app.metrics import LLM_REQUESTS
from content_assistant.domain.chat import ChatMessage, ChatRole, ChatSession
from content_assistant.domain.errors import CollaboratorError, CompletionError
from content_assistant.domain.rag_context import RagContext, RagContextAssembler
from content_assistant.domain.timeouts import bounded
from content_assistant.infra.llm.base import LLM

KNOWLEDGE_SEPARATOR = "\n---\n"
DEFAULT_SESSION_TITLE = "New Chat"
TITLE_MAX_CHARS = 50
TITLE_EXCERPT_CHARS = 200

SYSTEM_WITH_CONTEXT = (
    "You are a helpful assistant. Use the following context to answer the user's question.\n\n"
    "Context:\n{context}\n\n"
    "If the context doesn't contain relevant information, say so politely and ask for more "
    "specific information or suggest uploading relevant documents."
)
SYSTEM_WITHOUT_CONTEXT = (
    "You are a helpful assistant. The user hasn't provided any context or knowledge base "
    "content yet. Please ask them to upload documents or provide information that you can "
    "help them with."
)
TITLE_SYSTEM = (
    "You are a helpful assistant that creates concise chat titles. "
    "Always respond with just the title, nothing else."
)
TITLE_PROMPT = (
    "Based on the following conversation, create a concise, descriptive title (max 6 words) "
    "that captures the main topic or purpose of the chat:\n\n"
    "User: {user}...\nAI: {assistant}...\n\n"
    "Requirements:\n- Maximum 6 words\n- Descriptive and clear\n"
    "- No quotes or special characters\n- Capitalize appropriately\n\nTitle:"
)


class ChatLog(Protocol):
    """Journal de conversation utilisé par l'orchestrateur."""

    async def append(
        self,
        session_id: str,
        project_id: str,
        role: ChatRole,
        content: str,
        attachments: list[dict[str, Any]] | None = None,
    ) -> ChatMessage: ...

    async def get_session(self, session_id: str) -> ChatSession | None: ...

    async def set_title(self, session_id: str, title: str) -> None: ...


class ChatReply(BaseModel):
    """Réponse de l'assistant et éléments de contexte utilisés."""

    content: str
    usage: dict[str, int] = Field(default_factory=dict)
    knowledge_ids: list[str] = Field(default_factory=list)
    title: str | None = None


def compose_messages(context: RagContext, message: str) -> list[dict[str, str]]:
    """Construit les messages système, historique et utilisateur."""
    knowledge = KNOWLEDGE_SEPARATOR.join(k.content for k in context.relevant_knowledge)
    system = SYSTEM_WITH_CONTEXT.format(context=knowledge) if knowledge else SYSTEM_WITHOUT_CONTEXT
    messages = [{"role": "system", "content": system}]
    for past in context.chat_history:
        if past.role == ChatRole.SYSTEM:
            continue
        messages.append({"role": past.role.value, "content": past.content})
    messages.append({"role": "user", "content": message})
    return messages


def clean_title(raw: str | None) -> str:
    """Nettoie un titre généré (guillemets, longueur)."""
    title = (raw or "").replace('"', "").replace("'", "").strip()
    if not title:
        return DEFAULT_SESSION_TITLE
    if len(title) > TITLE_MAX_CHARS:
        return title[:TITLE_MAX_CHARS] + "..."
    return title


class ChatOrchestrator:
    """Orchestrateur pour les conversations de l'assistant de contenu."""

    def __init__(
        self,
        assembler: RagContextAssembler,
        llm: LLM,
        chat_log: ChatLog,
        timeout_s: float | None = 15.0,
    ) -> None:
        """Initialise l'orchestrateur avec l'assembleur de contexte, le LLM et le journal."""
        self.assembler = assembler
        self.llm = llm
        self.chat_log = chat_log
        self.timeout_s = timeout_s
        self._log = structlog.get_logger(__name__).bind(component="chat_orchestrator")

    async def reply(
        self,
        project_id: str,
        session_id: str,
        message: str,
        has_attachments: bool = False,
        attachments: list[dict[str, Any]] | None = None,
    ) -> ChatReply:
        """
        Génère la réponse de l'assistant à un message utilisateur.

        Raises:
            CompletionError: Échec du service de complétion (propagé).
        """
        context = await self.assembler.build(
            project_id, session_id, message, has_attachments=has_attachments
        )
        await self.chat_log.append(session_id, project_id, ChatRole.USER, message, attachments)
        try:
            answer = await bounded(
                self.llm.complete(compose_messages(context, message)),
                self.timeout_s,
                "completion",
                CompletionError,
            )
        except CollaboratorError:
            LLM_REQUESTS.labels(kind="complete", outcome="error").inc()
            raise
        LLM_REQUESTS.labels(kind="complete", outcome="ok").inc()
        await self.chat_log.append(session_id, project_id, ChatRole.ASSISTANT, answer.content)
        title = await self.ensure_session_title(session_id, message, answer.content)
        return ChatReply(
            content=answer.content,
            usage=answer.usage,
            knowledge_ids=[k.id for k in context.relevant_knowledge],
            title=title,
        )

    async def stream_reply(
        self,
        project_id: str,
        session_id: str,
        message: str,
        has_attachments: bool = False,
        attachments: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[str]:
        """Produit la réponse fragment par fragment; la réponse complète est journalisée à la fin.

        L'attente de chaque fragment est bornée par `timeout_s`.

        Raises:
            CompletionError: Échec ou silence prolongé du service de complétion.
        """
        context = await self.assembler.build(
            project_id, session_id, message, has_attachments=has_attachments
        )
        await self.chat_log.append(session_id, project_id, ChatRole.USER, message, attachments)
        parts: list[str] = []
        tokens = self.llm.stream(compose_messages(context, message))
        try:
            while True:
                token = await bounded(
                    anext(tokens, None), self.timeout_s, "completion stream", CompletionError
                )
                if token is None:
                    break
                parts.append(token)
                yield token
        except CollaboratorError:
            LLM_REQUESTS.labels(kind="stream", outcome="error").inc()
            raise
        LLM_REQUESTS.labels(kind="stream", outcome="ok").inc()
        full = "".join(parts)
        await self.chat_log.append(session_id, project_id, ChatRole.ASSISTANT, full)
        await self.ensure_session_title(session_id, message, full)

    async def ensure_session_title(
        self, session_id: str, user_message: str, assistant_message: str = ""
    ) -> str | None:
        """
        Génère un titre court si la session n'en a pas encore.

        Effet secondaire: tout échec est journalisé et renvoie None.
        """
        try:
            session = await self.chat_log.get_session(session_id)
            if session is not None and session.title:
                return session.title
            prompt = TITLE_PROMPT.format(
                user=user_message[:TITLE_EXCERPT_CHARS],
                assistant=assistant_message[:TITLE_EXCERPT_CHARS],
            )
            answer = await bounded(
                self.llm.complete(
                    [
                        {"role": "system", "content": TITLE_SYSTEM},
                        {"role": "user", "content": prompt},
                    ]
                ),
                self.timeout_s,
                "title completion",
                CompletionError,
            )
            title = clean_title(answer.content)
            await self.chat_log.set_title(session_id, title)
        except CollaboratorError as exc:
            LLM_REQUESTS.labels(kind="title", outcome="error").inc()
            self._log.warning(
                "session_title_failed", session_id=session_id, error_type=type(exc).__name__
            )
            return None
        LLM_REQUESTS.labels(kind="title", outcome="ok").inc()
        return title

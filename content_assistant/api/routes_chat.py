"""Routes de chat de l'assistant de contenu.

Ce module fournit les endpoints de conversation: réponse complète, réponse en streaming (SSE) et
lecture de l'historique d'une session.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import structlog
from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from content_assistant.api.deps import get_container
from content_assistant.api.schemas import ChatMessageOut, ChatRequest
from content_assistant.core.container import Container
from content_assistant.domain.chat_orchestrator import ChatReply
from content_assistant.domain.errors import CollaboratorError

STREAM_DONE = "[DONE]"
MAX_HISTORY_LIMIT = 100

router = APIRouter(prefix="/chat", tags=["chat"])
log = structlog.get_logger(__name__).bind(component="routes_chat")


def _sse(data: str, event: str | None = None) -> str:
    lines = [f"event: {event}"] if event else []
    lines.extend(f"data: {part}" for part in data.split("\n"))
    return "\n".join(lines) + "\n\n"


@router.post("/{session_id}/messages", response_model=ChatReply)
async def post_message(
    session_id: str, req: ChatRequest, container: Container = Depends(get_container)
) -> ChatReply:
    """Envoie un message et retourne la réponse complète de l'assistant."""
    return await container.chat.reply(
        req.project_id,
        session_id,
        req.message,
        has_attachments=req.has_attachments or bool(req.attachments),
        attachments=req.attachments,
    )


@router.post("/{session_id}/messages/stream")
async def stream_message(
    session_id: str, req: ChatRequest, container: Container = Depends(get_container)
) -> StreamingResponse:
    """
    Envoie un message et diffuse la réponse en Server-Sent Events.

    Chaque fragment est un événement `data:`; la fin est signalée par `data: [DONE]`. Un échec du
    service en cours de flux est émis comme événement `error` (le statut HTTP est déjà envoyé).
    """

    async def events() -> AsyncIterator[str]:
        try:
            async for token in container.chat.stream_reply(
                req.project_id,
                session_id,
                req.message,
                has_attachments=req.has_attachments or bool(req.attachments),
                attachments=req.attachments,
            ):
                yield _sse(token)
        except CollaboratorError as exc:
            log.warning(
                "chat_stream_failed",
                session_id=session_id,
                status_code=exc.status_code,
                error_type=type(exc).__name__,
            )
            yield _sse(exc.message, event="error")
            return
        yield _sse(STREAM_DONE)

    return StreamingResponse(events(), media_type="text/event-stream")


@router.get("/{session_id}/messages", response_model=list[ChatMessageOut])
async def list_messages(
    session_id: str,
    limit: int = Query(default=50, ge=1, le=MAX_HISTORY_LIMIT),
    project_id: str | None = Query(default=None, min_length=1),
    container: Container = Depends(get_container),
) -> list[ChatMessageOut]:
    """Derniers messages de la session, du plus ancien au plus récent.

    Avec `project_id`, une session d'un autre projet est refusée (400).
    """
    messages = await container.chat_history.recent_messages(session_id, limit, project_id)
    return [
        ChatMessageOut(id=m.id, role=m.role.value, content=m.content, created_at=m.created_at)
        for m in messages
    ]

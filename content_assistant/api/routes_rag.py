"""Route d'assemblage du contexte RAG (`/rag/context`)."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from content_assistant.api.deps import get_container
from content_assistant.api.schemas import (
    ChatMessageOut,
    KnowledgeEntryOut,
    RagContextRequest,
    RagContextResponse,
)
from content_assistant.core.container import Container

router = APIRouter(prefix="/rag", tags=["rag"])


@router.post("/context", response_model=RagContextResponse)
async def rag_context(
    req: RagContextRequest, container: Container = Depends(get_container)
) -> RagContextResponse:
    ctx = await container.assembler.build(
        req.project_id,
        req.session_id,
        req.query,
        has_attachments=req.has_attachments,
        include_schema=req.include_schema,
    )
    return RagContextResponse(
        chat_history=[
            ChatMessageOut(id=m.id, role=m.role.value, content=m.content, created_at=m.created_at)
            for m in ctx.chat_history
        ],
        relevant_knowledge=[KnowledgeEntryOut.from_entry(k) for k in ctx.relevant_knowledge],
        schema_data=(
            [s.model_dump(mode="json") for s in ctx.schema_data]
            if ctx.schema_data is not None
            else None
        ),
    )

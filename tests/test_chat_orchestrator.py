"""
Tests pour l'orchestrateur de chat.

Ce module teste la composition des messages, la réponse complète et en streaming, la tenue du
journal et la génération du titre de session (effet secondaire non bloquant).
"""

from __future__ import annotations

import pytest

from content_assistant.domain.chat import ChatRole
from content_assistant.domain.chat_orchestrator import (
    DEFAULT_SESSION_TITLE,
    SYSTEM_WITHOUT_CONTEXT,
    ChatOrchestrator,
    clean_title,
    compose_messages,
)
from content_assistant.domain.errors import CompletionError
from content_assistant.domain.rag_context import RagContext, RagContextAssembler
from content_assistant.domain.retrieval import RetrievalPipeline
from content_assistant.infra.vecstores.memory_adapter import MemoryKnowledgeStore
from tests.fakes import FakeChatHistory, FakeEmbeddings, FakeLLM, make_entry, make_messages

PROJECT = "p1"
SESSION = "s1"
TITLE_LIMIT = 50
HTTP_GATEWAY_TIMEOUT = 504


def _orchestrator(
    llm: FakeLLM, history: FakeChatHistory, timeout_s: float | None = 15.0
) -> ChatOrchestrator:
    retrieval = RetrievalPipeline(MemoryKnowledgeStore(), FakeEmbeddings())
    return ChatOrchestrator(RagContextAssembler(retrieval, history), llm, history, timeout_s)


def test_compose_messages_with_context() -> None:
    """Le contexte est injecté dans le message système; l'historique précède la question."""
    ctx = RagContext(
        chat_history=make_messages(SESSION, 2),
        relevant_knowledge=[make_entry("k1", content="Les tomates aiment le soleil.")],
    )
    messages = compose_messages(ctx, "Quand planter ?")
    assert messages[0]["role"] == "system"
    assert "Les tomates aiment le soleil." in messages[0]["content"]
    assert [m["role"] for m in messages[1:]] == ["user", "assistant", "user"]
    assert messages[-1]["content"] == "Quand planter ?"


def test_compose_messages_without_context() -> None:
    messages = compose_messages(RagContext(), "Bonjour")
    assert messages[0]["content"] == SYSTEM_WITHOUT_CONTEXT


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ('"Jardinage de printemps"', "Jardinage de printemps"),
        ("", DEFAULT_SESSION_TITLE),
        (None, DEFAULT_SESSION_TITLE),
    ],
)
def test_clean_title(raw, expected) -> None:
    assert clean_title(raw) == expected


def test_clean_title_truncates() -> None:
    title = clean_title("x" * 80)
    assert title == "x" * TITLE_LIMIT + "..."


@pytest.mark.asyncio
async def test_reply_logs_both_messages_and_sets_title() -> None:
    """La réponse est journalisée après le message utilisateur; un titre est généré."""
    history = FakeChatHistory()
    llm = FakeLLM(replies=["Voici la réponse.", "Titre de la session"])
    reply = await _orchestrator(llm, history).reply(PROJECT, SESSION, "Ma question")
    assert reply.content == "Voici la réponse."
    assert reply.title == "Titre de la session"
    assert [m.role for m in history.messages] == [ChatRole.USER, ChatRole.ASSISTANT]
    assert history.sessions[SESSION].title == "Titre de la session"


@pytest.mark.asyncio
async def test_existing_title_is_not_regenerated() -> None:
    history = FakeChatHistory()
    llm = FakeLLM(replies=["Réponse 1", "Titre", "Réponse 2"])
    orch = _orchestrator(llm, history)
    await orch.reply(PROJECT, SESSION, "Q1")
    second = await orch.reply(PROJECT, SESSION, "Q2")
    assert second.title == "Titre"
    assert len(llm.calls) == 3


@pytest.mark.asyncio
async def test_title_failure_does_not_fail_reply() -> None:
    """L'échec du titre est journalisé et ignoré."""
    history = FakeChatHistory()
    llm = FakeLLM(replies=["Réponse"], fail_from=1)
    reply = await _orchestrator(llm, history).reply(PROJECT, SESSION, "Question")
    assert reply.content == "Réponse"
    assert reply.title is None


@pytest.mark.asyncio
async def test_completion_failure_propagates() -> None:
    history = FakeChatHistory()
    with pytest.raises(CompletionError):
        await _orchestrator(FakeLLM(fail_from=0), history).reply(PROJECT, SESSION, "Question")
    assert [m.role for m in history.messages] == [ChatRole.USER]


@pytest.mark.asyncio
async def test_stream_reply_yields_tokens_and_logs_full_answer() -> None:
    history = FakeChatHistory()
    llm = FakeLLM(replies=["un deux trois", "Titre"])
    tokens = [t async for t in _orchestrator(llm, history).stream_reply(PROJECT, SESSION, "Q")]
    assert "".join(tokens).strip() == "un deux trois"
    assert history.messages[-1].role == ChatRole.ASSISTANT
    assert history.messages[-1].content.strip() == "un deux trois"


@pytest.mark.asyncio
async def test_stalled_stream_times_out() -> None:
    """Un fragment trop lent interrompt le flux (504) et aucune réponse n'est journalisée."""
    history = FakeChatHistory()
    orchestrator = _orchestrator(FakeLLM(replies=["lent"], delay_s=0.5), history, timeout_s=0.05)
    with pytest.raises(CompletionError) as exc_info:
        async for _ in orchestrator.stream_reply(PROJECT, SESSION, "Q"):
            pass
    assert exc_info.value.status_code == HTTP_GATEWAY_TIMEOUT
    assert [m.role for m in history.messages] == [ChatRole.USER]


@pytest.mark.asyncio
async def test_slow_stream_within_bound_per_token_completes() -> None:
    """La borne s'applique à chaque fragment, pas à la durée totale du flux."""
    history = FakeChatHistory()
    llm = FakeLLM(replies=["a b c d e f", "Titre"], delay_s=0.02)
    orchestrator = _orchestrator(llm, history, timeout_s=0.1)
    tokens = [t async for t in orchestrator.stream_reply(PROJECT, SESSION, "Q")]
    assert "".join(tokens).strip() == "a b c d e f"

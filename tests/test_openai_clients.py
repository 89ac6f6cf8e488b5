"""
Tests pour les clients OpenAI (embeddings et complétion).

Le SDK est remplacé par des doublures; on vérifie l'extraction des résultats et la traduction des
erreurs en statuts de type HTTP.
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from content_assistant.domain.errors import CompletionError, EmbeddingError
from content_assistant.infra.embeddings.openai_embedder import OpenAIEmbedder
from content_assistant.infra.llm.openai_client import OpenAILLM

HTTP_TOO_MANY_REQUESTS = 429
HTTP_BAD_GATEWAY = 502
HTTP_SERVICE_UNAVAILABLE = 503
HTTP_GATEWAY_TIMEOUT = 504
TOTAL_TOKENS = 12

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/test")


def _status_error(status: int) -> openai.APIStatusError:
    return openai.APIStatusError(
        "error", response=httpx.Response(status, request=_REQUEST), body=None
    )


def _embedding_client(**create_kwargs) -> MagicMock:
    client = MagicMock()
    client.embeddings.create = AsyncMock(**create_kwargs)
    return client


@pytest.mark.asyncio
async def test_embedder_without_key_is_unavailable() -> None:
    with pytest.raises(EmbeddingError) as exc_info:
        await OpenAIEmbedder(api_key=None).embed("texte")
    assert exc_info.value.status_code == HTTP_SERVICE_UNAVAILABLE


@pytest.mark.asyncio
async def test_embedder_returns_vector() -> None:
    resp = SimpleNamespace(data=[SimpleNamespace(embedding=[0.1, 0.2, 0.3])])
    client = _embedding_client(return_value=resp)
    embedder = OpenAIEmbedder(api_key=None, model="m", client=client)
    assert await embedder.embed("texte") == [0.1, 0.2, 0.3]
    client.embeddings.create.assert_awaited_once_with(model="m", input="texte")


@pytest.mark.asyncio
async def test_embedder_embed_many_keeps_order() -> None:
    async def create(model, input):
        return SimpleNamespace(data=[SimpleNamespace(embedding=[float(len(input))])])

    client = MagicMock()
    client.embeddings.create = create
    embedder = OpenAIEmbedder(api_key=None, client=client)
    assert await embedder.embed_many(["a", "bbb", "cc"], concurrency=2) == [[1.0], [3.0], [2.0]]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (openai.APITimeoutError(request=_REQUEST), HTTP_GATEWAY_TIMEOUT),
        (_status_error(HTTP_TOO_MANY_REQUESTS), HTTP_TOO_MANY_REQUESTS),
        (openai.APIConnectionError(request=_REQUEST), HTTP_BAD_GATEWAY),
    ],
)
async def test_embedder_translates_sdk_errors(error, expected) -> None:
    embedder = OpenAIEmbedder(api_key=None, client=_embedding_client(side_effect=error))
    with pytest.raises(EmbeddingError) as exc_info:
        await embedder.embed("texte")
    assert exc_info.value.status_code == expected


def _completion_client(**create_kwargs) -> MagicMock:
    client = MagicMock()
    client.chat.completions.create = AsyncMock(**create_kwargs)
    return client


@pytest.mark.asyncio
async def test_llm_complete_extracts_content_and_usage() -> None:
    resp = SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content="Bonjour", tool_calls=None))],
        usage=SimpleNamespace(prompt_tokens=10, completion_tokens=2, total_tokens=TOTAL_TOKENS),
    )
    client = _completion_client(return_value=resp)
    llm = OpenAILLM(model="gpt-test", client=client)
    message = await llm.complete([{"role": "user", "content": "Salut"}])
    assert message.content == "Bonjour"
    assert message.usage["total_tokens"] == TOTAL_TOKENS
    kwargs = client.chat.completions.create.await_args.kwargs
    assert kwargs["model"] == "gpt-test"
    assert "tools" not in kwargs


@pytest.mark.asyncio
async def test_llm_without_key_is_unavailable() -> None:
    with pytest.raises(CompletionError) as exc_info:
        await OpenAILLM(api_key=None).complete([{"role": "user", "content": "x"}])
    assert exc_info.value.status_code == HTTP_SERVICE_UNAVAILABLE


@pytest.mark.asyncio
async def test_llm_complete_translates_timeout() -> None:
    llm = OpenAILLM(client=_completion_client(side_effect=openai.APITimeoutError(request=_REQUEST)))
    with pytest.raises(CompletionError) as exc_info:
        await llm.complete([{"role": "user", "content": "x"}])
    assert exc_info.value.status_code == HTTP_GATEWAY_TIMEOUT


@pytest.mark.asyncio
async def test_llm_stream_yields_deltas() -> None:
    def chunk(text):
        return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=text))])

    async def chunks():
        for part in ("Bon", None, "jour"):
            yield chunk(part)
        yield SimpleNamespace(choices=[])

    llm = OpenAILLM(client=_completion_client(return_value=chunks()))
    parts = [p async for p in llm.stream([{"role": "user", "content": "x"}])]
    assert parts == ["Bon", "jour"]


@pytest.mark.asyncio
async def test_llm_stream_translates_errors() -> None:
    llm = OpenAILLM(client=_completion_client(side_effect=_status_error(500)))
    with pytest.raises(CompletionError) as exc_info:
        async for _ in llm.stream([{"role": "user", "content": "x"}]):
            pass
    assert exc_info.value.status_code == 500

"""
Client LLM basé sur l'API OpenAI (SDK asynchrone).

Implémente l'interface LLM en supportant:
- chat.completions (réponse complète, outils optionnels)
- chat.completions en streaming (fragments de texte jusqu'à la sentinelle de fin)
Les erreurs du SDK sont traduites en `CompletionError` avec statut de type HTTP.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import httpx
import openai
from openai import AsyncOpenAI

from content_assistant.core.http_constants import (
    HTTP_BAD_GATEWAY,
    HTTP_GATEWAY_TIMEOUT,
    HTTP_SERVICE_UNAVAILABLE,
)
from content_assistant.domain.errors import CompletionError
from content_assistant.infra.llm.base import LLM, AssistantMessage


def _translate(exc: openai.APIError) -> CompletionError:
    if isinstance(exc, openai.APITimeoutError):
        return CompletionError(HTTP_GATEWAY_TIMEOUT, "completion request timed out")
    if isinstance(exc, openai.APIStatusError):
        return CompletionError(exc.status_code, f"OpenAI API error: {exc.status_code}")
    return CompletionError(HTTP_BAD_GATEWAY, str(exc))


class OpenAILLM(LLM):
    """LLM basé sur OpenAI."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-4.1-mini",
        temperature: float = 0.7,
        max_tokens: int = 2000,
        timeout_s: float = 15.0,
        base_url: str | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        """Initialize the OpenAILLM client."""
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        if client is not None:
            self.client: AsyncOpenAI | None = client
        elif api_key:
            self.client = AsyncOpenAI(
                api_key=api_key,
                base_url=base_url,
                timeout=httpx.Timeout(timeout_s, connect=5.0),
            )
        else:
            self.client = None

    def _require_client(self) -> AsyncOpenAI:
        if self.client is None:
            raise CompletionError(HTTP_SERVICE_UNAVAILABLE, "completion service not configured")
        return self.client

    async def complete(
        self,
        messages: list[dict[str, str]],
        *,
        tools: list[dict[str, Any]] | None = None,
        tool_choice: str | None = None,
    ) -> AssistantMessage:
        """
        Génère un message assistant complet.

        - tools / tool_choice sont transmis tels quels s'ils sont fournis
        - l'usage (tokens) est extrait quand l'API le renvoie
        """
        client = self._require_client()
        kwargs: dict[str, Any] = {}
        if tools:
            kwargs["tools"] = tools
        if tool_choice:
            kwargs["tool_choice"] = tool_choice
        try:
            resp = await client.chat.completions.create(
                model=self.model,
                messages=messages,  # type: ignore[arg-type]
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                **kwargs,
            )
        except openai.APIError as exc:
            raise _translate(exc) from exc
        if not resp.choices:
            raise CompletionError(HTTP_BAD_GATEWAY, "empty completion response")
        message = resp.choices[0].message
        tool_calls = [tc.model_dump() for tc in (message.tool_calls or [])]
        return AssistantMessage(
            content=message.content or "",
            tool_calls=tool_calls,
            usage=self._extract_usage_dict(resp),
        )

    async def stream(self, messages: list[dict[str, str]]) -> AsyncIterator[str]:
        """Produit les fragments de texte d'une complétion en streaming."""
        client = self._require_client()
        try:
            chunks = await client.chat.completions.create(
                model=self.model,
                messages=messages,  # type: ignore[arg-type]
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                stream=True,
            )
            async for chunk in chunks:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    yield delta
        except openai.APIError as exc:
            raise _translate(exc) from exc

    def _extract_usage_dict(self, resp: Any) -> dict[str, int]:
        """
        Extrait les infos d'usage depuis la réponse OpenAI.

        Toujours un dict.
        """
        usage = getattr(resp, "usage", None)
        if not usage:
            return {}
        return {
            "prompt_tokens": int(getattr(usage, "prompt_tokens", 0) or 0),
            "completion_tokens": int(getattr(usage, "completion_tokens", 0) or 0),
            "total_tokens": int(getattr(usage, "total_tokens", 0) or 0),
        }

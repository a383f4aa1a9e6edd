"""OpenAI-compatible chat completion client used for answer synthesis."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from balanced_research.config import settings


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class CompletionResponse:
    text: str
    usage: Usage = field(default_factory=Usage)
    finish_reason: str | None = None


class ChatCompletionsAdapter:
    """Thin wrapper mapping `system` + user messages onto the chat completions API."""

    def __init__(self, openai_client: Any):
        self._client = openai_client

    @staticmethod
    def _temperature_for_model(model: str, temperature: float) -> float:
        # Some GPT-5-compatible gateways reject any temperature other than 1.
        lowered = (model or "").lower()
        if "gpt-5" in lowered:
            return 1
        return temperature

    @staticmethod
    def _to_openai_messages(system: str, messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        openai_messages: list[dict[str, Any]] = []
        if system:
            openai_messages.append({"role": "system", "content": system})
        for message in messages:
            openai_messages.append({"role": message["role"], "content": str(message["content"])})
        return openai_messages

    @staticmethod
    def _from_openai_response(response: Any) -> CompletionResponse:
        choices = getattr(response, "choices", None) or []
        text = ""
        finish_reason = None
        if choices:
            message = getattr(choices[0], "message", None)
            text = getattr(message, "content", None) or ""
            finish_reason = getattr(choices[0], "finish_reason", None)

        usage = getattr(response, "usage", None)
        return CompletionResponse(
            text=text,
            usage=Usage(
                input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            ),
            finish_reason=finish_reason,
        )

    async def create(
        self,
        *,
        model: str,
        max_tokens: int,
        system: str,
        messages: list[dict[str, Any]],
        temperature: float = 0.1,
    ) -> CompletionResponse:
        response = await self._client.chat.completions.create(
            model=model,
            messages=self._to_openai_messages(system, messages),
            max_tokens=max_tokens,
            temperature=self._temperature_for_model(model, temperature),
        )
        return self._from_openai_response(response)


def get_client() -> ChatCompletionsAdapter:
    """Build the chat client from settings."""
    from openai import AsyncOpenAI

    base_url = settings.openai_base_url.strip() or "https://api.openai.com/v1"
    openai_client = AsyncOpenAI(
        api_key=settings.openai_api_key,
        base_url=base_url,
    )
    return ChatCompletionsAdapter(openai_client)


def get_model() -> str:
    """Get the active synthesis model id."""
    return settings.synthesis_model


_client: ChatCompletionsAdapter | None = None


def client() -> ChatCompletionsAdapter:
    """Get or create the LLM client."""
    global _client
    if _client is None:
        _client = get_client()
    return _client

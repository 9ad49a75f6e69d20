"""OpenAI transport."""

from __future__ import annotations

import time
from typing import Any, Sequence

from mindlens.core.errors import (
    ContentBlocked,
    InvalidCredential,
    ModelNotFound,
    ProviderError,
    QuotaExceeded,
    TransientFailure,
)
from mindlens.core.llm.provider import GenerationConfig, PromptMessage, ProviderResponse

OPENAI_PREFERRED_MODELS: tuple[str, ...] = ("gpt-4o-mini", "gpt-4.1-mini", "gpt-4o", "gpt-4.1")

# Model families that do not serve chat completions.
_NON_CHAT_MARKERS = ("embedding", "audio", "realtime", "tts", "transcribe", "image", "search")


def _map_error(exc: Exception, model: str | None) -> ProviderError:
    import openai

    if isinstance(exc, openai.NotFoundError):
        return ModelNotFound(model or "")
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return InvalidCredential(type(exc).__name__)
    if isinstance(exc, openai.RateLimitError):
        return QuotaExceeded(type(exc).__name__)
    return TransientFailure(type(exc).__name__)


class OpenAITransport:
    """ModelTransport using the OpenAI SDK."""

    provider = "openai"
    preferred_models = OPENAI_PREFERRED_MODELS

    def __init__(self) -> None:
        self._clients: dict[str, Any] = {}

    def _client(self, credential: str) -> Any:
        import openai

        client = self._clients.get(credential)
        if client is None:
            client = openai.AsyncOpenAI(api_key=credential, max_retries=0)
            self._clients = {credential: client}
        return client

    async def list_models(self, credential: str) -> list[str]:
        import openai

        try:
            page = await self._client(credential).models.list()
        except openai.OpenAIError as exc:
            raise _map_error(exc, None) from exc
        return [
            m.id
            for m in page.data
            if m.id.startswith("gpt-") and not any(k in m.id for k in _NON_CHAT_MARKERS)
        ]

    async def generate(
        self,
        credential: str,
        model: str,
        messages: Sequence[PromptMessage],
        config: GenerationConfig,
    ) -> ProviderResponse:
        import openai

        start = time.monotonic()
        try:
            response = await self._client(credential).chat.completions.create(
                model=model,
                max_tokens=config.max_output_tokens,
                temperature=config.temperature,
                top_p=config.top_p,
                messages=[{"role": m.role, "content": m.content} for m in messages],
            )
        except openai.OpenAIError as exc:
            raise _map_error(exc, model) from exc
        elapsed_ms = (time.monotonic() - start) * 1000

        choice = response.choices[0] if response.choices else None
        if choice is not None and choice.finish_reason == "content_filter":
            raise ContentBlocked("content_filter")
        content = (choice.message.content or "") if choice else ""
        if not content.strip():
            raise TransientFailure("no text produced")
        usage = response.usage
        return ProviderResponse(
            content=content.strip(),
            model=model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            latency_ms=elapsed_ms,
        )

"""Anthropic Claude transport."""

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

ANTHROPIC_PREFERRED_MODELS: tuple[str, ...] = (
    "claude-3-5-haiku-latest",
    "claude-3-5-haiku-20241022",
    "claude-sonnet-4-20250514",
)


def _map_error(exc: Exception, model: str | None) -> ProviderError:
    import anthropic

    if isinstance(exc, anthropic.NotFoundError):
        return ModelNotFound(model or "")
    if isinstance(exc, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
        return InvalidCredential(type(exc).__name__)
    if isinstance(exc, anthropic.RateLimitError):
        return QuotaExceeded(type(exc).__name__)
    return TransientFailure(type(exc).__name__)


class AnthropicTransport:
    """ModelTransport using the Anthropic SDK."""

    provider = "anthropic"
    preferred_models = ANTHROPIC_PREFERRED_MODELS

    def __init__(self) -> None:
        self._clients: dict[str, Any] = {}

    def _client(self, credential: str) -> Any:
        import anthropic

        client = self._clients.get(credential)
        if client is None:
            client = anthropic.AsyncAnthropic(api_key=credential, max_retries=0)
            self._clients = {credential: client}
        return client

    async def list_models(self, credential: str) -> list[str]:
        import anthropic

        try:
            page = await self._client(credential).models.list(limit=100)
        except anthropic.AnthropicError as exc:
            raise _map_error(exc, None) from exc
        return [m.id for m in page.data]

    async def generate(
        self,
        credential: str,
        model: str,
        messages: Sequence[PromptMessage],
        config: GenerationConfig,
    ) -> ProviderResponse:
        import anthropic

        start = time.monotonic()
        try:
            response = await self._client(credential).messages.create(
                model=model,
                max_tokens=config.max_output_tokens,
                temperature=config.temperature,
                messages=[{"role": m.role, "content": m.content} for m in messages],
            )
        except anthropic.AnthropicError as exc:
            raise _map_error(exc, model) from exc
        elapsed_ms = (time.monotonic() - start) * 1000

        if response.stop_reason == "refusal":
            raise ContentBlocked("refusal")
        text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        ).strip()
        if not text:
            raise TransientFailure("no text produced")
        return ProviderResponse(
            content=text,
            model=model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            latency_ms=elapsed_ms,
        )

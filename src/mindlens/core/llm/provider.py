"""Model transport protocol: the per-provider wire contract used by the gateway."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal, Protocol, Sequence, runtime_checkable

if TYPE_CHECKING:
    from mindlens.core.config.settings import Settings


@dataclass(frozen=True)
class PromptMessage:
    """One role-tagged message sent to the model."""

    role: Literal["user", "assistant"]
    content: str


@dataclass(frozen=True)
class GenerationConfig:
    temperature: float = 0.7
    max_output_tokens: int = 512
    top_p: float = 0.95
    top_k: int = 40

    @classmethod
    def from_settings(cls, settings: Settings) -> GenerationConfig:
        return cls(
            temperature=settings.llm_temperature,
            max_output_tokens=settings.llm_max_output_tokens,
            top_p=settings.llm_top_p,
            top_k=settings.llm_top_k,
        )


@dataclass
class ProviderResponse:
    """Response from a single generate call."""

    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    latency_ms: float = 0.0


@runtime_checkable
class ModelTransport(Protocol):
    """Talks to one AI provider.

    Implementations raise the provider error taxonomy: ``ModelNotFound`` for
    a model that is unavailable to this credential, and ``InvalidCredential``,
    ``QuotaExceeded``, ``ContentBlocked`` or ``TransientFailure`` otherwise.
    """

    provider: str
    preferred_models: tuple[str, ...]

    async def list_models(self, credential: str) -> list[str]: ...

    async def generate(
        self,
        credential: str,
        model: str,
        messages: Sequence[PromptMessage],
        config: GenerationConfig,
    ) -> ProviderResponse: ...


def create_transport(provider_name: str, settings: Settings | None = None) -> ModelTransport:
    """Factory function to create a model transport by provider name.

    Args:
        provider_name: "gemini", "openai", or "anthropic"
        settings: Used for the Gemini API base URL.

    Returns:
        A ModelTransport instance.
    """
    if provider_name == "gemini":
        from mindlens.core.llm.providers.gemini import DEFAULT_API_BASE, GeminiTransport

        base = settings.gemini_api_base if settings is not None else DEFAULT_API_BASE
        return GeminiTransport(api_base=base)
    elif provider_name == "openai":
        from mindlens.core.llm.providers.openai import OpenAITransport

        return OpenAITransport()
    elif provider_name == "anthropic":
        from mindlens.core.llm.providers.anthropic import AnthropicTransport

        return AnthropicTransport()
    else:
        raise ValueError(f"Unknown LLM provider: {provider_name}")

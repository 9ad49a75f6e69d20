"""Model transport implementations."""

from mindlens.core.llm.providers.anthropic import AnthropicTransport
from mindlens.core.llm.providers.gemini import GeminiTransport
from mindlens.core.llm.providers.openai import OpenAITransport

__all__ = ["AnthropicTransport", "GeminiTransport", "OpenAITransport"]

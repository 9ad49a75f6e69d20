"""Gemini transport over the Generative Language REST API."""

from __future__ import annotations

import logging
import time
from typing import Any, Sequence

import httpx

from mindlens.core.errors import (
    InvalidCredential,
    ModelNotFound,
    ProviderError,
    QuotaExceeded,
    TransientFailure,
)
from mindlens.core.llm.catalog import PREFERRED_MODELS
from mindlens.core.llm.provider import GenerationConfig, PromptMessage, ProviderResponse
from mindlens.core.llm.response import NoTextProduced, no_text_error, parse_generate_content

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://generativelanguage.googleapis.com/v1beta"
GENERATE_METHOD = "generateContent"

_ROLE_MAP = {"user": "user", "assistant": "model"}


def _redact(text: str, credential: str) -> str:
    return text.replace(credential, "***") if credential else text


def _status_error(response: httpx.Response, credential: str, model: str | None) -> ProviderError:
    """Map a non-2xx response onto the provider error taxonomy."""
    status = response.status_code
    body = response.text
    logger.debug("Gemini HTTP %d: %s", status, _redact(body[:500], credential))

    if status == 404:
        return ModelNotFound(model or "")
    if status in (401, 403) or (status == 400 and "API_KEY_INVALID" in body):
        return InvalidCredential(f"HTTP {status}")
    if status == 429:
        return QuotaExceeded(f"HTTP {status}")
    return TransientFailure(f"HTTP {status}")


class GeminiTransport:
    """ModelTransport for Google Gemini.

    The credential travels in the ``x-goog-api-key`` header so it never
    appears in request URLs.
    """

    provider = "gemini"
    preferred_models = PREFERRED_MODELS

    def __init__(
        self,
        api_base: str = DEFAULT_API_BASE,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_base = api_base.rstrip("/")
        self._client = client

    async def _request(
        self,
        method: str,
        path: str,
        credential: str,
        *,
        model: str | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        url = f"{self.api_base}/{path.lstrip('/')}"
        headers = {"x-goog-api-key": credential}
        try:
            if self._client is not None:
                response = await self._client.request(method, url, headers=headers, **kwargs)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise TransientFailure(f"transport error: {type(exc).__name__}") from exc

        if response.status_code >= 300:
            raise _status_error(response, credential, model)
        try:
            return response.json()
        except ValueError as exc:
            raise TransientFailure("malformed JSON from provider") from exc

    async def list_models(self, credential: str) -> list[str]:
        """Return models supporting generateContent, following pagination."""
        models: list[str] = []
        page_token: str | None = None
        while True:
            params: dict[str, Any] = {"pageSize": 1000}
            if page_token:
                params["pageToken"] = page_token
            data = await self._request("GET", "models", credential, params=params)
            for entry in data.get("models") or []:
                if GENERATE_METHOD in (entry.get("supportedGenerationMethods") or []):
                    models.append(entry["name"])
            page_token = data.get("nextPageToken")
            if not page_token:
                break
        logger.info("Gemini discovery: %d models support %s", len(models), GENERATE_METHOD)
        return models

    async def generate(
        self,
        credential: str,
        model: str,
        messages: Sequence[PromptMessage],
        config: GenerationConfig,
    ) -> ProviderResponse:
        body = {
            "contents": [
                {"role": _ROLE_MAP[m.role], "parts": [{"text": m.content}]} for m in messages
            ],
            "generationConfig": {
                "temperature": config.temperature,
                "maxOutputTokens": config.max_output_tokens,
                "topP": config.top_p,
                "topK": config.top_k,
            },
        }
        start = time.monotonic()
        data = await self._request(
            "POST", f"{model}:{GENERATE_METHOD}", credential, model=model, json=body
        )
        elapsed_ms = (time.monotonic() - start) * 1000

        parsed = parse_generate_content(data)
        if isinstance(parsed, NoTextProduced):
            raise no_text_error(parsed)

        usage = data.get("usageMetadata") or {}
        return ProviderResponse(
            content=parsed.text,
            model=model,
            input_tokens=int(usage.get("promptTokenCount", 0)),
            output_tokens=int(usage.get("candidatesTokenCount", 0)),
            latency_ms=elapsed_ms,
        )

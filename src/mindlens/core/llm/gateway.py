"""AI provider gateway: discovery, ranked fallback, sticky model, demo mode.

State per process lives in one ``ModelCatalogCache`` owned by the gateway::

    Uninitialized -> Discovering -> Ready(pinned model?)
                                  \\-> Degraded(demo) when demo mode resolves

Fallback is for availability only. ``ModelNotFound`` moves on to the next
candidate; quota, credential and content errors stop the call immediately.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Sequence

from mindlens.core.config.store import validate_credential_format
from mindlens.core.errors import (
    InvalidCredential,
    ModelNotFound,
    NoCredential,
    NoModelsAvailable,
    ProviderError,
    QuotaExceeded,
    TransientFailure,
)
from mindlens.core.llm.catalog import ModelCatalogCache
from mindlens.core.llm.demo import DEMO_MODEL, demo_reply
from mindlens.core.llm.provider import GenerationConfig, PromptMessage, ProviderResponse

if TYPE_CHECKING:
    from mindlens.core.config.store import ResolvedSettings, SettingsStore
    from mindlens.core.llm.provider import ModelTransport

logger = logging.getLogger(__name__)

_PROBE_MESSAGE = PromptMessage(role="user", content="Reply with the single word: ok")
_PROBE_CONFIG = GenerationConfig(temperature=0.0, max_output_tokens=16)


@dataclass
class Completion:
    """Result of a gateway call."""

    text: str
    model: str
    provider: str
    demo_mode: bool = False
    latency_ms: float = 0.0


class AIProviderGateway:
    """Executes one text completion against whichever model is usable."""

    def __init__(
        self,
        settings_store: SettingsStore,
        transport: ModelTransport,
        *,
        config: GenerationConfig | None = None,
        timeout_seconds: float = 20.0,
        demo_when_unconfigured: bool = True,
        cache: ModelCatalogCache | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._settings = settings_store
        self._transport = transport
        self._config = config or GenerationConfig()
        self._timeout = timeout_seconds
        self._demo_when_unconfigured = demo_when_unconfigured
        self.cache = cache if cache is not None else ModelCatalogCache()
        self._rng = rng

    @property
    def provider(self) -> str:
        return self._transport.provider

    def uses_demo(self, resolved: ResolvedSettings) -> bool:
        if resolved.demo_mode:
            return True
        return not resolved.credential_present and self._demo_when_unconfigured

    async def complete(
        self, messages: Sequence[PromptMessage], config: GenerationConfig | None = None
    ) -> Completion:
        """Run one completion.

        Raises:
            NoCredential, InvalidCredential, NoModelsAvailable, QuotaExceeded,
            ContentBlocked, TransientFailure
        """
        resolved = self._settings.resolve()
        if self.uses_demo(resolved):
            return Completion(
                text=demo_reply(self._rng),
                model=DEMO_MODEL,
                provider=self.provider,
                demo_mode=True,
            )
        if not resolved.credential_present:
            raise NoCredential("no credential configured")

        self.cache.bind(resolved.credential)
        if not self.cache.is_populated:
            self.cache.store_models(await self._discover(resolved.credential))

        response = await self._run_candidates(
            self.cache, resolved.credential, messages, config or self._config
        )
        return Completion(
            text=response.content,
            model=response.model,
            provider=self.provider,
            latency_ms=response.latency_ms,
        )

    async def test_credential(self, credential: Any) -> dict[str, Any]:
        """Check a candidate credential without touching the shared cache.

        Validates the format, runs discovery and a short test call.
        """
        clean = validate_credential_format(self.provider, credential)
        scratch = ModelCatalogCache()
        scratch.store_models(await self._discover(clean))
        response = await self._run_candidates(scratch, clean, [_PROBE_MESSAGE], _PROBE_CONFIG)
        return {
            "valid": True,
            "provider": self.provider,
            "modelCount": len(scratch.models or []),
            "model": response.model,
        }

    def status(self) -> dict[str, Any]:
        discovered_at = self.cache.discovered_at
        return {
            "provider": self.provider,
            "modelsDiscovered": len(self.cache.models or []),
            "discoveredAt": discovered_at.isoformat() if discovered_at else None,
            "pinnedModel": self.cache.pinned_model,
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _discover(self, credential: str) -> list[str]:
        try:
            models = await asyncio.wait_for(
                self._transport.list_models(credential), timeout=self._timeout
            )
        except (InvalidCredential, QuotaExceeded):
            raise
        except asyncio.TimeoutError as exc:
            logger.error("Model discovery timed out")
            raise NoModelsAvailable("discovery timed out") from exc
        except ProviderError as exc:
            logger.error("Model discovery failed: %s", exc.code)
            raise NoModelsAvailable("discovery failed") from exc
        if not models:
            logger.error("Model discovery returned no usable models")
            raise NoModelsAvailable("no models discovered")
        return models

    async def _run_candidates(
        self,
        cache: ModelCatalogCache,
        credential: str,
        messages: Sequence[PromptMessage],
        config: GenerationConfig,
    ) -> ProviderResponse:
        for model in cache.candidates(self._transport.preferred_models):
            try:
                response = await self._call_with_retry(credential, model, messages, config)
            except ModelNotFound:
                logger.info("Model unavailable, trying next candidate: %s", model)
                cache.unpin(model)
                continue
            cache.pin(model)
            return response
        raise NoModelsAvailable("every candidate model was unavailable")

    async def _call_with_retry(
        self,
        credential: str,
        model: str,
        messages: Sequence[PromptMessage],
        config: GenerationConfig,
    ) -> ProviderResponse:
        try:
            return await self._call_once(credential, model, messages, config)
        except TransientFailure:
            logger.warning("Transient failure on %s; retrying once", model)
        return await self._call_once(credential, model, messages, config)

    async def _call_once(
        self,
        credential: str,
        model: str,
        messages: Sequence[PromptMessage],
        config: GenerationConfig,
    ) -> ProviderResponse:
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._transport.generate(credential, model, messages, config),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise TransientFailure(f"timeout after {self._timeout:.0f}s") from exc
        if not response.latency_ms:
            response.latency_ms = (time.monotonic() - start) * 1000
        logger.info("LLM call: model=%s, latency=%.0fms", model, response.latency_ms)
        return response

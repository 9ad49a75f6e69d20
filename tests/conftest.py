"""Shared test fixtures for MindLens tests."""

from __future__ import annotations

import asyncio
import base64
import sys
from pathlib import Path
from typing import Any

import pytest

# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

TEST_KEY = bytes(range(32))
TEST_SALT = "TEST_SALT"
TEST_CREDENTIAL = "AIzaTestCredential0000000000000000000"


@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MINDLENS_ENV", "test")
    monkeypatch.setenv("LLM_PROVIDER", "gemini")
    monkeypatch.setenv("GEMINI_API_KEY", "")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "")
    monkeypatch.setenv("OPENAI_API_KEY", "")
    monkeypatch.setenv("CHAT_DEMO_MODE", "false")
    monkeypatch.setenv("DB_PATH", ":memory:")
    monkeypatch.setenv("ANALYTICS_DB_PATH", ":memory:")
    monkeypatch.setenv("ENCRYPTION_KEY_BASE64", base64.b64encode(TEST_KEY).decode())
    monkeypatch.setenv("PSEUDONYMIZATION_SALT", TEST_SALT)
    monkeypatch.setenv("AUTH_TOKENS", "{}")

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from mindlens.core.llm.catalog import PREFERRED_MODELS  # noqa: E402
from mindlens.core.llm.provider import (  # noqa: E402
    GenerationConfig,
    PromptMessage,
    ProviderResponse,
)


# ---------------------------------------------------------------------------
# Scripted model transports
# ---------------------------------------------------------------------------

class FakeTransport:
    """ModelTransport double with scripted per-model outcomes.

    ``script`` maps a model name to a list of outcomes consumed in order;
    an outcome is either reply text or an exception instance to raise.
    Once a model's script is exhausted it answers with ``reply``.
    """

    provider = "gemini"
    preferred_models = PREFERRED_MODELS

    def __init__(
        self,
        models: list[str] | Exception | None = None,
        script: dict[str, list[Any]] | None = None,
        reply: str = "I'm here for you.",
        delay: float = 0.0,
    ) -> None:
        self.models = models if models is not None else ["models/gemini-1.5-flash"]
        self.script = script or {}
        self.reply = reply
        self.delay = delay
        self.calls: list[str] = []
        self.prompts: list[list[PromptMessage]] = []
        self.list_calls = 0
        self.credentials: list[str] = []

    async def list_models(self, credential: str) -> list[str]:
        self.list_calls += 1
        self.credentials.append(credential)
        if isinstance(self.models, Exception):
            raise self.models
        return list(self.models)

    async def generate(
        self,
        credential: str,
        model: str,
        messages: list[PromptMessage],
        config: GenerationConfig,
    ) -> ProviderResponse:
        self.calls.append(model)
        self.prompts.append(list(messages))
        if self.delay:
            await asyncio.sleep(self.delay)
        outcomes = self.script.get(model) or []
        outcome = outcomes.pop(0) if outcomes else self.reply
        if isinstance(outcome, BaseException):
            raise outcome
        return ProviderResponse(content=outcome, model=model, latency_ms=1.0)


class ExplodingTransport:
    """Fails the test loudly if any network call is attempted."""

    provider = "gemini"
    preferred_models = PREFERRED_MODELS

    async def list_models(self, credential: str) -> list[str]:
        raise AssertionError("network call attempted: list_models")

    async def generate(self, credential, model, messages, config) -> ProviderResponse:
        raise AssertionError("network call attempted: generate")


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def settings():
    from mindlens.core.config.settings import Settings

    return Settings(gemini_api_key=TEST_CREDENTIAL)


@pytest.fixture
def crypto():
    from mindlens.core.crypto.encryption import CryptoService

    return CryptoService(TEST_KEY, TEST_SALT)


@pytest.fixture
def record_db():
    """Create an in-memory RecordDatabase for testing."""
    from mindlens.core.storage.database import RecordDatabase

    db = RecordDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def store(record_db):
    from mindlens.core.storage.record_store import SQLiteRecordStore

    return SQLiteRecordStore(record_db)


@pytest.fixture
def sink():
    from mindlens.core.analytics.sink import SQLiteAnalyticalSink

    s = SQLiteAnalyticalSink(":memory:")
    s.initialize()
    yield s
    s.close()


@pytest.fixture
def bridge(crypto, sink):
    from mindlens.domains.screening.pseudonymization import PseudonymizationBridge

    return PseudonymizationBridge(crypto, sink)


@pytest.fixture
def audit_logger(record_db):
    from mindlens.core.audit.logger import AuditLogger

    return AuditLogger(record_db)


@pytest.fixture
def settings_store(store, crypto, settings):
    from mindlens.core.config.store import SettingsStore

    return SettingsStore(store, crypto, settings)


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


def make_gateway(settings_store, transport, **kwargs):
    from mindlens.core.llm.gateway import AIProviderGateway

    kwargs.setdefault("timeout_seconds", 2.0)
    return AIProviderGateway(settings_store, transport, **kwargs)


@pytest.fixture
def gateway(settings_store, fake_transport):
    return make_gateway(settings_store, fake_transport)


@pytest.fixture
def orchestrator(store, gateway, crypto, audit_logger):
    from mindlens.domains.screening.conversation import ConversationOrchestrator

    return ConversationOrchestrator(store, gateway, crypto, audit=audit_logger)


@pytest.fixture
def assessment_service(store, crypto, bridge, gateway, audit_logger):
    from mindlens.domains.screening.assessments import AssessmentService

    return AssessmentService(store, crypto, bridge, gateway, audit=audit_logger)

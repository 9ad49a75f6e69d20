"""MindLens MCP server: application factory.

This module provides:
- create_app() for testability (integration tests create fresh server instances)
- Module-level `mcp` variable for FastMCP discovery
"""

from __future__ import annotations

import logging

from fastmcp import FastMCP

from mindlens.core.analytics.sink import AnalyticalSink, SQLiteAnalyticalSink
from mindlens.core.audit.logger import AuditLogger
from mindlens.core.auth.identity import StaticTokenVerifier, TokenVerifier
from mindlens.core.config.settings import Settings, get_settings
from mindlens.core.config.store import SettingsStore
from mindlens.core.crypto.encryption import CryptoService, load_key
from mindlens.core.errors import StoreUnavailable
from mindlens.core.llm.gateway import AIProviderGateway
from mindlens.core.llm.provider import GenerationConfig, ModelTransport, create_transport
from mindlens.core.storage.database import RecordDatabase
from mindlens.core.storage.record_store import KeyedLocks, SQLiteRecordStore
from mindlens.domains.screening.accounts import AccountService
from mindlens.domains.screening.assessments import AssessmentService
from mindlens.domains.screening.conversation import ConversationOrchestrator
from mindlens.domains.screening.pseudonymization import PseudonymizationBridge
from mindlens.domains.screening.reporting import ReportingService
from mindlens.domains.screening.tools.account_tools import register_account_tools
from mindlens.domains.screening.tools.assessment_tools import register_assessment_tools
from mindlens.domains.screening.tools.audit_tools import register_audit_tools
from mindlens.domains.screening.tools.chat_tools import register_chat_tools
from mindlens.domains.screening.tools.reporting_tools import register_reporting_tools
from mindlens.domains.screening.tools.settings_tools import register_settings_tools

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def _open_sink(settings: Settings) -> AnalyticalSink | None:
    if not settings.analytics_enabled:
        logger.info("Analytical sink disabled; research mirroring is off")
        return None
    sink = SQLiteAnalyticalSink(settings.analytics_db_path)
    try:
        sink.initialize()
    except StoreUnavailable as exc:
        logger.warning("Analytical sink unavailable, continuing without it: %s", exc)
        return None
    return sink


def create_app(
    *,
    settings_override: Settings | None = None,
    database_override: RecordDatabase | None = None,
    sink_override: AnalyticalSink | None = None,
    transport_override: ModelTransport | None = None,
    verifier_override: TokenVerifier | None = None,
) -> FastMCP:
    """Create and configure the MindLens MCP server.

    This is the main application factory. It:
    1. Loads settings and key material
    2. Opens the record store and (optionally) the analytical sink
    3. Builds the AI provider gateway with its model catalog cache
    4. Wires the conversation, assessment, account and reporting services
    5. Registers all tools
    """
    settings = settings_override or get_settings()

    server = FastMCP(
        "MindLens",
        instructions=(
            "MindLens protected health data pipeline. Provides an AI companion chat "
            "with crisis detection, encrypted PHQ-9 assessment storage, pseudonymized "
            "research analytics, and data export and deletion. Every tool except "
            "health_check requires the user's access_token."
        ),
    )

    # --- Crypto ---
    crypto = CryptoService(load_key(settings), settings.pseudonymization_salt)

    # --- Operational store ---
    if database_override is not None:
        database = database_override
    else:
        database = RecordDatabase(settings.db_path)
    database.initialize()
    store = SQLiteRecordStore(database)
    audit = AuditLogger(database)
    logger.info("Record store ready (schema v%d)", database.get_schema_version())

    # --- Analytical sink ---
    sink = sink_override if sink_override is not None else _open_sink(settings)
    bridge = PseudonymizationBridge(crypto, sink)

    # --- AI provider gateway ---
    settings_store = SettingsStore(store, crypto, settings)
    transport = transport_override or create_transport(settings.llm_provider, settings)
    gateway = AIProviderGateway(
        settings_store,
        transport,
        config=GenerationConfig.from_settings(settings),
        timeout_seconds=settings.llm_timeout_seconds,
        demo_when_unconfigured=settings.demo_when_unconfigured,
    )
    if not settings_store.resolve().credential_present:
        logger.warning(
            "No API key configured for provider '%s'; chat %s",
            settings.llm_provider,
            "will use demo replies" if settings.demo_when_unconfigured else "is unavailable",
        )

    # --- Services ---
    locks = KeyedLocks()
    orchestrator = ConversationOrchestrator(
        store,
        gateway,
        crypto,
        locks=locks,
        audit=audit,
        max_history_messages=settings.max_history_messages,
    )
    assessments = AssessmentService(store, crypto, bridge, gateway, locks=locks, audit=audit)
    accounts = AccountService(store, crypto, orchestrator, assessments, audit=audit)
    reporting = ReportingService(sink, crypto)

    verifier = verifier_override or StaticTokenVerifier(settings.auth_tokens)
    if verifier_override is None and not settings.auth_tokens:
        logger.warning("No AUTH_TOKENS configured; every authenticated tool will be refused")

    # --- Register tools ---
    @server.tool
    def health_check() -> dict:
        """Check server health and return basic status information."""
        return {
            "status": "ok",
            "server": "MindLens",
            "version": VERSION,
            "environment": settings.mindlens_env,
            "analytics_enabled": sink is not None,
            "ai": {**gateway.status(), "mode": settings_store.current_mode()},
        }

    register_chat_tools(server, verifier, orchestrator)
    register_settings_tools(server, verifier, settings_store, gateway)
    register_assessment_tools(server, verifier, assessments)
    register_account_tools(server, verifier, accounts)
    register_reporting_tools(server, verifier, reporting)
    register_audit_tools(server, verifier, audit, crypto)
    logger.info("MindLens tools registered")

    return server


# Module-level instance for FastMCP discovery.
# Lazy: only created when this attribute is accessed (not when tests import create_app).
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

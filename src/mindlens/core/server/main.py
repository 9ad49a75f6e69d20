"""MindLens server entry point: ``python -m mindlens.core.server.main``."""

from __future__ import annotations

import logging
from ipaddress import ip_address

from mindlens.core.config.settings import get_settings
from mindlens.core.server.app import create_app


def _is_loopback_host(host: str) -> bool:
    if host in {"localhost"}:
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def run() -> None:
    """Start the MindLens MCP server with Streamable HTTP transport."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.mindlens_log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    logger = logging.getLogger(__name__)
    if not settings.mindlens_allow_insecure_bind and not _is_loopback_host(settings.mindlens_host):
        raise RuntimeError(
            "Refusing to bind MindLens to a non-loopback host without TLS termination "
            "and a real identity provider. Set MINDLENS_ALLOW_INSECURE_BIND=true to override."
        )
    logger.info(
        "Starting MindLens server on %s:%d (%s)",
        settings.mindlens_host,
        settings.mindlens_port,
        settings.mindlens_env,
    )

    mcp = create_app(settings_override=settings)
    mcp.run(
        transport="streamable-http",
        host=settings.mindlens_host,
        port=settings.mindlens_port,
    )


if __name__ == "__main__":
    run()

"""Shared request handling for screening tools.

Every tool verifies its ``access_token`` first and answers with a JSON
string: ``{"status": "ok", ...}`` on success, or the error's safe payload.
"""

from __future__ import annotations

import inspect
import json
import logging
import time
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Union

from mindlens.core.errors import MindLensError

if TYPE_CHECKING:
    from mindlens.core.auth.identity import Identity, TokenVerifier

logger = logging.getLogger(__name__)

Handler = Callable[["Identity"], Union[dict[str, Any], Awaitable[dict[str, Any]]]]

_INTERNAL_ERROR = {
    "status": "error",
    "code": "internal_error",
    "message": "Something went wrong. Please try again.",
}


async def run_tool(
    name: str,
    verifier: TokenVerifier,
    access_token: str,
    handler: Handler,
) -> str:
    """Authenticate, run ``handler`` and serialize its result or error."""
    start = time.monotonic()
    try:
        identity = verifier.verify(access_token)
        result = handler(identity)
        if inspect.isawaitable(result):
            result = await result
    except MindLensError as exc:
        logger.info("%s failed: %s", name, exc.code)
        return json.dumps(exc.to_payload())
    except Exception:
        logger.exception("Unexpected error in %s", name)
        return json.dumps(_INTERNAL_ERROR)

    elapsed_ms = (time.monotonic() - start) * 1000
    logger.debug("%s completed in %.0fms", name, elapsed_ms)
    return json.dumps({"status": "ok", **result})

"""
AWS Lambda entrypoint completing sign-in from an API Gateway proxy event.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict

from federated_chat.core.config import get_settings
from federated_chat.core.logging import configure_logging
from federated_chat.dependencies.clients import get_session_manager
from federated_chat.services.oidc_callback import complete_sign_in

logger = logging.getLogger(__name__)


def _bootstrap() -> Dict[str, Any]:
    """Initialize shared singletons for the Lambda runtime."""
    settings = get_settings()
    configure_logging(settings.log_level)
    return {"session_manager": get_session_manager()}


BOOTSTRAP = _bootstrap()


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """Handle ``GET ?code=...&state=...`` and return a proxy integration response."""
    params = event.get("queryStringParameters") or {}
    session_manager = BOOTSTRAP["session_manager"]

    status, body = asyncio.run(
        complete_sign_in(session_manager, params.get("code"), params.get("state"))
    )
    logger.info("OIDC callback completed with status %s", int(status))
    return {
        "statusCode": int(status),
        "headers": {"Content-Type": "text/plain"},
        "body": body,
    }


__all__ = ["lambda_handler"]

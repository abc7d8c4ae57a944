"""Outcome of the OIDC redirect, shared by the HTTP route and the Lambda handler."""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Optional, Protocol

logger = logging.getLogger(__name__)

INVALID_REQUEST_MESSAGE = "Invalid request"
SUCCESS_MESSAGE = "Authentication successful. You can close this window and return to the chat."
FAILURE_MESSAGE = "Internal server error"


class SessionFinisher(Protocol):
    async def finish_session(self, code: str, state: str) -> None:
        ...


async def complete_sign_in(
    manager: SessionFinisher,
    code: Optional[str],
    state: Optional[str],
) -> tuple[HTTPStatus, str]:
    """Finish the session and map the result to a status and plain-text body.

    Failure details are only logged; the caller always gets a generic message.
    """
    if not code or not state:
        return HTTPStatus.BAD_REQUEST, INVALID_REQUEST_MESSAGE

    try:
        await manager.finish_session(code, state)
    except Exception:
        logger.exception("Error finishing session")
        return HTTPStatus.INTERNAL_SERVER_ERROR, FAILURE_MESSAGE
    return HTTPStatus.OK, SUCCESS_MESSAGE


__all__ = [
    "FAILURE_MESSAGE",
    "INVALID_REQUEST_MESSAGE",
    "SUCCESS_MESSAGE",
    "complete_sign_in",
]

"""
FastAPI routes for the federated chat gateway.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse, RedirectResponse

from federated_chat.clients.telegram import TelegramBotClient, TelegramMessageUpdater
from federated_chat.core.exceptions import AuthenticationRequired, GatewayError, UpstreamHttpError
from federated_chat.dependencies import (
    get_app_settings,
    get_conversation_service,
    get_session_manager,
    get_telegram_bot,
)
from federated_chat.schemas import (
    AuthorizationResponse,
    TelegramCallbackQuery,
    TelegramMessage,
    TelegramUpdate,
)
from federated_chat.services.conversation import (
    ConversationService,
    SignInRequired,
    channel_key,
    render_sources,
)
from federated_chat.services.oidc_callback import complete_sign_in
from federated_chat.services.streaming import ERROR_MESSAGE

router = APIRouter()
logger = logging.getLogger(__name__)

PROCESSING_MESSAGE = "Processing..."
NEW_CONVERSATION_MESSAGE = "Starting new conversation."
SIGN_IN_MESSAGE = "Please sign in to continue. Send your message again once you are signed in."
TELEGRAM_TEAM = "telegram"


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok"}


@router.get("/auth/authorize", status_code=HTTPStatus.OK, response_model=None)
async def start_sign_in(
    request: Request,
    session_manager: Annotated[Any, Depends(get_session_manager)],
    owner_id: str = Query(..., min_length=1, description="Chat user starting sign-in."),
    redirect: bool = Query(
        default=False,
        description="When true, respond with a redirect to the identity provider.",
    ),
) -> AuthorizationResponse | RedirectResponse:
    """Issue a single-use state and return the identity provider sign-in URL."""
    try:
        authorization_url = await session_manager.start_session(owner_id)
    except UpstreamHttpError as exc:
        logger.error("Unable to start sign-in for owner %s: %s", owner_id, exc)
        raise HTTPException(
            status_code=HTTPStatus.BAD_GATEWAY,
            detail="Identity provider unavailable.",
        ) from exc

    accept_header = request.headers.get("accept", "")
    wants_html = "text/html" in accept_header.lower()
    if redirect or wants_html:
        return RedirectResponse(url=authorization_url, status_code=HTTPStatus.TEMPORARY_REDIRECT)
    return AuthorizationResponse(authorization_url=authorization_url)


@router.get("/auth/callback")
async def handle_oidc_callback(
    session_manager: Annotated[Any, Depends(get_session_manager)],
    code: Optional[str] = Query(None, description="Authorization code returned by the IdP."),
    state: Optional[str] = Query(None, description="State issued when sign-in started."),
) -> PlainTextResponse:
    """Complete sign-in; failures never leak details to the browser."""
    status_code, body = await complete_sign_in(session_manager, code, state)
    return PlainTextResponse(body, status_code=status_code)


@router.post("/integrations/telegram/webhook", status_code=HTTPStatus.OK)
async def telegram_webhook(
    update: TelegramUpdate,
    conversation: Annotated[ConversationService, Depends(get_conversation_service)],
    bot: Annotated[Optional[TelegramBotClient], Depends(get_telegram_bot)],
    settings: Annotated[Any, Depends(get_app_settings)],
    token: str | None = Query(None, description="Shared webhook token."),
) -> dict:
    """Answer Telegram messages with streamed chat replies."""
    expected_token = settings.telegram.webhook_token
    if expected_token and token != expected_token:
        raise HTTPException(status_code=HTTPStatus.FORBIDDEN, detail="Invalid token")

    if update.callback_query is not None:
        return await _handle_callback_query(update.callback_query, conversation, bot)

    message = update.message
    if not message:
        return {"status": "ignored"}
    text = (message.text or message.caption or "").strip()
    if not text:
        return {"status": "ignored"}

    channel = _channel_for(message)
    if text.lower().startswith("/new_conv"):
        await conversation.reset_conversation(channel)
        return {
            "method": "sendMessage",
            "chat_id": message.chat_id,
            "text": NEW_CONVERSATION_MESSAGE,
        }

    if bot is None:
        raise HTTPException(
            status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
            detail="Telegram bot configuration missing.",
        )

    owner_id = _owner_id(message.from_, message)
    placeholder_id = await bot.send_message(
        message.chat_id,
        PROCESSING_MESSAGE,
        reply_to_message_id=None if message.is_private else message.message_id,
    )
    updater = TelegramMessageUpdater(bot, message.chat_id, placeholder_id)

    try:
        outcome = await conversation.handle_message(owner_id, channel, text, updater)
    except GatewayError:
        logger.exception("Chat turn failed for owner %s", owner_id)
        await bot.edit_message_text(message.chat_id, placeholder_id, ERROR_MESSAGE)
        return {"status": "error"}

    if isinstance(outcome, SignInRequired):
        await bot.edit_message_text(
            message.chat_id,
            placeholder_id,
            SIGN_IN_MESSAGE,
            reply_markup={
                "inline_keyboard": [[{"text": "Sign in", "url": outcome.authorization_url}]]
            },
        )
        return {"status": "sign_in_required"}

    if outcome.error is not None:
        return {"status": "error"}
    return {"status": "answered", "complete": outcome.complete}


async def _handle_callback_query(
    query: TelegramCallbackQuery,
    conversation: ConversationService,
    bot: Optional[TelegramBotClient],
) -> dict:
    action, _, message_id = (query.data or "").partition(":")
    if not message_id or bot is None:
        return {"status": "ignored"}

    owner_id = _owner_id(query.from_, query.message)
    if action == "feedback":
        rating, _, message_id = message_id.partition(":")
        if rating not in {"up", "down"} or not message_id:
            return {"status": "ignored"}
        try:
            recorded = await conversation.submit_feedback(
                owner_id, message_id, useful=rating == "up"
            )
        except AuthenticationRequired:
            await bot.answer_callback_query(query.id, text="Please sign in again to leave feedback.")
            return {"status": "sign_in_required"}
        except GatewayError:
            logger.exception("Feedback submission failed for owner %s", owner_id)
            await bot.answer_callback_query(query.id, text=ERROR_MESSAGE)
            return {"status": "error"}

        reply = "Thanks for your feedback" if recorded else "This answer is no longer available."
        await bot.answer_callback_query(query.id, text=reply)
        return {"status": "feedback_recorded" if recorded else "feedback_unknown_message"}

    if action == "sources":
        sources = await conversation.get_sources(message_id)
        await bot.answer_callback_query(query.id)
        if query.message is not None:
            await bot.send_message(
                query.message.chat_id,
                render_sources(sources),
                reply_to_message_id=query.message.message_id,
            )
        return {"status": "sources_sent", "count": len(sources)}

    return {"status": "ignored"}


def _channel_for(message: TelegramMessage) -> str:
    kind = "message" if message.message_thread_id is None else "thread"
    return channel_key(
        kind,
        TELEGRAM_TEAM,
        str(message.chat_id),
        str(message.message_id),
        str(message.message_thread_id) if message.message_thread_id is not None else None,
    )


def _owner_id(sender: Optional[dict[str, Any]], message: Optional[TelegramMessage]) -> str:
    if sender and sender.get("id") is not None:
        return str(sender["id"])
    if message is not None:
        return str(message.chat_id)
    raise HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail="Unknown sender")

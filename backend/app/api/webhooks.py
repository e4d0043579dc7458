"""
Twitch EventSub webhook route.
"""
from fastapi import APIRouter, BackgroundTasks, Request, Response
from fastapi.responses import PlainTextResponse
from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from app.config import settings
from app.constants import (
    EVENTSUB_MESSAGE_ID_HEADER,
    EVENTSUB_MESSAGE_TIMESTAMP_HEADER,
    EVENTSUB_MESSAGE_SIGNATURE_HEADER,
    EVENTSUB_MESSAGE_TYPE_HEADER,
    EVENTSUB_MESSAGE_TYPE_VERIFICATION,
    EVENTSUB_MESSAGE_TYPE_NOTIFICATION,
    EVENTSUB_MESSAGE_TYPE_REVOCATION,
)
from app.schemas.twitch import EventSubWebhookPayload
from app.services.webhook_verifier import verify_signature
from app.utils.errors import BadRequestError, ServiceUnavailableError

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _header(request: Request, name: str) -> str:
    value = request.headers.get(name)
    if not value:
        raise BadRequestError(f"Missing header {name}")
    return value


@router.post("/twitch")
async def twitch_eventsub(request: Request, background_tasks: BackgroundTasks):
    """
    Receive an EventSub delivery.

    Verification challenges are echoed as plain text. Notifications are
    acknowledged immediately and processed in the background.
    """
    message_id = _header(request, EVENTSUB_MESSAGE_ID_HEADER)
    timestamp = _header(request, EVENTSUB_MESSAGE_TIMESTAMP_HEADER)
    signature = _header(request, EVENTSUB_MESSAGE_SIGNATURE_HEADER)
    message_type = _header(request, EVENTSUB_MESSAGE_TYPE_HEADER)

    body = await request.body()
    verify_signature(settings.twitch.webhook_secret, message_id, timestamp, body, signature)

    try:
        payload = EventSubWebhookPayload.model_validate_json(body)
    except PydanticValidationError as e:
        raise BadRequestError(f"Malformed EventSub payload: {e.error_count()} error(s)")

    handler = getattr(request.app.state, "eventsub_handler", None)
    if handler is None:
        raise ServiceUnavailableError("EventSub handler not initialized")

    logger.debug(f"EventSub {message_type} {payload.subscription.type} ({message_id})")

    if message_type == EVENTSUB_MESSAGE_TYPE_VERIFICATION:
        challenge = await handler.handle_verification(payload)
        return PlainTextResponse(challenge)

    if message_type == EVENTSUB_MESSAGE_TYPE_NOTIFICATION:
        background_tasks.add_task(handler.handle_notification, payload)
        return Response(status_code=204)

    if message_type == EVENTSUB_MESSAGE_TYPE_REVOCATION:
        await handler.handle_revocation(payload)
        return Response(status_code=200)

    logger.warning(f"Unknown EventSub message type: {message_type}")
    return Response(status_code=200)

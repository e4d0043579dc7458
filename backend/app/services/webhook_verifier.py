"""
EventSub webhook signature and replay checks.

Twitch signs ``message_id + timestamp + raw_body`` with HMAC-SHA256 using the
secret given when the subscription was created.
"""
import hashlib
import hmac
from datetime import datetime, timedelta
from typing import Optional

from app.constants import EVENTSUB_SIGNATURE_PREFIX, WEBHOOK_MESSAGE_MAX_AGE_SECONDS
from app.utils.clock import parse_rfc3339, utcnow
from app.utils.errors import BadRequestError, UnauthorizedError, ErrorCode


class InvalidSignatureError(UnauthorizedError):
    code = ErrorCode.INVALID_SIGNATURE


def compute_signature(secret: str, message_id: str, timestamp: str, body: bytes) -> str:
    digest = hmac.new(secret.encode(), message_id.encode() + timestamp.encode() + body, hashlib.sha256)
    return f"{EVENTSUB_SIGNATURE_PREFIX}{digest.hexdigest()}"


def verify_signature(
    secret: str,
    message_id: str,
    timestamp: str,
    body: bytes,
    signature: str,
    now: Optional[datetime] = None,
) -> None:
    """
    Reject a delivery unless it is fresh and correctly signed.

    Raises:
        BadRequestError: malformed signature header, unparseable, stale or future timestamp
        InvalidSignatureError: signature mismatch
    """
    if not signature.startswith(EVENTSUB_SIGNATURE_PREFIX):
        raise BadRequestError("Invalid signature format")

    sent_at = parse_rfc3339(timestamp)
    if sent_at is None:
        raise BadRequestError("Invalid message timestamp")

    now = now or utcnow()
    max_skew = timedelta(seconds=WEBHOOK_MESSAGE_MAX_AGE_SECONDS)
    if now - sent_at > max_skew:
        raise BadRequestError("Message too old")
    if sent_at - now > max_skew:
        raise BadRequestError("Message timestamp is in the future")

    expected = compute_signature(secret, message_id, timestamp, body)
    if not hmac.compare_digest(expected.encode(), signature.encode()):
        raise InvalidSignatureError("Invalid signature")

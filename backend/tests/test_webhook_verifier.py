"""EventSub signature verification tests."""

from datetime import datetime, timedelta

import pytest

from app.services.webhook_verifier import InvalidSignatureError, compute_signature, verify_signature
from app.utils.errors import BadRequestError

SECRET = "s3cret-value-123"
MESSAGE_ID = "befa7b53-d79d-478f-86b9-120f112b044e"
TIMESTAMP = "2024-05-01T12:00:00.123456789Z"
NOW = datetime(2024, 5, 1, 12, 1, 0)
BODY = b'{"subscription":{"id":"s","type":"stream.online"}}'


class TestVerifySignature:
    """HMAC-SHA256 over id + timestamp + body, with replay protection."""

    def test_valid_signature_passes(self) -> None:
        signature = compute_signature(SECRET, MESSAGE_ID, TIMESTAMP, BODY)
        verify_signature(SECRET, MESSAGE_ID, TIMESTAMP, BODY, signature, now=NOW)

    def test_signature_is_prefixed_hex(self) -> None:
        signature = compute_signature(SECRET, MESSAGE_ID, TIMESTAMP, BODY)
        assert signature.startswith("sha256=")
        assert len(signature) == len("sha256=") + 64

    def test_mismatch_rejected(self) -> None:
        signature = compute_signature("other-secret-000", MESSAGE_ID, TIMESTAMP, BODY)
        with pytest.raises(InvalidSignatureError) as exc_info:
            verify_signature(SECRET, MESSAGE_ID, TIMESTAMP, BODY, signature, now=NOW)
        assert exc_info.value.status_code == 401

    def test_tampered_body_rejected(self) -> None:
        signature = compute_signature(SECRET, MESSAGE_ID, TIMESTAMP, BODY)
        with pytest.raises(InvalidSignatureError):
            verify_signature(SECRET, MESSAGE_ID, TIMESTAMP, BODY + b" ", signature, now=NOW)

    def test_missing_prefix_rejected(self) -> None:
        signature = compute_signature(SECRET, MESSAGE_ID, TIMESTAMP, BODY).removeprefix("sha256=")
        with pytest.raises(BadRequestError):
            verify_signature(SECRET, MESSAGE_ID, TIMESTAMP, BODY, signature, now=NOW)

    def test_stale_message_rejected_even_if_signed(self) -> None:
        signature = compute_signature(SECRET, MESSAGE_ID, TIMESTAMP, BODY)
        with pytest.raises(BadRequestError):
            verify_signature(SECRET, MESSAGE_ID, TIMESTAMP, BODY, signature, now=NOW + timedelta(minutes=11))

    def test_future_message_rejected_even_if_signed(self) -> None:
        signature = compute_signature(SECRET, MESSAGE_ID, TIMESTAMP, BODY)
        with pytest.raises(BadRequestError) as exc_info:
            verify_signature(SECRET, MESSAGE_ID, TIMESTAMP, BODY, signature, now=NOW - timedelta(minutes=12))
        assert "future" in exc_info.value.message

    def test_small_clock_skew_accepted(self) -> None:
        signature = compute_signature(SECRET, MESSAGE_ID, TIMESTAMP, BODY)
        verify_signature(SECRET, MESSAGE_ID, TIMESTAMP, BODY, signature, now=NOW - timedelta(minutes=5))

    def test_unparseable_timestamp_rejected(self) -> None:
        signature = compute_signature(SECRET, MESSAGE_ID, "yesterday", BODY)
        with pytest.raises(BadRequestError):
            verify_signature(SECRET, MESSAGE_ID, "yesterday", BODY, signature, now=NOW)

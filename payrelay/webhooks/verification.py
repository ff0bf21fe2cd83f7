"""Webhook signature verification for the payment processor.

Security contract:
- Missing header or secret -> MissingCredentials before any HMAC work (fail-closed)
- All comparisons use hmac.compare_digest() (constant-time)
- Signed payload is "<timestamp>." + raw body, HMAC-SHA256, hex encoded
- Timestamps outside the tolerance window are rejected (replay protection)
- Unknown event types are returned as IgnoredEvent, never as errors
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time

from payrelay.errors import InvalidSignature, MalformedPayload, MissingCredentials
from payrelay.models import CheckoutCompleted, IgnoredEvent, TrustedProcessorEvent

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"

DEFAULT_TOLERANCE = 300


def compute_signature(body: bytes, secret: str, timestamp: int) -> str:
    """Hex HMAC-SHA256 of ``<timestamp>.<body>`` under *secret*."""
    signed_payload = f"{timestamp}.".encode("utf-8") + body
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def _parse_header(signature_header: str) -> tuple[int, list[str]]:
    """Split ``t=<ts>,v1=<sig>[,v1=<sig>...]`` into (timestamp, v1 signatures)."""
    timestamp_str = None
    v1_sigs: list[str] = []
    for item in signature_header.split(","):
        kv = item.strip().split("=", 1)
        if len(kv) != 2:
            continue
        key, value = kv
        if key == "t":
            timestamp_str = value
        elif key == "v1":
            v1_sigs.append(value)

    if not timestamp_str or not v1_sigs:
        raise InvalidSignature("signature header lacks timestamp or v1 signature")

    try:
        timestamp = int(timestamp_str)
    except ValueError as exc:
        raise InvalidSignature("signature timestamp is not an integer") from exc

    return timestamp, v1_sigs


def _parse_event(raw_body: bytes) -> TrustedProcessorEvent:
    try:
        payload = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedPayload("body is not valid JSON") from exc

    if not isinstance(payload, dict):
        raise MalformedPayload("body is not a JSON object")

    event_id = payload.get("id")
    kind = payload.get("type")
    if not event_id or not kind:
        raise MalformedPayload("event is missing id or type")

    if kind != CHECKOUT_COMPLETED:
        return IgnoredEvent(event_id=str(event_id), kind=str(kind))

    data = payload.get("data")
    session = data.get("object") if isinstance(data, dict) else None
    if not isinstance(session, dict) or not session.get("id"):
        raise MalformedPayload("checkout event has no session object")

    metadata = session.get("metadata")
    if not isinstance(metadata, dict):
        metadata = {}
    payment_intent = session.get("payment_intent")
    if isinstance(payment_intent, dict):
        payment_intent = payment_intent.get("id")

    return CheckoutCompleted(
        event_id=str(event_id),
        kind=str(kind),
        session_id=str(session["id"]),
        order_id=metadata.get("orderId") or None,
        receipt_url=session.get("receipt_url") or None,
        payment_intent_id=payment_intent or None,
        success_url=session.get("success_url") or None,
    )


def verify(
    raw_body: bytes,
    signature_header: str | None,
    shared_secret: str | None,
    *,
    tolerance: int = DEFAULT_TOLERANCE,
    now: float | None = None,
) -> TrustedProcessorEvent:
    """Authenticate a webhook and parse it into a trusted event.

    Args:
        raw_body: Request body exactly as received (never re-serialized)
        signature_header: Value of the Stripe-Signature header
        shared_secret: Endpoint signing secret
        tolerance: Accepted clock skew in seconds; 0 disables the check
        now: Current unix time, defaults to time.time()

    Raises:
        MissingCredentials: header or secret absent
        InvalidSignature: signature mismatch or stale timestamp
        MalformedPayload: signature valid but body unreadable
    """
    if not signature_header or not shared_secret:
        raise MissingCredentials("missing signature header or webhook secret")

    timestamp, v1_sigs = _parse_header(signature_header)

    if tolerance > 0:
        current = time.time() if now is None else now
        if abs(current - timestamp) > tolerance:
            logger.warning("Webhook timestamp outside tolerance: %s", timestamp)
            raise InvalidSignature("signature timestamp outside tolerance")

    expected = compute_signature(raw_body, shared_secret, timestamp)
    expected_bytes = expected.encode("utf-8")
    if not any(
        hmac.compare_digest(expected_bytes, sig.encode("utf-8", "replace")) for sig in v1_sigs
    ):
        raise InvalidSignature("no v1 signature matches the body")

    return _parse_event(raw_body)

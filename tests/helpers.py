"""Test helpers: signed webhook bodies and an in-memory Redis double."""

from __future__ import annotations

import json
import threading
import time
from typing import Any
from unittest.mock import MagicMock

from payrelay.webhooks.verification import compute_signature

WEBHOOK_SECRET = "whsec_test_secret"


def sign(body: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a valid Stripe-Signature header for *body*."""
    ts = int(time.time()) if timestamp is None else timestamp
    return f"t={ts},v1={compute_signature(body, secret, ts)}"


def checkout_event(
    event_id: str = "evt_1",
    *,
    session_id: str = "cs_test_1",
    order_id: str | None = "order-9",
    receipt_url: str | None = None,
    event_type: str = "checkout.session.completed",
) -> bytes:
    """Serialized processor event for a completed checkout session."""
    session: dict[str, Any] = {
        "id": session_id,
        "object": "checkout.session",
        "payment_intent": "pi_123",
        "success_url": "https://shop.test/success",
        "metadata": {"orderId": order_id} if order_id else {},
    }
    if receipt_url:
        session["receipt_url"] = receipt_url
    return json.dumps(
        {"id": event_id, "type": event_type, "data": {"object": session}}
    ).encode()


def fake_redis() -> MagicMock:
    """MagicMock Redis whose SET NX / GET / DELETE behave like a real key space."""
    store: dict[str, str] = {}
    lock = threading.Lock()
    r = MagicMock()

    def _set(key, value, nx=False, ex=None):
        with lock:
            if nx and key in store:
                return None
            store[key] = value
            return True

    def _delete(*keys):
        with lock:
            return sum(1 for k in keys if store.pop(k, None) is not None)

    r.set.side_effect = _set
    r.get.side_effect = lambda key: store.get(key)
    r.delete.side_effect = _delete
    r.xadd.return_value = "1700000000000-0"
    r.ping.return_value = True
    r.store = store
    return r

"""Error taxonomy for the payment relay.

- WebhookRejected: untrusted input, answered with 400 and never retried
- TransientError: store or bus unreachable, answered with 503 so the caller retries
- MissingOrderCorrelation: upstream data-integrity defect, logged and acknowledged
"""

from __future__ import annotations

from typing import Any


class PayRelayError(Exception):
    """Base class for all payment relay errors."""


# ── Untrusted input ───────────────────────────────────────────────────────


class WebhookRejected(PayRelayError):
    """Inbound webhook failed authentication or parsing."""

    reason = "rejected"


class MissingCredentials(WebhookRejected):
    """Signature header or shared secret absent."""

    reason = "missing signature or secret"


class InvalidSignature(WebhookRejected):
    """Signature does not match the body (or the timestamp is out of window)."""

    reason = "invalid signature"


class MalformedPayload(WebhookRejected):
    """Authenticated body is not a processor event we can read."""

    reason = "malformed payload"


# ── Transient infrastructure ──────────────────────────────────────────────


class TransientError(PayRelayError):
    """Infrastructure failure the caller should retry."""


class StoreUnavailable(TransientError):
    """Idempotency store could not be reached."""


class PublishFailed(TransientError):
    """The bus did not accept a message.

    Subject and payload are kept so the failure can be logged and replayed.
    """

    def __init__(self, subject: str, payload: dict[str, Any], cause: str = "") -> None:
        self.subject = subject
        self.payload = payload
        self.cause = cause
        msg = f"publish to {subject!r} failed"
        if cause:
            msg = f"{msg}: {cause}"
        super().__init__(msg)


# ── Upstream data integrity ───────────────────────────────────────────────


class MissingOrderCorrelation(PayRelayError):
    """Checkout session arrived without the orderId metadata."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"checkout session {session_id!r} has no orderId metadata")

"""Webhook HTTP handler — payment processor callbacks.

Pipeline per request:
1. Verify signature over the raw body (400 on failure, store untouched)
2. Acknowledge event kinds we do not handle (200)
3. Claim the processor event id (200 if already seen, 503 if store down)
4. Resolve the PaymentConfirmed record (200 + error log if orderId missing)
5. Publish payment.paid (503 and release the claim if the bus refuses)
6. Confirm the claim (200)

Security contract:
- Only the signature failure reason is returned, never internals
- Log all webhook activity for audit trail
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import Counter
from dataclasses import dataclass

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from payrelay.bus import SUBJECT_PAYMENT_PAID
from payrelay.errors import (
    MissingOrderCorrelation,
    PublishFailed,
    StoreUnavailable,
    WebhookRejected,
)
from payrelay.models import IgnoredEvent, InboundWebhookRequest
from payrelay.publisher import EventPublisher
from payrelay.webhooks.idempotency import IdempotencyGuard
from payrelay.webhooks.resolver import PaymentConfirmationResolver
from payrelay.webhooks.verification import DEFAULT_TOLERANCE, verify

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "stripe-signature"


@dataclass(frozen=True)
class WebhookOutcome:
    status_code: int
    status: str
    detail: str = ""

    def to_response(self) -> JSONResponse:
        body = {"status": self.status}
        if self.detail:
            body["detail"] = self.detail
        return JSONResponse(body, status_code=self.status_code)


class WebhookEndpoint:
    """Orchestrates verify -> dedupe -> resolve -> publish for one webhook."""

    def __init__(
        self,
        secret: str | None,
        guard: IdempotencyGuard,
        resolver: PaymentConfirmationResolver,
        publisher: EventPublisher,
        *,
        tolerance: int = DEFAULT_TOLERANCE,
    ):
        self._secret = secret
        self._guard = guard
        self._resolver = resolver
        self._publisher = publisher
        self._tolerance = tolerance
        self._counts: Counter[str] = Counter()
        # process() runs on worker threads
        self._counts_lock = threading.Lock()

    def snapshot_counts(self) -> dict[str, int]:
        with self._counts_lock:
            return dict(self._counts)

    def _audit(self, kind: str, event_id: str, status: str) -> None:
        with self._counts_lock:
            self._counts[status] += 1
            count = self._counts[status]
        logger.info(
            "WEBHOOK_AUDIT event=%s id=%s status=%s count=%d",
            kind, event_id, status, count,
        )

    def process(self, request: InboundWebhookRequest) -> WebhookOutcome:
        try:
            event = verify(
                request.body,
                request.signature,
                self._secret,
                tolerance=self._tolerance,
                now=request.received_at,
            )
        except WebhookRejected as exc:
            self._audit("unknown", "unknown", "rejected")
            logger.warning("Webhook rejected: %s", exc)
            return WebhookOutcome(400, "rejected", exc.reason)

        if isinstance(event, IgnoredEvent):
            self._audit(event.kind, event.event_id, "ignored")
            return WebhookOutcome(200, "ignored")

        try:
            if not self._guard.mark_if_new(event.event_id).is_new:
                self._audit(event.kind, event.event_id, "duplicate")
                return WebhookOutcome(200, "duplicate")
        except StoreUnavailable:
            self._audit(event.kind, event.event_id, "store_unavailable")
            return WebhookOutcome(503, "retry")

        try:
            confirmation = self._resolver.resolve(event)
        except MissingOrderCorrelation:
            # Retrying cannot add the missing metadata; acknowledge and stop retries.
            self._confirm(event.event_id)
            self._audit(event.kind, event.event_id, "missing_order")
            return WebhookOutcome(200, "missing_order")

        try:
            self._publisher.publish(
                SUBJECT_PAYMENT_PAID,
                confirmation.to_payload(),
                msg_id=event.event_id,
            )
        except PublishFailed:
            self._release(event.event_id)
            self._audit(event.kind, event.event_id, "publish_failed")
            return WebhookOutcome(503, "retry")

        self._confirm(event.event_id)
        self._audit(event.kind, event.event_id, "accepted")
        logger.info("Payment confirmed for order %s", confirmation.order_id)
        return WebhookOutcome(200, "accepted")

    def _confirm(self, event_id: str) -> None:
        try:
            self._guard.confirm(event_id)
        except StoreUnavailable:
            # The pending claim still blocks duplicates until it expires.
            logger.warning("Could not confirm idempotency record for %s", event_id)

    def _release(self, event_id: str) -> None:
        try:
            self._guard.release(event_id)
        except StoreUnavailable:
            logger.error(
                "Could not release claim for %s after failed publish; "
                "retries are blocked until the pending claim expires",
                event_id,
            )


def register_webhook_routes(app: FastAPI, endpoint: WebhookEndpoint) -> None:
    """Register the processor webhook routes on the FastAPI app."""

    @app.post("/payments/webhook")
    async def payment_webhook(request: Request):
        """Receive processor webhooks (signature-verified)."""
        # Raw body: re-serializing parsed JSON would break the signature
        body = await request.body()
        inbound = InboundWebhookRequest(
            body=body,
            signature=request.headers.get(SIGNATURE_HEADER),
            received_at=time.time(),
        )
        # Store, bus and receipt lookup are blocking clients
        outcome = await asyncio.to_thread(endpoint.process, inbound)
        return outcome.to_response()

    @app.get("/payments/webhook/status")
    async def webhook_status():
        """Webhook outcome counts since startup."""
        return {"counts": endpoint.snapshot_counts()}

    logger.info("Webhook routes registered: /payments/webhook")

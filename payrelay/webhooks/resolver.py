"""Turns a verified checkout event into the canonical PaymentConfirmed record."""

from __future__ import annotations

import logging

from payrelay.errors import MissingOrderCorrelation
from payrelay.models import CheckoutCompleted, PaymentConfirmed
from payrelay.webhooks.receipts import RECEIPT_UNAVAILABLE, ReceiptLookup

logger = logging.getLogger(__name__)


class PaymentConfirmationResolver:
    """Resolves the receipt for a completed checkout.

    The receipt lookup is best-effort: by the time the webhook arrives the
    processor has captured the money, so a failed lookup degrades to the
    RECEIPT_UNAVAILABLE sentinel instead of failing the confirmation.
    """

    def __init__(self, lookup: ReceiptLookup):
        self._lookup = lookup

    def resolve(self, event: CheckoutCompleted) -> PaymentConfirmed:
        if not event.order_id:
            logger.error(
                "Checkout session %s (event %s) has no orderId metadata",
                event.session_id,
                event.event_id,
            )
            raise MissingOrderCorrelation(event.session_id)

        receipt_url = event.receipt_url or self._lookup_receipt(event)

        return PaymentConfirmed(
            payment_session_id=event.session_id,
            order_id=event.order_id,
            receipt_url=receipt_url,
        )

    def _lookup_receipt(self, event: CheckoutCompleted) -> str:
        if not event.payment_intent_id:
            # No payment intent, no charge: nothing for the processor to return
            logger.info("Session %s has no payment intent, skipping lookup", event.session_id)
            return event.success_url or RECEIPT_UNAVAILABLE

        try:
            receipt_url = self._lookup.get_receipt(event.session_id)
        except Exception:
            logger.warning("Receipt lookup failed for session %s", event.session_id, exc_info=True)
            return RECEIPT_UNAVAILABLE
        return receipt_url or event.success_url or RECEIPT_UNAVAILABLE

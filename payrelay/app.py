"""Application factory: wires the relay components and owns their lifecycle.

Every client (Redis, HTTP) is constructed here and passed to the components
that use it. Lifespan: init (consumer groups, consumer thread) -> ready ->
shutdown (stop consumer, close clients).
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from payrelay.bus import RedisBus
from payrelay.config import Settings
from payrelay.notifications.consumer import NotificationConsumer
from payrelay.notifications.dispatcher import NotificationDispatcher
from payrelay.publisher import EventPublisher
from payrelay.webhooks.handlers import WebhookEndpoint, register_webhook_routes
from payrelay.webhooks.idempotency import IdempotencyGuard
from payrelay.webhooks.receipts import ReceiptLookup, StripeReceiptLookup
from payrelay.webhooks.resolver import PaymentConfirmationResolver

logger = logging.getLogger(__name__)


def connect_redis(settings: Settings) -> redis.Redis:
    """Redis client whose every command is bounded by the configured timeouts."""
    return redis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_connect_timeout,
    )


def create_app(
    settings: Settings | None = None,
    *,
    redis_client: redis.Redis | None = None,
    receipt_lookup: ReceiptLookup | None = None,
    start_consumer: bool | None = None,
) -> FastAPI:
    """Build the FastAPI app and every component it serves.

    Args:
        settings: Defaults to Settings() read from the environment
        redis_client: Shared by the bus and the idempotency guard
        receipt_lookup: Defaults to StripeReceiptLookup
        start_consumer: Overrides settings.enable_consumer
    """
    settings = settings or Settings()
    if redis_client is None:
        redis_client = connect_redis(settings)
    if receipt_lookup is None:
        receipt_lookup = StripeReceiptLookup(
            settings.stripe_api_key,
            base_url=settings.stripe_api_base,
            timeout=settings.receipt_lookup_timeout,
        )
    if start_consumer is None:
        start_consumer = settings.enable_consumer

    if not settings.webhook_secret:
        logger.warning("Webhook secret not set, every webhook will be rejected")

    bus = RedisBus(redis_client, group=settings.consumer_group, maxlen=settings.stream_maxlen)
    publisher = EventPublisher(bus)
    guard = IdempotencyGuard(
        redis_client,
        prefix=settings.idempotency_prefix,
        pending_ttl=settings.idempotency_pending_ttl,
        ttl=settings.idempotency_ttl,
    )
    endpoint = WebhookEndpoint(
        settings.webhook_secret,
        guard,
        PaymentConfirmationResolver(receipt_lookup),
        publisher,
        tolerance=settings.signature_tolerance,
    )
    dispatcher = NotificationDispatcher(publisher)
    consumer = NotificationConsumer(
        bus,
        dispatcher.routes(),
        consumer_name=settings.consumer_name,
        batch_size=settings.consumer_batch_size,
        block_ms=settings.consumer_block_ms,
        stale_claim_ms=settings.stale_claim_ms,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if start_consumer:
            consumer.start()
        logger.info("Payment relay ready")
        try:
            yield
        finally:
            consumer.stop()
            if hasattr(receipt_lookup, "close"):
                receipt_lookup.close()
            bus.close()
            logger.info("Payment relay shut down")

    app = FastAPI(title="Payment Relay", lifespan=lifespan)
    app.state.settings = settings
    app.state.redis = redis_client
    app.state.bus = bus
    app.state.webhook_endpoint = endpoint
    app.state.dispatcher = dispatcher
    app.state.consumer = consumer

    register_webhook_routes(app, endpoint)

    @app.get("/health")
    async def health():
        ok = bus.ping()
        body = {
            "status": "healthy" if ok else "degraded",
            "checks": {"redis": ok, "consumer": consumer.running},
        }
        return JSONResponse(body, status_code=200 if ok else 503)

    return app


def main() -> None:
    import uvicorn

    settings = Settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(create_app(settings), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()

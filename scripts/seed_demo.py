#!/usr/bin/env python3
"""
Script: seed_demo.py
Description: Register demo webhooks and ingest sample events.

Registers one webhook for order events and one for payment events, then
ingests a sample event of each type and runs the delivery engine until
the first attempts have finished. Point the URLs at a request bin to
watch signed deliveries arrive.

Usage:
    python scripts/seed_demo.py --orders-url https://example.com/orders \\
        --payments-url https://example.com/payments
"""

import argparse
import asyncio
import sys

from hookrelay.config.settings import settings
from hookrelay.delivery.engine import DeliveryEngine
from hookrelay.errors import StoreUnavailableError
from hookrelay.models.webhook import Webhook
from hookrelay.utils.logger import get_logger

logger = get_logger(__name__)

SAMPLE_EVENTS = [
    ("order.created", {"order_id": "ORD-1001", "customer_id": "CUST-1", "amount": 49.99}),
    ("order.updated", {"order_id": "ORD-1001", "status": "shipped"}),
    ("payment.success", {"payment_id": "PAY-2001", "order_id": "ORD-1001", "amount": 49.99}),
    ("payment.failed", {"payment_id": "PAY-2002", "order_id": "ORD-1002", "reason": "card_declined"}),
]


async def seed(orders_url: str, payments_url: str, secret: str) -> None:
    """Register the demo webhooks and ingest one event of each type."""
    async with DeliveryEngine(settings) as engine:
        webhooks = [
            Webhook(
                webhook_id="whk_demo_orders",
                url=orders_url,
                events={"order.created", "order.updated"},
                owner_id="demo",
                secret=secret
            ),
            Webhook(
                webhook_id="whk_demo_payments",
                url=payments_url,
                events={"payment.success", "payment.failed"},
                owner_id="demo",
                secret=secret
            ),
        ]
        for webhook in webhooks:
            await engine.store.put_webhook(webhook)

        for event_type, payload in SAMPLE_EVENTS:
            event_id = await engine.coordinator.ingest(event_type, payload, metadata={"source": "seed_demo"})
            print(f"Ingested {event_type}: {event_id}")

        # Failed attempts stay RETRYING and are picked up by the next running engine
        if engine.pool is not None:
            await engine.pool.join()

        for webhook in webhooks:
            for delivery in await engine.coordinator.deliveries_for_webhook(webhook.webhook_id):
                print(f"  {delivery.delivery_id} -> {webhook.webhook_id}: {delivery.status.value}")


def main() -> int:
    """Main script execution."""
    parser = argparse.ArgumentParser(description="Seed Hook Relay with demo webhooks and events")
    parser.add_argument("--orders-url", required=True, help="Endpoint for order.* events")
    parser.add_argument("--payments-url", required=True, help="Endpoint for payment.* events")
    parser.add_argument("--secret", default="demo-secret", help="Signing secret for both webhooks")
    args = parser.parse_args()

    try:
        asyncio.run(seed(args.orders_url, args.payments_url, args.secret))
    except StoreUnavailableError as e:
        logger.error("Seeding failed", error=str(e))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

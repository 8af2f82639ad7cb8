"""
Module: conftest.py
Description: Shared pytest fixtures for Hook Relay tests.

Provides reusable fixtures for the DynamoDB store, sample events and
webhooks, and common test setup. Uses moto for AWS service mocking to
enable fast, isolated tests.
"""

from datetime import datetime, timedelta, timezone

import pytest
from moto import mock_aws

from hookrelay.config.settings import Settings
from hookrelay.delivery.coordinator import DeliveryCoordinator
from hookrelay.delivery.push import WebhookDispatcher
from hookrelay.delivery.retry import RetryScheduler
from hookrelay.models.delivery import Delivery
from hookrelay.models.event import Event
from hookrelay.models.webhook import Webhook
from hookrelay.storage.dynamodb import DynamoDBDeliveryStore


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Fake AWS credentials so no test can reach a real account."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def test_settings():
    """
    Provide test configuration settings.

    Disables .env loading for predictable tests and keeps retries fast.
    """
    return Settings(
        _env_file=None,
        app_name="Hook Relay Test",
        app_version="0.1.0-test",
        log_level="DEBUG",
        stage="test",
        events_table_name="test-events",
        webhooks_table_name="test-webhooks",
        deliveries_table_name="test-deliveries",
        max_retries=3,
        retry_base_delay=1.0,
        retry_max_delay=60.0,
        retry_jitter=False,
        sweep_interval_seconds=0.05,
        worker_concurrency=4,
    )


@pytest.fixture
def store(test_settings):
    """
    Provide a DynamoDBDeliveryStore backed by moto.

    Creates the events, webhooks and deliveries tables with the same
    schema as production.
    """
    with mock_aws():
        delivery_store = DynamoDBDeliveryStore.from_settings(test_settings)
        delivery_store.create_tables()
        yield delivery_store


@pytest.fixture
def scheduler():
    """Deterministic backoff (no jitter)."""
    return RetryScheduler(base_delay=1.0, max_delay=60.0, jitter=False)


@pytest.fixture
def dispatcher():
    return WebhookDispatcher(timeout_seconds=5, response_body_limit=1024, default_secret="fallback-secret")


class ManualClock:
    """UTC clock that only moves when a test advances it."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock():
    return ManualClock(datetime.now(timezone.utc))


@pytest.fixture
def coordinator(store, dispatcher, scheduler, clock):
    """Coordinator that runs first attempts inline on the manual clock."""
    return DeliveryCoordinator(
        store=store,
        dispatcher=dispatcher,
        scheduler=scheduler,
        max_retries=3,
        lease_ttl_seconds=30,
        clock=clock
    )


@pytest.fixture
def sample_event():
    """Provide a typical order event."""
    return Event(
        event_id="evt_test123abc00",
        event_type="order.created",
        payload={
            "order_id": "ORD-001",
            "customer_id": "CUST-123",
            "amount": 99.99,
            "items": [{"product_id": "PROD-1", "quantity": 2}]
        },
        metadata={"source": "ecommerce-platform"},
        created_at=datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)
    )


@pytest.fixture
def order_webhook():
    return Webhook(
        webhook_id="whk_orders00001",
        url="https://hooks.example.com/orders",
        events={"order.created", "order.updated"},
        is_active=True,
        owner_id="user_1",
        secret="orders-secret"
    )


@pytest.fixture
def payment_webhook():
    return Webhook(
        webhook_id="whk_payments001",
        url="https://hooks.example.com/payments",
        events={"payment.success", "payment.failed"},
        is_active=True,
        owner_id="user_1",
        secret="payments-secret"
    )


@pytest.fixture
def pending_delivery(sample_event, order_webhook):
    return Delivery.create(sample_event.event_id, order_webhook.webhook_id, max_retries=3)

"""
Module: engine.py
Description: Wiring and lifecycle of the delivery engine.

Builds the store, dispatcher, scheduler, coordinator, workers and sweep
from Settings. The store handle is opened here at process start and
closed at shutdown, and is passed explicitly to every component.
"""

import asyncio
from datetime import datetime, timezone
from typing import Callable, Optional

from hookrelay.config.settings import Settings
from hookrelay.delivery.coordinator import DeliveryCoordinator
from hookrelay.delivery.push import WebhookDispatcher
from hookrelay.delivery.retry import RetryScheduler
from hookrelay.delivery.worker import RetrySweeper, WorkerPool
from hookrelay.sqs_queue.sqs import SQSClient
from hookrelay.storage.base import DeliveryStore
from hookrelay.storage.dynamodb import DynamoDBDeliveryStore
from hookrelay.utils.logger import configure_logging, get_logger
from hookrelay.utils.metrics import MetricsClient

logger = get_logger(__name__)


class DeliveryEngine:
    """
    Delivery engine assembled from settings.

    With ``work_queue_url`` set, work items go to SQS and are consumed by
    the Lambda handlers in delivery.worker; otherwise an in-process
    WorkerPool executes them and the sweep runs as a background task.

    Example:
        >>> async with DeliveryEngine(settings) as engine:
        ...     await engine.coordinator.ingest("order.created", {"order_id": "123"})
    """

    def __init__(
        self,
        settings: Settings,
        store: Optional[DeliveryStore] = None,
        dispatcher: Optional[WebhookDispatcher] = None,
        metrics: Optional[MetricsClient] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)
    ):
        configure_logging(settings.log_level)

        self.settings = settings
        self.store = store or DynamoDBDeliveryStore.from_settings(settings)

        if dispatcher is None:
            secret = settings.signing_secret
            dispatcher = WebhookDispatcher(
                timeout_seconds=settings.delivery_timeout,
                response_body_limit=settings.response_body_limit,
                default_secret=secret.get_secret_value() if secret else None
            )
        if metrics is None and settings.metrics_enabled:
            metrics = MetricsClient(namespace=settings.metrics_namespace, region_name=settings.aws_region)

        self.scheduler = RetryScheduler(
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            jitter=settings.retry_jitter
        )
        self.coordinator = DeliveryCoordinator(
            store=self.store,
            dispatcher=dispatcher,
            scheduler=self.scheduler,
            max_retries=settings.max_retries,
            lease_ttl_seconds=settings.lease_ttl_seconds,
            metrics=metrics,
            clock=clock
        )

        self.pool: Optional[WorkerPool] = None
        self.sqs_client: Optional[SQSClient] = None
        if settings.work_queue_url:
            self.sqs_client = SQSClient(settings.work_queue_url, region_name=settings.aws_region)
            submit = self.sqs_client.send_delivery
        else:
            self.pool = WorkerPool(self.coordinator.attempt, concurrency=settings.worker_concurrency)
            submit = self.pool.submit

        self.sweeper = RetrySweeper(
            store=self.store,
            submit=submit,
            interval_seconds=settings.sweep_interval_seconds,
            batch_limit=settings.sweep_batch_limit,
            clock=clock
        )
        self._submit = submit
        self._stop_event: Optional[asyncio.Event] = None
        self._sweep_task: Optional[asyncio.Task] = None

        # The in-process pool only receives work once start() has run
        if self.sqs_client is not None:
            self.coordinator.set_submitter(submit)

    async def start(self) -> None:
        """Start in-process workers and the background sweep."""
        if self.pool is None or self._sweep_task is not None:
            return

        await self.pool.start()
        self.coordinator.set_submitter(self._submit)
        self._stop_event = asyncio.Event()
        self._sweep_task = asyncio.create_task(self.sweeper.run(self._stop_event), name="retry-sweeper")

        logger.info(
            "Delivery engine started",
            concurrency=self.settings.worker_concurrency,
            sweep_interval_seconds=self.settings.sweep_interval_seconds
        )

    async def stop(self) -> None:
        """Stop the sweep, drain the workers and close the store."""
        if self._sweep_task is not None:
            self._stop_event.set()
            await self._sweep_task
            self._sweep_task = None
        if self.pool is not None and self.pool.running:
            await self.pool.stop()
            self.coordinator.set_submitter(None)

        self.store.close()
        logger.info("Delivery engine stopped")

    async def __aenter__(self) -> 'DeliveryEngine':
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

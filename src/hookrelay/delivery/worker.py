"""
Module: delivery/worker.py
Description: Workers that execute delivery attempts.

Provides the in-process worker pool, the retry sweep that re-submits
due deliveries, and the SQS Lambda handler used when work items travel
through a queue instead.

Key Components:
- WorkerPool: asyncio workers pulling delivery ids from a queue
- RetrySweeper: polls the store for due RETRYING deliveries
- handler(): Lambda entry point for SQS batches of delivery ids
- sweep_handler(): Scheduled Lambda entry point for the retry sweep
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from hookrelay.errors import HookRelayError, StoreUnavailableError
from hookrelay.storage.base import DeliveryStore
from hookrelay.utils.logger import get_logger

logger = get_logger(__name__)

AttemptFn = Callable[[str], Awaitable[Any]]
SubmitFn = Callable[[str], Awaitable[Any]]


class WorkerPool:
    """
    Pool of concurrent workers executing delivery attempts.

    Attempts for distinct deliveries run in parallel. A delivery id that
    is already waiting in the queue is not queued a second time.

    Example:
        >>> pool = WorkerPool(coordinator.attempt, concurrency=10)
        >>> await pool.start()
        >>> await pool.submit("dlv_...")
        >>> await pool.join()
        >>> await pool.stop()
    """

    def __init__(self, attempt: AttemptFn, concurrency: int = 10):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        self._attempt = attempt
        self.concurrency = concurrency
        self._queue: Optional[asyncio.Queue] = None
        self._queued: Set[str] = set()
        self._tasks: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def start(self) -> None:
        """Start the worker tasks on the running loop."""
        if self.running:
            return
        self._queue = asyncio.Queue()
        self._tasks = [
            asyncio.create_task(self._worker(index), name=f"delivery-worker-{index}")
            for index in range(self.concurrency)
        ]
        logger.info("Worker pool started", concurrency=self.concurrency)

    async def submit(self, delivery_id: str) -> None:
        """Queue a delivery attempt."""
        if self._queue is None:
            raise RuntimeError("worker pool is not started")
        if delivery_id in self._queued:
            logger.debug("Delivery already queued", delivery_id=delivery_id)
            return
        self._queued.add(delivery_id)
        await self._queue.put(delivery_id)

    async def join(self) -> None:
        """Wait until every queued attempt has finished."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self) -> None:
        """Cancel idle workers; attempts in flight finish within the dispatch timeout."""
        await self.join()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Worker pool stopped")

    async def _worker(self, index: int) -> None:
        while True:
            delivery_id = await self._queue.get()
            self._queued.discard(delivery_id)
            try:
                await self._attempt(delivery_id)
            except HookRelayError as e:
                # The sweep or a re-ingest re-drives this delivery
                logger.error(
                    "Delivery attempt failed",
                    worker=index,
                    delivery_id=delivery_id,
                    error=str(e),
                    error_type=type(e).__name__
                )
            except Exception:
                logger.exception(
                    "Unexpected error in delivery attempt",
                    worker=index,
                    delivery_id=delivery_id
                )
            finally:
                self._queue.task_done()


class RetrySweeper:
    """
    Re-submits RETRYING deliveries whose next attempt is due.

    The sweep is the scheduling mechanism; the RetryScheduler only
    computes next_attempt_at.
    """

    def __init__(
        self,
        store: DeliveryStore,
        submit: SubmitFn,
        interval_seconds: float = 5.0,
        batch_limit: int = 100,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")

        self.store = store
        self.submit = submit
        self.interval_seconds = interval_seconds
        self.batch_limit = batch_limit
        self._clock = clock

    async def run_once(self, now: Optional[datetime] = None) -> int:
        """
        Submit every delivery due at ``now``.

        Returns:
            Number of deliveries submitted
        """
        due = await self.store.find_due_retries(now or self._clock(), self.batch_limit)
        for delivery_id in due:
            await self.submit(delivery_id)

        if due:
            logger.info("Due retries submitted", count=len(due))
        return len(due)

    async def run(self, stop_event: asyncio.Event) -> None:
        """Sweep every ``interval_seconds`` until ``stop_event`` is set."""
        logger.info("Retry sweeper started", interval_seconds=self.interval_seconds)

        while not stop_event.is_set():
            try:
                await self.run_once()
            except StoreUnavailableError as e:
                logger.warning("Retry sweep failed, retrying next tick", error=str(e))

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

        logger.info("Retry sweeper stopped")


_engine = None


def get_engine():
    """Build the engine once per Lambda container; shared by every Lambda entry point."""
    global _engine
    if _engine is None:
        from hookrelay.config.settings import settings
        from hookrelay.delivery.engine import DeliveryEngine

        _engine = DeliveryEngine(settings)
    return _engine


async def _process_records(records: List[Dict[str, Any]], attempt: AttemptFn) -> List[Dict[str, str]]:
    batch_failures = []

    for record in records:
        try:
            delivery_id = json.loads(record['body'])['delivery_id']
        except (KeyError, TypeError, ValueError) as e:
            # Malformed messages can never succeed; drop them
            logger.error(
                "Invalid SQS message",
                message_id=record.get('messageId'),
                error=str(e)
            )
            continue

        try:
            await attempt(delivery_id)
        except StoreUnavailableError as e:
            logger.error(
                "Error processing SQS message",
                message_id=record['messageId'],
                delivery_id=delivery_id,
                error=str(e)
            )
            # Message returns to the queue for another try
            batch_failures.append({'itemIdentifier': record['messageId']})

    return batch_failures


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Lambda handler for SQS delivery work items.

    Args:
        event: SQS event with a batch of {"delivery_id": ...} messages
        context: Lambda context

    Returns:
        Response with batch item failures (if any)
    """
    engine = get_engine()
    batch_failures = asyncio.run(
        _process_records(event.get('Records', []), engine.coordinator.attempt)
    )
    return {'batchItemFailures': batch_failures}


def sweep_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Lambda handler for the scheduled retry sweep.

    Runs one sweep and queues the due deliveries on the work queue.

    Returns:
        Number of deliveries submitted
    """
    engine = get_engine()
    submitted = asyncio.run(engine.sweeper.run_once())
    return {'submitted': submitted}

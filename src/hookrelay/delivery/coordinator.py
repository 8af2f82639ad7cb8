"""
Module: coordinator.py
Description: Delivery lifecycle orchestration.

Runs ingestion (persist, match, fan out) and the per-delivery attempt
state machine. Guarantees at most one in-flight dispatch per delivery
through a store lease, and applies every transition as a single
compare-and-set write.

Key Components:
- DeliveryCoordinator.ingest() / ingest_event(): idempotent fan-out
- DeliveryCoordinator.attempt(): lease, dispatch, transition
- Query surface: get_delivery(), deliveries_for_event(), deliveries_for_webhook()

Dependencies: datetime, typing, uuid, logger, metrics
"""

from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional
from uuid import uuid4

from hookrelay.delivery.matcher import WebhookMatcher
from hookrelay.delivery.push import WebhookDispatcher
from hookrelay.delivery.retry import RetryScheduler
from hookrelay.errors import DeliveryNotFoundError, StoreUnavailableError
from hookrelay.models.delivery import Delivery, DeliveryOutcome, DeliveryStatus
from hookrelay.models.event import Event
from hookrelay.storage.base import DeliveryStore
from hookrelay.utils.logger import get_logger
from hookrelay.utils.metrics import MetricsClient

logger = get_logger(__name__)

SubmitFn = Callable[[str], Awaitable[None]]

_TRANSITION_METRICS = {
    DeliveryStatus.SUCCESS: "DeliverySucceeded",
    DeliveryStatus.RETRYING: "DeliveryRetryScheduled",
    DeliveryStatus.FAILED: "DeliveryFailed",
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DeliveryCoordinator:
    """
    Owns the end-to-end lifecycle of every Delivery.

    State machine per delivery::

        PENDING  --success-->                 SUCCESS   (terminal)
        PENDING  --failure, budget left-->    RETRYING  (retry_count + 1)
        PENDING  --failure, no budget-->      FAILED    (terminal)
        RETRYING --next_attempt_at passed-->  same transitions as PENDING

    A work item for a RETRYING delivery that arrives before its
    next_attempt_at is dropped; the sweep re-submits it once due.

    Work items are handed to ``submit``; without one, attempts run inline
    in the caller's task.

    Example:
        >>> coordinator = DeliveryCoordinator(store, WebhookDispatcher(), RetryScheduler())
        >>> event_id = await coordinator.ingest("order.created", {"order_id": "123"})
        >>> await coordinator.deliveries_for_event(event_id)
    """

    def __init__(
        self,
        store: DeliveryStore,
        dispatcher: WebhookDispatcher,
        scheduler: RetryScheduler,
        max_retries: int = 3,
        lease_ttl_seconds: int = 60,
        submit: Optional[SubmitFn] = None,
        metrics: Optional[MetricsClient] = None,
        clock: Callable[[], datetime] = _utc_now
    ):
        if max_retries < 0:
            raise ValueError("max_retries cannot be negative")

        self.store = store
        self.matcher = WebhookMatcher(store)
        self.dispatcher = dispatcher
        self.scheduler = scheduler
        self.max_retries = max_retries
        self.lease_ttl_seconds = lease_ttl_seconds
        self.metrics = metrics
        self._submit = submit
        self._clock = clock

    def set_submitter(self, submit: Optional[SubmitFn]) -> None:
        """Route work items to a worker pool or queue."""
        self._submit = submit

    async def submit(self, delivery_id: str) -> None:
        """Hand a delivery to the workers for its next attempt."""
        if self._submit is None:
            await self.attempt(delivery_id)
        else:
            await self._submit(delivery_id)

    # Ingestion

    async def ingest(
        self,
        event_type: str,
        payload: Dict[str, Any],
        event_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Ingestion entrypoint: record an event and fan it out.

        Args:
            event_type: Event type (e.g., 'order.created')
            payload: JSON object delivered as the request body
            event_id: Optional caller id; re-ingesting it is a no-op fan-out
            metadata: Optional metadata stored with the event

        Returns:
            The event id

        Raises:
            ValueError: If the event fails validation
            StoreUnavailableError: If the store is unavailable; safe to retry
        """
        fields = {'event_type': event_type, 'payload': payload, 'metadata': metadata}
        if event_id is not None:
            fields['event_id'] = event_id
        event = Event(**fields)

        await self.ingest_event(event)
        return event.event_id

    async def ingest_event(self, event: Event) -> List[Delivery]:
        """
        Persist an event, create its deliveries and submit first attempts.

        Idempotent per (event_id, webhook_id): re-ingesting the same event
        returns the existing deliveries and only re-submits those still
        PENDING, which recovers an ingest interrupted before submission.

        Returns:
            One delivery per matched webhook, as created or as found
        """
        created = await self.store.create_event(event)
        if not created:
            stored = await self.store.get_event(event.event_id)
            if stored is not None:
                event = stored
            logger.info("Event re-ingested", event_id=event.event_id)

        webhooks = await self.matcher.match(event)
        deliveries: List[Delivery] = []
        if webhooks:
            deliveries = await self.store.create_deliveries_if_absent(
                event.event_id,
                [webhook.webhook_id for webhook in webhooks],
                self.max_retries
            )

        if created:
            self._put_metric("EventIngested", event.event_type)

        pending = [d for d in deliveries if d.status == DeliveryStatus.PENDING]
        logger.info(
            "Event ingested",
            event_id=event.event_id,
            event_type=event.event_type,
            deliveries=len(deliveries),
            submitted=len(pending)
        )

        for delivery in pending:
            await self.submit(delivery.delivery_id)

        return deliveries

    # Attempts

    async def attempt(self, delivery_id: str) -> Optional[Delivery]:
        """
        Execute one delivery attempt under the per-delivery lease.

        Returns:
            The delivery after the attempt; the unchanged delivery if it
            was already terminal; None if the lease was held elsewhere,
            the delivery does not exist, its retry is not yet due, or the
            transition lost a race

        Raises:
            StoreUnavailableError: If the store is unavailable; safe to retry
        """
        owner = uuid4().hex
        acquired = await self.store.acquire_lease(
            delivery_id, owner, self.lease_ttl_seconds, self._clock()
        )
        if not acquired:
            logger.info(
                "Delivery attempt skipped, lease held or delivery missing",
                delivery_id=delivery_id
            )
            return None

        try:
            delivery = await self.store.get_delivery(delivery_id)
            if delivery is None:
                logger.warning("Delivery not found", delivery_id=delivery_id)
                return None
            if delivery.status.is_terminal:
                logger.debug(
                    "Delivery already terminal",
                    delivery_id=delivery_id,
                    status=delivery.status.value
                )
                return delivery
            if not self._is_due(delivery):
                logger.debug(
                    "Delivery retry not yet due",
                    delivery_id=delivery_id,
                    next_attempt_at=delivery.next_attempt_at.isoformat()
                )
                return None
            return await self._run_attempt(delivery)
        finally:
            await self._release(delivery_id, owner)

    def _is_due(self, delivery: Delivery) -> bool:
        if delivery.status != DeliveryStatus.RETRYING:
            return True
        return delivery.next_attempt_at <= self._clock()

    async def _run_attempt(self, delivery: Delivery) -> Optional[Delivery]:
        event = await self.store.get_event(delivery.event_id)
        webhook = await self.store.get_webhook(delivery.webhook_id)

        if event is None:
            return await self._apply(delivery, delivery.failed(self._clock(), error='event_missing'))
        if webhook is None:
            return await self._apply(delivery, delivery.failed(self._clock(), error='webhook_missing'))
        if not webhook.is_active:
            return await self._apply(delivery, delivery.failed(self._clock(), error='webhook_inactive'))

        outcome = await self.dispatcher.send(delivery, event, webhook)
        new_state = self._next_state(delivery, outcome, self._clock())
        return await self._apply(delivery, new_state, event_type=event.event_type)

    def _next_state(self, delivery: Delivery, outcome: DeliveryOutcome, now: datetime) -> Delivery:
        body = outcome.body.decode('utf-8', errors='replace') if outcome.body else None

        if outcome.success:
            return delivery.succeeded(now, response_code=outcome.code, response_body=body)

        next_attempt_at = self.scheduler.next_attempt_at(delivery, now)
        if next_attempt_at is None:
            return delivery.failed(
                now,
                error=outcome.error_kind,
                response_code=outcome.code,
                response_body=body
            )
        return delivery.retrying(
            now,
            next_attempt_at=next_attempt_at,
            error=outcome.error_kind,
            response_code=outcome.code,
            response_body=body
        )

    async def _apply(
        self,
        delivery: Delivery,
        new_state: Delivery,
        event_type: Optional[str] = None
    ) -> Optional[Delivery]:
        applied = await self.store.conditional_update_delivery(
            delivery.delivery_id,
            expected_status=delivery.status,
            expected_retry_count=delivery.retry_count,
            new_state=new_state
        )
        if not applied:
            # Another writer moved the delivery on; this result is discarded
            return None

        logger.info(
            "Delivery transitioned",
            delivery_id=delivery.delivery_id,
            event_id=delivery.event_id,
            webhook_id=delivery.webhook_id,
            from_status=delivery.status.value,
            status=new_state.status.value,
            retry_count=new_state.retry_count,
            response_code=new_state.response_code,
            error_kind=new_state.last_error,
            next_attempt_at=new_state.next_attempt_at.isoformat() if new_state.next_attempt_at else None
        )
        self._put_metric(_TRANSITION_METRICS[new_state.status], event_type)
        return new_state

    async def _release(self, delivery_id: str, owner: str) -> None:
        try:
            await self.store.release_lease(delivery_id, owner)
        except StoreUnavailableError as e:
            # The lease expires on its own after lease_ttl_seconds
            logger.warning(
                "Failed to release delivery lease",
                delivery_id=delivery_id,
                error=str(e)
            )

    def _put_metric(self, metric_name: str, event_type: Optional[str]) -> None:
        if self.metrics is not None:
            self.metrics.count(metric_name, event_type)

    # Query surface

    async def get_delivery(self, delivery_id: str) -> Delivery:
        """
        Look up one delivery.

        Raises:
            DeliveryNotFoundError: If no such delivery exists
        """
        delivery = await self.store.get_delivery(delivery_id)
        if delivery is None:
            raise DeliveryNotFoundError(delivery_id)
        return delivery

    async def deliveries_for_event(self, event_id: str) -> List[Delivery]:
        return await self.store.list_deliveries_for_event(event_id)

    async def deliveries_for_webhook(self, webhook_id: str) -> List[Delivery]:
        return await self.store.list_deliveries_for_webhook(webhook_id)

"""
Module: base.py
Description: Store interface consumed by the delivery engine.

The engine reads and writes the durable store only through this
protocol. Every Delivery mutation is a conditional write so racing
workers cannot both apply a transition.
"""

from datetime import datetime
from typing import List, Optional, Protocol, Sequence

from hookrelay.models.delivery import Delivery, DeliveryStatus
from hookrelay.models.event import Event
from hookrelay.models.webhook import Webhook


class DeliveryStore(Protocol):
    """Durable store of events, webhooks and deliveries."""

    async def create_event(self, event: Event) -> bool:
        """Persist an event; return False if one with the same id exists."""
        ...

    async def get_event(self, event_id: str) -> Optional[Event]:
        ...

    async def put_webhook(self, webhook: Webhook) -> None:
        ...

    async def get_webhook(self, webhook_id: str) -> Optional[Webhook]:
        ...

    async def find_active_webhooks_for_type(self, event_type: str) -> List[Webhook]:
        ...

    async def create_deliveries_if_absent(
        self,
        event_id: str,
        webhook_ids: Sequence[str],
        max_retries: int
    ) -> List[Delivery]:
        """
        Create one PENDING delivery per webhook unless it already exists.

        Returns the delivery for every requested pair, whether it was
        created by this call or found already present.
        """
        ...

    async def get_delivery(self, delivery_id: str) -> Optional[Delivery]:
        ...

    async def conditional_update_delivery(
        self,
        delivery_id: str,
        expected_status: DeliveryStatus,
        expected_retry_count: int,
        new_state: Delivery
    ) -> bool:
        """Apply ``new_state`` only if status and retry_count still match."""
        ...

    async def find_due_retries(self, now: datetime, limit: int = 100) -> List[str]:
        ...

    async def list_deliveries_for_event(self, event_id: str) -> List[Delivery]:
        ...

    async def list_deliveries_for_webhook(self, webhook_id: str) -> List[Delivery]:
        ...

    async def acquire_lease(
        self,
        delivery_id: str,
        owner: str,
        ttl_seconds: int,
        now: datetime
    ) -> bool:
        """Take the exclusive dispatch lease; False if another owner holds it."""
        ...

    async def release_lease(self, delivery_id: str, owner: str) -> bool:
        ...

    def close(self) -> None:
        ...

"""
Module: matcher.py
Description: Event-to-webhook matching.

Finds every active webhook subscribed to an event's type. Read-only;
store failures propagate so the caller retries the whole match.
"""

from typing import List

from hookrelay.models.event import Event
from hookrelay.models.webhook import Webhook
from hookrelay.storage.base import DeliveryStore
from hookrelay.utils.logger import get_logger

logger = get_logger(__name__)


class WebhookMatcher:
    """Matches events to subscribed webhooks."""

    def __init__(self, store: DeliveryStore):
        self.store = store

    async def match(self, event: Event) -> List[Webhook]:
        """
        Return all active webhooks subscribed to ``event.event_type``.

        Raises:
            StoreUnavailableError: If the webhook lookup fails
        """
        candidates = await self.store.find_active_webhooks_for_type(event.event_type)

        matched = {}
        for webhook in candidates:
            # The store filter is a pre-filter; the snapshot decides
            if webhook.matches(event.event_type):
                matched[webhook.webhook_id] = webhook

        logger.info(
            "Event matched to webhooks",
            event_id=event.event_id,
            event_type=event.event_type,
            webhook_count=len(matched)
        )
        return list(matched.values())

"""
Module: models
Description: Package initialization for Pydantic data models.

This package contains all data models used by Hook Relay:
- Event: Immutable ingested event
- Webhook: Subscriber registration
- Delivery: Per (event, webhook) delivery record and state machine
- Request and response models for the HTTP surface

All models are exported here for convenient importing.
"""

from .delivery import Delivery, DeliveryOutcome, DeliveryStatus, delivery_id_for
from .event import Event, generate_event_id
from .request import IngestEventRequest
from .response import DeliveryResponse, IngestEventResponse
from .webhook import Webhook

__all__ = [
    "Delivery",
    "DeliveryOutcome",
    "DeliveryStatus",
    "delivery_id_for",
    "Event",
    "generate_event_id",
    "IngestEventRequest",
    "DeliveryResponse",
    "IngestEventResponse",
    "Webhook",
]

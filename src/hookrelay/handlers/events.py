"""
Module: events.py
Description: Event ingestion endpoints.

Thin HTTP adapter over DeliveryCoordinator.ingest_event() and the
per-event delivery query.

Key Components:
- ingest_event(): POST /events
- list_event_deliveries(): GET /events/{event_id}/deliveries
- get_coordinator(): Dependency injection for the coordinator

Dependencies: FastAPI, typing, models, delivery, errors
"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi import status as status_codes

from hookrelay.delivery.coordinator import DeliveryCoordinator
from hookrelay.errors import StoreUnavailableError
from hookrelay.models.event import Event
from hookrelay.models.request import IngestEventRequest
from hookrelay.models.response import DeliveryResponse, IngestEventResponse
from hookrelay.utils.logger import get_logger

router = APIRouter(prefix="/events", tags=["events"])
logger = get_logger(__name__)


def get_coordinator(request: Request) -> DeliveryCoordinator:
    """
    Dependency to get the delivery coordinator.

    The engine is opened by the application lifespan and stored on
    app.state.
    """
    return request.app.state.engine.coordinator


@router.post("", status_code=status_codes.HTTP_202_ACCEPTED, response_model=IngestEventResponse)
async def ingest_event(
    request: IngestEventRequest,
    coordinator: DeliveryCoordinator = Depends(get_coordinator)
) -> IngestEventResponse:
    """
    Ingest an event and fan it out to subscribed webhooks.

    Re-sending a request with the same event_id is idempotent: no
    duplicate deliveries are created.

    Raises:
        HTTPException: 400 if the event is invalid
        HTTPException: 503 if the store is unavailable (safe to retry)

    Example:
        POST /events
        {"event_type": "order.created", "payload": {"order_id": "12345"}}

        Response (202):
        {
            "event_id": "evt_abc123xyz456",
            "deliveries": [{"delivery_id": "dlv_...", "status": "PENDING", ...}],
            "message": "Event accepted"
        }
    """
    try:
        fields = request.model_dump(exclude_none=True)
        event = Event(**fields)
    except ValueError as e:
        logger.warning("Event validation failed", error=str(e), event_type=request.event_type)
        raise HTTPException(
            status_code=status_codes.HTTP_400_BAD_REQUEST,
            detail=f"Invalid event data: {str(e)}"
        )

    try:
        deliveries = await coordinator.ingest_event(event)
    except StoreUnavailableError as e:
        logger.error("Failed to ingest event", event_id=event.event_id, error=str(e))
        raise HTTPException(
            status_code=status_codes.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Event store unavailable, retry the request"
        )

    return IngestEventResponse(
        event_id=event.event_id,
        deliveries=[DeliveryResponse.from_delivery(d) for d in deliveries],
        message=f"Event accepted for {len(deliveries)} webhook(s)"
    )


@router.get("/{event_id}/deliveries", response_model=List[DeliveryResponse])
async def list_event_deliveries(
    event_id: str,
    coordinator: DeliveryCoordinator = Depends(get_coordinator)
) -> List[DeliveryResponse]:
    """Return every delivery created for an event."""
    try:
        deliveries = await coordinator.deliveries_for_event(event_id)
    except StoreUnavailableError as e:
        logger.error("Failed to list deliveries", event_id=event_id, error=str(e))
        raise HTTPException(
            status_code=status_codes.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Delivery store unavailable"
        )

    return [DeliveryResponse.from_delivery(d) for d in deliveries]

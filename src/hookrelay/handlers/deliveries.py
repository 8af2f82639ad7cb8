"""
Module: deliveries.py
Description: Read-only delivery query endpoints for operators.
"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException
from fastapi import status as status_codes

from hookrelay.delivery.coordinator import DeliveryCoordinator
from hookrelay.errors import DeliveryNotFoundError, StoreUnavailableError
from hookrelay.handlers.events import get_coordinator
from hookrelay.models.response import DeliveryResponse
from hookrelay.utils.logger import get_logger

router = APIRouter(tags=["deliveries"])
logger = get_logger(__name__)


@router.get("/deliveries/{delivery_id}", response_model=DeliveryResponse)
async def get_delivery(
    delivery_id: str,
    coordinator: DeliveryCoordinator = Depends(get_coordinator)
) -> DeliveryResponse:
    """
    Retrieve one delivery with its last-attempt diagnostics.

    Raises:
        HTTPException: 404 if the delivery does not exist
        HTTPException: 503 if the store is unavailable
    """
    try:
        delivery = await coordinator.get_delivery(delivery_id)
    except DeliveryNotFoundError:
        raise HTTPException(
            status_code=status_codes.HTTP_404_NOT_FOUND,
            detail=f"Delivery {delivery_id} not found"
        )
    except StoreUnavailableError as e:
        logger.error("Database error retrieving delivery", delivery_id=delivery_id, error=str(e))
        raise HTTPException(
            status_code=status_codes.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Delivery store unavailable"
        )

    return DeliveryResponse.from_delivery(delivery)


@router.get("/webhooks/{webhook_id}/deliveries", response_model=List[DeliveryResponse])
async def list_webhook_deliveries(
    webhook_id: str,
    coordinator: DeliveryCoordinator = Depends(get_coordinator)
) -> List[DeliveryResponse]:
    """Return the delivery history of one webhook, oldest first."""
    try:
        deliveries = await coordinator.deliveries_for_webhook(webhook_id)
    except StoreUnavailableError as e:
        logger.error("Database error listing deliveries", webhook_id=webhook_id, error=str(e))
        raise HTTPException(
            status_code=status_codes.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Delivery store unavailable"
        )

    return [DeliveryResponse.from_delivery(d) for d in deliveries]

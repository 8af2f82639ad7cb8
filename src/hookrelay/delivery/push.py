"""
Module: push.py
Description: Push delivery of one event to one webhook endpoint.

Implements a single signed HTTP POST with timeout handling and outcome
classification. The dispatcher never retries; retry policy belongs to
the RetryScheduler and the DeliveryCoordinator.
"""

import asyncio
import hashlib
import hmac
import json
import time
from typing import Optional, Tuple

import httpx

from hookrelay.models.delivery import Delivery, DeliveryOutcome
from hookrelay.models.event import Event
from hookrelay.models.webhook import Webhook
from hookrelay.utils.logger import get_logger

logger = get_logger(__name__)

SIGNATURE_HEADER = 'X-Signature'


def compute_signature(body: bytes, secret: str) -> str:
    """
    Compute the hex HMAC-SHA256 of a raw request body.

    Args:
        body: Exact bytes sent as the request body
        secret: Shared webhook secret

    Returns:
        Lowercase hex digest
    """
    return hmac.new(secret.encode('utf-8'), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, secret: str, signature: str) -> bool:
    """Check a received signature in constant time."""
    return hmac.compare_digest(compute_signature(body, secret), signature)


def serialize_payload(event: Event) -> bytes:
    """Compact JSON body for an event payload."""
    return json.dumps(event.payload, separators=(',', ':'), default=str).encode('utf-8')


class WebhookDispatcher:
    """
    HTTP client for pushing events to subscriber webhooks.

    Performs exactly one delivery attempt per call. ``timeout_seconds``
    bounds the whole attempt (connect, upload and the capped body read
    together), and is the only cancellation mechanism for an attempt.
    """

    def __init__(
        self,
        timeout_seconds: float = 10,
        response_body_limit: int = 65536,
        default_secret: Optional[str] = None
    ):
        """
        Initialize the dispatcher.

        Args:
            timeout_seconds: Wall-clock limit in seconds for the whole attempt
            response_body_limit: Bytes of response body kept for diagnostics
            default_secret: Secret for webhooks registered without one

        Raises:
            ValueError: If the timeout or body limit is invalid
        """
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        if response_body_limit < 0:
            raise ValueError("response_body_limit cannot be negative")

        self.timeout_seconds = timeout_seconds
        # Per-phase limits; the overall deadline is applied in send()
        self.timeout = httpx.Timeout(timeout_seconds)
        self.response_body_limit = response_body_limit
        self.default_secret = default_secret

        logger.info(
            "Webhook dispatcher initialized",
            timeout_seconds=timeout_seconds,
            response_body_limit=response_body_limit
        )

    def build_headers(self, body: bytes, delivery: Delivery, event: Event, webhook: Webhook) -> dict:
        """Headers for one attempt, including the body signature."""
        secret = webhook.secret or self.default_secret or ''
        return {
            'Content-Type': 'application/json',
            'X-Event-Type': event.event_type,
            'X-Event-Id': event.event_id,
            # Stable across retries so receivers can deduplicate
            'X-Delivery-Id': delivery.delivery_id,
            'X-Delivery-Attempt': str(delivery.attempt_number),
            SIGNATURE_HEADER: compute_signature(body, secret),
        }

    async def _read_capped(self, response: httpx.Response) -> Tuple[bytes, bool]:
        chunks = []
        size = 0
        async for chunk in response.aiter_bytes():
            remaining = self.response_body_limit - size
            if len(chunk) >= remaining:
                chunks.append(chunk[:remaining])
                size += remaining
                # Bodies past the cap are not read at all
                return b''.join(chunks), len(chunk) > remaining
            chunks.append(chunk)
            size += len(chunk)
        return b''.join(chunks), False

    async def _post(self, url: str, body: bytes, headers: dict) -> Tuple[int, bytes, bool]:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            async with client.stream('POST', url, content=body, headers=headers) as response:
                response_body, truncated = await self._read_capped(response)
                return response.status_code, response_body, truncated

    async def send(self, delivery: Delivery, event: Event, webhook: Webhook) -> DeliveryOutcome:
        """
        POST the event payload to the webhook URL once.

        Args:
            delivery: Delivery being attempted
            event: Event whose payload is sent
            webhook: Target endpoint

        Returns:
            DeliveryOutcome; 2xx is success, anything else is a failure
        """
        body = serialize_payload(event)
        headers = self.build_headers(body, delivery, event, webhook)
        started = time.monotonic()

        logger.debug(
            "Attempting delivery",
            delivery_id=delivery.delivery_id,
            event_id=event.event_id,
            webhook_url=webhook.url,
            attempt=delivery.attempt_number
        )

        try:
            status_code, response_body, truncated = await asyncio.wait_for(
                self._post(webhook.url, body, headers),
                timeout=self.timeout_seconds
            )

        except asyncio.TimeoutError as e:
            # Deadline for the whole attempt, e.g. a body trickled in byte by byte
            logger.warning(
                "Delivery deadline exceeded",
                delivery_id=delivery.delivery_id,
                webhook_url=webhook.url,
                timeout_seconds=self.timeout_seconds
            )
            return self._network_failure(
                e, started, detail=f"attempt exceeded {self.timeout_seconds}s"
            )

        except httpx.TimeoutException as e:
            logger.warning(
                "Delivery timeout",
                delivery_id=delivery.delivery_id,
                webhook_url=webhook.url
            )
            return self._network_failure(e, started)

        except httpx.TransportError as e:
            # Connection refused, DNS failure, reset by peer
            logger.warning(
                "Delivery network error",
                delivery_id=delivery.delivery_id,
                webhook_url=webhook.url,
                error=str(e)
            )
            return self._network_failure(e, started)

        except httpx.HTTPError as e:
            logger.error(
                "Delivery failed",
                delivery_id=delivery.delivery_id,
                webhook_url=webhook.url,
                error=str(e),
                error_type=type(e).__name__
            )
            return DeliveryOutcome(
                success=False,
                error_kind='error',
                error_detail=f"{type(e).__name__}: {e}",
                duration_ms=(time.monotonic() - started) * 1000
            )

        duration_ms = (time.monotonic() - started) * 1000
        success = 200 <= status_code < 300

        if success:
            logger.info(
                "Delivery accepted",
                delivery_id=delivery.delivery_id,
                status_code=status_code,
                response_time_ms=duration_ms
            )
        else:
            logger.warning(
                "Delivery HTTP error",
                delivery_id=delivery.delivery_id,
                status_code=status_code,
                response=response_body[:500].decode('utf-8', errors='replace')
            )
        if truncated:
            logger.info(
                "Response body truncated",
                delivery_id=delivery.delivery_id,
                limit=self.response_body_limit
            )

        return DeliveryOutcome(
            success=success,
            code=status_code,
            body=response_body,
            error_kind=None if success else f"http_{status_code}",
            duration_ms=duration_ms
        )

    @staticmethod
    def _network_failure(error: Exception, started: float, detail: Optional[str] = None) -> DeliveryOutcome:
        return DeliveryOutcome(
            success=False,
            error_kind='network',
            error_detail=f"{type(error).__name__}: {detail or error}",
            duration_ms=(time.monotonic() - started) * 1000
        )

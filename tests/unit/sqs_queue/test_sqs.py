"""
Module: test_sqs.py
Description: Unit tests for the SQS work-queue client.

The aioboto3 client is replaced with an async context manager mock.
"""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from hookrelay.errors import QueueUnavailableError, StoreUnavailableError
from hookrelay.sqs_queue.sqs import SQSClient

QUEUE_URL = "https://sqs.us-east-1.amazonaws.com/123456789012/hookrelay-work"


def _mock_sqs(send_message):
    sqs = MagicMock()
    sqs.send_message = send_message
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=sqs)
    context.__aexit__ = AsyncMock(return_value=False)
    return sqs, context


class TestSQSClient:
    """Test cases for SQSClient.send_delivery()."""

    def test_requires_queue_url(self):
        with pytest.raises(ValueError):
            SQSClient("")

    @pytest.mark.asyncio
    async def test_send_delivery(self):
        client = SQSClient(QUEUE_URL, region_name="us-east-1")
        sqs, context = _mock_sqs(AsyncMock(return_value={'MessageId': 'msg-123'}))

        with patch.object(client.session, 'client', return_value=context) as session_client:
            message_id = await client.send_delivery("dlv_abc")

        assert message_id == 'msg-123'
        session_client.assert_called_once_with('sqs', region_name="us-east-1")
        kwargs = sqs.send_message.await_args.kwargs
        assert kwargs['QueueUrl'] == QUEUE_URL
        assert json.loads(kwargs['MessageBody']) == {'delivery_id': 'dlv_abc'}
        assert kwargs['MessageAttributes']['DeliveryId']['StringValue'] == 'dlv_abc'
        assert kwargs['DelaySeconds'] == 0

    @pytest.mark.asyncio
    async def test_delay_is_clamped(self):
        client = SQSClient(QUEUE_URL)
        sqs, context = _mock_sqs(AsyncMock(return_value={'MessageId': 'msg-1'}))

        with patch.object(client.session, 'client', return_value=context):
            await client.send_delivery("dlv_abc", delay_seconds=3600)

        assert sqs.send_message.await_args.kwargs['DelaySeconds'] == 900

    @pytest.mark.asyncio
    async def test_invalid_delivery_id(self):
        with pytest.raises(ValueError):
            await SQSClient(QUEUE_URL).send_delivery("")

    @pytest.mark.asyncio
    async def test_client_error(self):
        client = SQSClient(QUEUE_URL)
        error = ClientError(
            error_response={'Error': {'Code': 'AWS.SimpleQueueService.NonExistentQueue', 'Message': 'No queue'}},
            operation_name='SendMessage'
        )
        _, context = _mock_sqs(AsyncMock(side_effect=error))

        with patch.object(client.session, 'client', return_value=context):
            with pytest.raises(QueueUnavailableError) as exc_info:
                await client.send_delivery("dlv_abc")

        assert exc_info.value.error_code == 'AWS.SimpleQueueService.NonExistentQueue'
        # Callers treat queue outages like store outages
        assert isinstance(exc_info.value, StoreUnavailableError)

    @pytest.mark.asyncio
    async def test_connection_error(self):
        client = SQSClient(QUEUE_URL)
        _, context = _mock_sqs(AsyncMock(side_effect=EndpointConnectionError(endpoint_url=QUEUE_URL)))

        with patch.object(client.session, 'client', return_value=context):
            with pytest.raises(QueueUnavailableError):
                await client.send_delivery("dlv_abc")

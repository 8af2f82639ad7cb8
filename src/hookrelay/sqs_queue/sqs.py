"""
Module: sqs.py
Description: SQS client for delivery work items.

Sends delivery ids to the work queue consumed by the Lambda worker in
delivery.worker. Messages carry only the delivery id; the worker loads
the current state from the store.
"""

import json
from typing import Optional

from aioboto3 import Session
from botocore.exceptions import BotoCoreError, ClientError

from hookrelay.errors import QueueUnavailableError
from hookrelay.utils.logger import get_logger

logger = get_logger(__name__)

# SQS rejects DelaySeconds above 15 minutes
MAX_DELAY_SECONDS = 900


class SQSClient:
    """
    SQS client for delivery work items.

    Attributes:
        queue_url: URL of the work queue
        session: aioboto3 session used to open SQS clients
    """

    def __init__(self, queue_url: str, region_name: Optional[str] = None):
        """
        Initialize SQS client.

        Args:
            queue_url: URL of the SQS queue
            region_name: AWS region
        """
        if not queue_url or not isinstance(queue_url, str):
            raise ValueError("queue_url must be a non-empty string")

        self.queue_url = queue_url
        self.region_name = region_name
        self.session = Session()

        logger.info(
            "SQS client initialized",
            queue_url=queue_url
        )

    async def send_delivery(self, delivery_id: str, delay_seconds: int = 0) -> str:
        """
        Queue a delivery for its next attempt.

        Args:
            delivery_id: Delivery to attempt
            delay_seconds: Delay before the message becomes visible (capped at 900)

        Returns:
            Message ID from SQS

        Raises:
            QueueUnavailableError: If the work item could not be queued
            ValueError: If parameters are invalid
        """
        if not delivery_id or not isinstance(delivery_id, str):
            raise ValueError("delivery_id must be a non-empty string")

        try:
            async with self.session.client('sqs', region_name=self.region_name) as sqs:
                response = await sqs.send_message(
                    QueueUrl=self.queue_url,
                    MessageBody=json.dumps({'delivery_id': delivery_id}),
                    MessageAttributes={
                        'DeliveryId': {
                            'StringValue': delivery_id,
                            'DataType': 'String'
                        }
                    },
                    DelaySeconds=max(0, min(delay_seconds, MAX_DELAY_SECONDS))
                )

        except ClientError as e:
            logger.error(
                "Failed to send message to SQS",
                delivery_id=delivery_id,
                error_code=e.response['Error']['Code'],
                error_message=e.response['Error']['Message']
            )
            raise QueueUnavailableError(
                'send_delivery', e.response['Error']['Message'],
                error_code=e.response['Error']['Code']
            ) from e

        except BotoCoreError as e:
            logger.error(
                "Unexpected error sending message to SQS",
                delivery_id=delivery_id,
                error=str(e)
            )
            raise QueueUnavailableError('send_delivery', str(e)) from e

        message_id = response['MessageId']
        logger.info(
            "Delivery queued",
            delivery_id=delivery_id,
            message_id=message_id,
            queue_url=self.queue_url
        )
        return message_id

"""
Module: dynamodb.py
Description: DynamoDB store for events, webhooks and deliveries.

Implements the DeliveryStore protocol on three DynamoDB tables. All
Delivery mutations are conditional writes, so two workers racing on the
same Delivery cannot both apply a transition.

Key Components:
- DynamoDBDeliveryStore: Main store class
- Idempotent creation: attribute_not_exists() guards on events and deliveries
- Compare-and-set transitions on status and retry_count
- Per-delivery dispatch lease with expiry
- Sparse DueRetryIndex (status + next_attempt_at) for the retry sweep
- Error handling: store failures surface as StoreUnavailableError

boto3 calls block, so they run on one dedicated I/O thread; the event
loop and the other workers keep going while a request is in flight.

Dependencies: boto3, botocore, asyncio, concurrent.futures, datetime, json, typing
"""

import asyncio
import functools
import json
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import BotoCoreError, ClientError

from hookrelay.errors import StoreUnavailableError
from hookrelay.models.delivery import Delivery, DeliveryStatus
from hookrelay.models.event import Event
from hookrelay.models.webhook import Webhook
from hookrelay.utils.batch_helpers import DYNAMODB_BATCH_GET_LIMIT, chunk_list
from hookrelay.utils.logger import get_logger

logger = get_logger(__name__)

CONDITIONAL_CHECK_FAILED = 'ConditionalCheckFailedException'

EVENT_INDEX = 'EventIndex'
WEBHOOK_INDEX = 'WebhookIndex'
DUE_RETRY_INDEX = 'DueRetryIndex'

# Optional delivery attributes; removed from the item when unset
_OPTIONAL_DELIVERY_FIELDS = (
    'response_code',
    'response_body',
    'last_error',
    'delivered_at',
    'next_attempt_at',
)
_LEASE_FIELDS = ('lease_owner', 'lease_expires_at')


def _to_iso(value: datetime) -> str:
    """Fixed-width UTC ISO 8601 string; sorts lexicographically by time."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec='microseconds')


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _delivery_to_item(delivery: Delivery) -> Dict[str, Any]:
    item = {
        'delivery_id': delivery.delivery_id,
        'event_id': delivery.event_id,
        'webhook_id': delivery.webhook_id,
        'status': delivery.status.value,
        'retry_count': delivery.retry_count,
        'max_retries': delivery.max_retries,
        'response_code': delivery.response_code,
        'response_body': delivery.response_body,
        'last_error': delivery.last_error,
        'delivered_at': _to_iso(delivery.delivered_at) if delivery.delivered_at else None,
        'next_attempt_at': _to_iso(delivery.next_attempt_at) if delivery.next_attempt_at else None,
        'created_at': _to_iso(delivery.created_at),
        'updated_at': _to_iso(delivery.updated_at) if delivery.updated_at else None,
    }
    # DynamoDB doesn't allow None values, and index keys must stay sparse
    return {k: v for k, v in item.items() if v is not None}


def _item_to_delivery(item: Dict[str, Any]) -> Delivery:
    return Delivery(
        delivery_id=item['delivery_id'],
        event_id=item['event_id'],
        webhook_id=item['webhook_id'],
        status=DeliveryStatus(item['status']),
        retry_count=int(item['retry_count']),
        max_retries=int(item['max_retries']),
        response_code=int(item['response_code']) if 'response_code' in item else None,
        response_body=item.get('response_body'),
        last_error=item.get('last_error'),
        delivered_at=_from_iso(item.get('delivered_at')),
        next_attempt_at=_from_iso(item.get('next_attempt_at')),
        created_at=_from_iso(item['created_at']),
        updated_at=_from_iso(item.get('updated_at')),
    )


class DynamoDBDeliveryStore:
    """
    DynamoDB implementation of the delivery store.

    Attributes:
        events_table: Events table (hash key event_id)
        webhooks_table: Webhooks table (hash key webhook_id)
        deliveries_table: Deliveries table (hash key delivery_id)

    Example:
        >>> store = DynamoDBDeliveryStore("events", "webhooks", "deliveries")
        >>> await store.create_event(event)
        >>> deliveries = await store.create_deliveries_if_absent(event.event_id, ["whk_1"], 3)
    """

    def __init__(
        self,
        events_table_name: str,
        webhooks_table_name: str,
        deliveries_table_name: str,
        region_name: Optional[str] = None,
        endpoint_url: Optional[str] = None
    ):
        """
        Initialize the DynamoDB store.

        Args:
            events_table_name: Name of the events table
            webhooks_table_name: Name of the webhooks table
            deliveries_table_name: Name of the deliveries table
            region_name: AWS region
            endpoint_url: Optional endpoint override (DynamoDB Local)

        Raises:
            ValueError: If a table name is empty or invalid
        """
        for name in (events_table_name, webhooks_table_name, deliveries_table_name):
            if not name or not isinstance(name, str):
                raise ValueError("table names must be non-empty strings")

        self.dynamodb = boto3.resource(
            'dynamodb',
            region_name=region_name,
            endpoint_url=endpoint_url
        )
        self.events_table = self.dynamodb.Table(events_table_name)
        self.webhooks_table = self.dynamodb.Table(webhooks_table_name)
        self.deliveries_table = self.dynamodb.Table(deliveries_table_name)
        # boto3 resources are not thread-safe; every call goes through this one thread
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='dynamodb-io')

        logger.info(
            "DynamoDB delivery store initialized",
            events_table=events_table_name,
            webhooks_table=webhooks_table_name,
            deliveries_table=deliveries_table_name
        )

    @classmethod
    def from_settings(cls, settings) -> 'DynamoDBDeliveryStore':
        return cls(
            events_table_name=settings.events_table_name,
            webhooks_table_name=settings.webhooks_table_name,
            deliveries_table_name=settings.deliveries_table_name,
            region_name=settings.aws_region,
            endpoint_url=settings.dynamodb_endpoint_url
        )

    def close(self) -> None:
        """Stop the I/O thread and close the underlying HTTP connection pool."""
        self._executor.shutdown(wait=True)
        self.dynamodb.meta.client.close()
        logger.info("DynamoDB delivery store closed")

    async def _call(self, operation: Callable[..., Any], **kwargs) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(operation, **kwargs))

    def _unavailable(self, operation: str, error: Exception, **context) -> StoreUnavailableError:
        if isinstance(error, ClientError):
            error_code = error.response['Error']['Code']
            message = error.response['Error'].get('Message', str(error))
        else:
            error_code = None
            message = str(error)

        logger.error(
            "DynamoDB operation failed",
            operation=operation,
            error_code=error_code,
            error_message=message,
            **context
        )
        return StoreUnavailableError(operation, message, error_code=error_code)

    # Events

    async def create_event(self, event: Event) -> bool:
        """
        Store an event unless one with the same id exists.

        Args:
            event: Event model to store

        Returns:
            True if stored, False if the event id was already present

        Raises:
            StoreUnavailableError: If the DynamoDB operation fails
        """
        item = {
            'event_id': event.event_id,
            'event_type': event.event_type,
            # Serialize payload as JSON string to preserve number and boolean types
            'payload': json.dumps(event.payload),
            'created_at': _to_iso(event.created_at),
        }
        if event.metadata is not None:
            item['metadata'] = json.dumps(event.metadata)

        try:
            await self._call(
                self.events_table.put_item,
                Item=item,
                ConditionExpression='attribute_not_exists(event_id)'
            )
        except ClientError as e:
            if e.response['Error']['Code'] == CONDITIONAL_CHECK_FAILED:
                logger.info("Event already stored", event_id=event.event_id)
                return False
            raise self._unavailable('create_event', e, event_id=event.event_id) from e
        except BotoCoreError as e:
            raise self._unavailable('create_event', e, event_id=event.event_id) from e

        logger.info(
            "Event stored in DynamoDB",
            event_id=event.event_id,
            event_type=event.event_type
        )
        return True

    async def get_event(self, event_id: str) -> Optional[Event]:
        """
        Retrieve an event by ID.

        Returns:
            Event model if found, None otherwise
        """
        try:
            response = await self._call(self.events_table.get_item, Key={'event_id': event_id})
        except (ClientError, BotoCoreError) as e:
            raise self._unavailable('get_event', e, event_id=event_id) from e

        item = response.get('Item')
        if item is None:
            return None

        return Event(
            event_id=item['event_id'],
            event_type=item['event_type'],
            payload=json.loads(item['payload']),
            metadata=json.loads(item['metadata']) if 'metadata' in item else None,
            created_at=_from_iso(item['created_at']),
        )

    # Webhooks

    async def put_webhook(self, webhook: Webhook) -> None:
        """Store or replace a webhook registration."""
        item = {
            'webhook_id': webhook.webhook_id,
            'url': webhook.url,
            'events': sorted(webhook.events),
            'is_active': webhook.is_active,
            'owner_id': webhook.owner_id,
            'secret': webhook.secret,
            'created_at': _to_iso(webhook.created_at),
        }
        item = {k: v for k, v in item.items() if v is not None}

        try:
            await self._call(self.webhooks_table.put_item, Item=item)
        except (ClientError, BotoCoreError) as e:
            raise self._unavailable('put_webhook', e, webhook_id=webhook.webhook_id) from e

        logger.info(
            "Webhook stored in DynamoDB",
            webhook_id=webhook.webhook_id,
            events=item['events'],
            is_active=webhook.is_active
        )

    async def get_webhook(self, webhook_id: str) -> Optional[Webhook]:
        try:
            response = await self._call(self.webhooks_table.get_item, Key={'webhook_id': webhook_id})
        except (ClientError, BotoCoreError) as e:
            raise self._unavailable('get_webhook', e, webhook_id=webhook_id) from e

        item = response.get('Item')
        return self._item_to_webhook(item) if item else None

    async def find_active_webhooks_for_type(self, event_type: str) -> List[Webhook]:
        """
        Scan for active webhooks subscribed to ``event_type``.

        Returns:
            Matching webhooks, deduplicated by webhook_id
        """
        scan_kwargs = {
            'FilterExpression': Attr('is_active').eq(True) & Attr('events').contains(event_type),
            'ConsistentRead': True,
        }
        webhooks: Dict[str, Webhook] = {}

        try:
            while True:
                response = await self._call(self.webhooks_table.scan, **scan_kwargs)
                for item in response.get('Items', []):
                    webhooks[item['webhook_id']] = self._item_to_webhook(item)
                if 'LastEvaluatedKey' not in response:
                    break
                scan_kwargs['ExclusiveStartKey'] = response['LastEvaluatedKey']
        except (ClientError, BotoCoreError) as e:
            raise self._unavailable('find_active_webhooks_for_type', e, event_type=event_type) from e

        logger.debug(
            "Active webhooks found",
            event_type=event_type,
            count=len(webhooks)
        )
        return list(webhooks.values())

    @staticmethod
    def _item_to_webhook(item: Dict[str, Any]) -> Webhook:
        return Webhook(
            webhook_id=item['webhook_id'],
            url=item['url'],
            events=set(item.get('events', [])),
            is_active=bool(item.get('is_active', False)),
            owner_id=item.get('owner_id'),
            secret=item.get('secret'),
            created_at=_from_iso(item['created_at']),
        )

    # Deliveries

    async def create_deliveries_if_absent(
        self,
        event_id: str,
        webhook_ids: Sequence[str],
        max_retries: int
    ) -> List[Delivery]:
        """
        Create one PENDING delivery per (event, webhook) pair.

        The delivery id is derived from the pair, so attribute_not_exists()
        on the key is the uniqueness constraint. A conflict means the pair
        was already scheduled and the stored delivery is returned instead.

        Returns:
            The delivery for every requested webhook, created or existing
        """
        now = datetime.now(timezone.utc)
        deliveries: List[Delivery] = []
        existing_ids: List[str] = []

        for webhook_id in dict.fromkeys(webhook_ids):
            delivery = Delivery.create(event_id, webhook_id, max_retries, now=now)
            try:
                await self._call(
                    self.deliveries_table.put_item,
                    Item=_delivery_to_item(delivery),
                    ConditionExpression='attribute_not_exists(delivery_id)'
                )
                deliveries.append(delivery)
            except ClientError as e:
                if e.response['Error']['Code'] != CONDITIONAL_CHECK_FAILED:
                    raise self._unavailable(
                        'create_deliveries_if_absent', e,
                        event_id=event_id, webhook_id=webhook_id
                    ) from e
                existing_ids.append(delivery.delivery_id)
            except BotoCoreError as e:
                raise self._unavailable(
                    'create_deliveries_if_absent', e,
                    event_id=event_id, webhook_id=webhook_id
                ) from e

        created_count = len(deliveries)
        if existing_ids:
            deliveries.extend(await self._batch_get_deliveries(existing_ids))

        logger.info(
            "Deliveries created",
            event_id=event_id,
            created=created_count,
            already_scheduled=len(existing_ids)
        )
        return deliveries

    async def _batch_get_deliveries(self, delivery_ids: List[str]) -> List[Delivery]:
        table_name = self.deliveries_table.name
        deliveries = []

        try:
            for chunk in chunk_list(delivery_ids, DYNAMODB_BATCH_GET_LIMIT):
                request = {
                    table_name: {
                        'Keys': [{'delivery_id': delivery_id} for delivery_id in chunk],
                        'ConsistentRead': True,
                    }
                }
                while request:
                    response = await self._call(self.dynamodb.batch_get_item, RequestItems=request)
                    for item in response.get('Responses', {}).get(table_name, []):
                        deliveries.append(_item_to_delivery(item))
                    request = response.get('UnprocessedKeys') or None
        except (ClientError, BotoCoreError) as e:
            raise self._unavailable('batch_get_deliveries', e, count=len(delivery_ids)) from e

        return deliveries

    async def get_delivery(self, delivery_id: str) -> Optional[Delivery]:
        try:
            response = await self._call(
                self.deliveries_table.get_item,
                Key={'delivery_id': delivery_id},
                ConsistentRead=True
            )
        except (ClientError, BotoCoreError) as e:
            raise self._unavailable('get_delivery', e, delivery_id=delivery_id) from e

        item = response.get('Item')
        return _item_to_delivery(item) if item else None

    async def conditional_update_delivery(
        self,
        delivery_id: str,
        expected_status: DeliveryStatus,
        expected_retry_count: int,
        new_state: Delivery
    ) -> bool:
        """
        Compare-and-set a delivery transition.

        Args:
            delivery_id: Delivery to update
            expected_status: Status the caller observed
            expected_retry_count: retry_count the caller observed
            new_state: Full post-transition state

        Returns:
            True if applied, False if another writer got there first
        """
        if new_state.delivery_id != delivery_id:
            raise ValueError("new_state must describe the delivery being updated")

        item = _delivery_to_item(new_state)
        names = {'#status': 'status', '#retry_count': 'retry_count'}
        values = {
            ':expected_status': expected_status.value,
            ':expected_retry_count': expected_retry_count,
        }
        set_clauses = []
        for field in ('status', 'retry_count', 'updated_at') + _OPTIONAL_DELIVERY_FIELDS:
            if field not in item:
                continue
            names[f'#{field}'] = field
            values[f':{field}'] = item[field]
            set_clauses.append(f'#{field} = :{field}')

        remove_fields = [f for f in _OPTIONAL_DELIVERY_FIELDS if f not in item]
        for field in remove_fields:
            names[f'#{field}'] = field

        update_expression = 'SET ' + ', '.join(set_clauses)
        if remove_fields:
            update_expression += ' REMOVE ' + ', '.join(f'#{f}' for f in remove_fields)

        try:
            await self._call(
                self.deliveries_table.update_item,
                Key={'delivery_id': delivery_id},
                UpdateExpression=update_expression,
                ConditionExpression=(
                    '#status = :expected_status AND #retry_count = :expected_retry_count'
                ),
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values
            )
        except ClientError as e:
            if e.response['Error']['Code'] == CONDITIONAL_CHECK_FAILED:
                logger.warning(
                    "Delivery transition rejected",
                    delivery_id=delivery_id,
                    expected_status=expected_status.value,
                    expected_retry_count=expected_retry_count,
                    new_status=new_state.status.value
                )
                return False
            raise self._unavailable('conditional_update_delivery', e, delivery_id=delivery_id) from e
        except BotoCoreError as e:
            raise self._unavailable('conditional_update_delivery', e, delivery_id=delivery_id) from e

        logger.info(
            "Delivery updated in DynamoDB",
            delivery_id=delivery_id,
            status=new_state.status.value,
            retry_count=new_state.retry_count
        )
        return True

    async def find_due_retries(self, now: datetime, limit: int = 100) -> List[str]:
        """
        Return ids of RETRYING deliveries whose next_attempt_at has passed.

        Queries the sparse DueRetryIndex, oldest due first.
        """
        query_kwargs = {
            'IndexName': DUE_RETRY_INDEX,
            'KeyConditionExpression': (
                Key('status').eq(DeliveryStatus.RETRYING.value)
                & Key('next_attempt_at').lte(_to_iso(now))
            ),
            'Limit': limit,
        }
        delivery_ids: List[str] = []

        try:
            while len(delivery_ids) < limit:
                response = await self._call(self.deliveries_table.query, **query_kwargs)
                delivery_ids.extend(item['delivery_id'] for item in response.get('Items', []))
                if 'LastEvaluatedKey' not in response:
                    break
                query_kwargs['ExclusiveStartKey'] = response['LastEvaluatedKey']
        except (ClientError, BotoCoreError) as e:
            raise self._unavailable('find_due_retries', e) from e

        return delivery_ids[:limit]

    async def list_deliveries_for_event(self, event_id: str) -> List[Delivery]:
        return await self._query_deliveries(EVENT_INDEX, 'event_id', event_id)

    async def list_deliveries_for_webhook(self, webhook_id: str) -> List[Delivery]:
        return await self._query_deliveries(WEBHOOK_INDEX, 'webhook_id', webhook_id)

    async def _query_deliveries(self, index_name: str, key: str, value: str) -> List[Delivery]:
        query_kwargs = {
            'IndexName': index_name,
            'KeyConditionExpression': Key(key).eq(value),
        }
        deliveries = []

        try:
            while True:
                response = await self._call(self.deliveries_table.query, **query_kwargs)
                deliveries.extend(_item_to_delivery(item) for item in response.get('Items', []))
                if 'LastEvaluatedKey' not in response:
                    break
                query_kwargs['ExclusiveStartKey'] = response['LastEvaluatedKey']
        except (ClientError, BotoCoreError) as e:
            raise self._unavailable('query_deliveries', e, index=index_name, **{key: value}) from e

        return sorted(deliveries, key=lambda d: d.created_at)

    # Leases

    async def acquire_lease(
        self,
        delivery_id: str,
        owner: str,
        ttl_seconds: int,
        now: datetime
    ) -> bool:
        """
        Take the exclusive dispatch lease for a delivery.

        Succeeds when the delivery exists and no unexpired lease is held.

        Returns:
            True if ``owner`` now holds the lease
        """
        try:
            await self._call(
                self.deliveries_table.update_item,
                Key={'delivery_id': delivery_id},
                UpdateExpression='SET lease_owner = :owner, lease_expires_at = :expires',
                ConditionExpression=(
                    'attribute_exists(delivery_id) AND '
                    '(attribute_not_exists(lease_expires_at) OR lease_expires_at < :now)'
                ),
                ExpressionAttributeValues={
                    ':owner': owner,
                    ':expires': _to_iso(now + timedelta(seconds=ttl_seconds)),
                    ':now': _to_iso(now),
                }
            )
        except ClientError as e:
            if e.response['Error']['Code'] == CONDITIONAL_CHECK_FAILED:
                return False
            raise self._unavailable('acquire_lease', e, delivery_id=delivery_id) from e
        except BotoCoreError as e:
            raise self._unavailable('acquire_lease', e, delivery_id=delivery_id) from e

        logger.debug("Delivery lease acquired", delivery_id=delivery_id, owner=owner)
        return True

    async def release_lease(self, delivery_id: str, owner: str) -> bool:
        """
        Release a lease held by ``owner``.

        Returns:
            False if the lease had expired and been taken by another owner
        """
        try:
            await self._call(
                self.deliveries_table.update_item,
                Key={'delivery_id': delivery_id},
                UpdateExpression='REMOVE ' + ', '.join(_LEASE_FIELDS),
                ConditionExpression='lease_owner = :owner',
                ExpressionAttributeValues={':owner': owner}
            )
        except ClientError as e:
            if e.response['Error']['Code'] == CONDITIONAL_CHECK_FAILED:
                logger.warning("Delivery lease lost before release", delivery_id=delivery_id, owner=owner)
                return False
            raise self._unavailable('release_lease', e, delivery_id=delivery_id) from e
        except BotoCoreError as e:
            raise self._unavailable('release_lease', e, delivery_id=delivery_id) from e

        logger.debug("Delivery lease released", delivery_id=delivery_id, owner=owner)
        return True

    # Provisioning

    def create_tables(self) -> None:
        """
        Create the three tables with their indexes.

        Used by tests and scripts/create_tables.py; production tables are
        provisioned by infrastructure code with the same schema.
        """
        self.dynamodb.create_table(
            TableName=self.events_table.name,
            KeySchema=[{'AttributeName': 'event_id', 'KeyType': 'HASH'}],
            AttributeDefinitions=[{'AttributeName': 'event_id', 'AttributeType': 'S'}],
            BillingMode='PAY_PER_REQUEST'
        )
        self.dynamodb.create_table(
            TableName=self.webhooks_table.name,
            KeySchema=[{'AttributeName': 'webhook_id', 'KeyType': 'HASH'}],
            AttributeDefinitions=[{'AttributeName': 'webhook_id', 'AttributeType': 'S'}],
            BillingMode='PAY_PER_REQUEST'
        )
        self.dynamodb.create_table(
            TableName=self.deliveries_table.name,
            KeySchema=[{'AttributeName': 'delivery_id', 'KeyType': 'HASH'}],
            AttributeDefinitions=[
                {'AttributeName': 'delivery_id', 'AttributeType': 'S'},
                {'AttributeName': 'event_id', 'AttributeType': 'S'},
                {'AttributeName': 'webhook_id', 'AttributeType': 'S'},
                {'AttributeName': 'status', 'AttributeType': 'S'},
                {'AttributeName': 'next_attempt_at', 'AttributeType': 'S'},
            ],
            GlobalSecondaryIndexes=[
                {
                    'IndexName': EVENT_INDEX,
                    'KeySchema': [{'AttributeName': 'event_id', 'KeyType': 'HASH'}],
                    'Projection': {'ProjectionType': 'ALL'},
                },
                {
                    'IndexName': WEBHOOK_INDEX,
                    'KeySchema': [{'AttributeName': 'webhook_id', 'KeyType': 'HASH'}],
                    'Projection': {'ProjectionType': 'ALL'},
                },
                {
                    # Sparse: only RETRYING deliveries carry next_attempt_at
                    'IndexName': DUE_RETRY_INDEX,
                    'KeySchema': [
                        {'AttributeName': 'status', 'KeyType': 'HASH'},
                        {'AttributeName': 'next_attempt_at', 'KeyType': 'RANGE'},
                    ],
                    'Projection': {'ProjectionType': 'KEYS_ONLY'},
                },
            ],
            BillingMode='PAY_PER_REQUEST'
        )

        for table in (self.events_table, self.webhooks_table, self.deliveries_table):
            table.wait_until_exists()

        logger.info(
            "DynamoDB tables created",
            tables=[t.name for t in (self.events_table, self.webhooks_table, self.deliveries_table)]
        )

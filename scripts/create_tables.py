#!/usr/bin/env python3
"""
Script: create_tables.py
Description: Create the Hook Relay DynamoDB tables.

Creates the events, webhooks and deliveries tables (with the
EventIndex, WebhookIndex and DueRetryIndex indexes) using the names in
the current settings. Intended for DynamoDB Local and dev accounts.

Usage:
    DYNAMODB_ENDPOINT_URL=http://localhost:8001 python scripts/create_tables.py
"""

import sys

from botocore.exceptions import ClientError

from hookrelay.config.settings import settings
from hookrelay.storage.dynamodb import DynamoDBDeliveryStore
from hookrelay.utils.logger import get_logger

logger = get_logger(__name__)


def main() -> int:
    """Main script execution."""
    store = DynamoDBDeliveryStore.from_settings(settings)

    try:
        store.create_tables()
    except ClientError as e:
        if e.response['Error']['Code'] == 'ResourceInUseException':
            print("Tables already exist.")
            return 0
        logger.error(
            "Failed to create tables",
            error_code=e.response['Error']['Code'],
            error_message=e.response['Error']['Message']
        )
        return 1
    finally:
        store.close()

    print("Created tables:")
    for name in (settings.events_table_name, settings.webhooks_table_name, settings.deliveries_table_name):
        print(f"  - {name}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

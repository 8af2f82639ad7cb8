"""
Module: metrics.py
Description: Delivery counters published to CloudWatch.

Key Components:
- MetricsClient.count(): one-line counter for lifecycle events
- MetricsClient.put_metric(): raw datapoint with arbitrary dimensions

Publishing is best effort: a CloudWatch outage is logged and the
delivery that triggered the metric carries on.

Dependencies: boto3, botocore, typing, logger
"""

from typing import Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from hookrelay.utils.logger import get_logger

logger = get_logger(__name__)

EVENT_TYPE_DIMENSION = 'EventType'


class MetricsClient:
    """
    CloudWatch publisher for engine counters.

    Example:
        >>> metrics = MetricsClient(namespace="HookRelay", region_name="us-east-1")
        >>> metrics.count("DeliverySucceeded", event_type="order.created")
    """

    def __init__(self, namespace: str = "HookRelay", region_name: Optional[str] = None):
        self.namespace = namespace
        self.cloudwatch = boto3.client('cloudwatch', region_name=region_name)

        logger.info("CloudWatch metrics enabled", namespace=namespace)

    def count(self, metric_name: str, event_type: Optional[str] = None) -> None:
        """Add 1 to ``metric_name``, split by event type when one is given."""
        dimensions = {EVENT_TYPE_DIMENSION: event_type} if event_type else None
        self.put_metric(metric_name, value=1.0, dimensions=dimensions)

    def put_metric(
        self,
        metric_name: str,
        value: float = 1.0,
        unit: str = 'Count',
        dimensions: Optional[Dict[str, str]] = None
    ) -> None:
        """
        Send a single datapoint.

        Args:
            metric_name: CloudWatch metric name
            value: Datapoint value
            unit: CloudWatch unit, 'Count' for counters
            dimensions: Dimension name to value
        """
        datum = {'MetricName': metric_name, 'Value': value, 'Unit': unit}
        if dimensions:
            datum['Dimensions'] = [{'Name': name, 'Value': dim} for name, dim in dimensions.items()]

        try:
            self.cloudwatch.put_metric_data(Namespace=self.namespace, MetricData=[datum])
        except (BotoCoreError, ClientError) as e:
            logger.warning(
                "Metric not published",
                metric_name=metric_name,
                namespace=self.namespace,
                error=str(e)
            )
            return

        logger.debug("Metric published", metric_name=metric_name, value=value, dimensions=dimensions)

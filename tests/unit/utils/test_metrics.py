"""
Module: test_metrics.py
Description: Unit tests for the CloudWatch MetricsClient.
"""

from unittest.mock import patch

import boto3
from botocore.exceptions import ClientError
from moto import mock_aws

from hookrelay.utils.metrics import MetricsClient


class TestMetricsClient:
    """Test cases for metric publishing."""

    @mock_aws
    def test_put_metric_with_dimensions(self):
        client = MetricsClient(namespace="HookRelayTest", region_name="us-east-1")

        client.put_metric("DeliverySucceeded", dimensions={"EventType": "order.created"})

        cloudwatch = boto3.client("cloudwatch", region_name="us-east-1")
        metrics = cloudwatch.list_metrics(Namespace="HookRelayTest")["Metrics"]
        assert metrics[0]["MetricName"] == "DeliverySucceeded"
        assert metrics[0]["Dimensions"] == [{"Name": "EventType", "Value": "order.created"}]

    @mock_aws
    def test_publish_failure_is_swallowed(self):
        client = MetricsClient(region_name="us-east-1")
        error = ClientError(
            error_response={'Error': {'Code': 'Throttling', 'Message': 'Rate exceeded'}},
            operation_name='PutMetricData'
        )

        with patch.object(client.cloudwatch, 'put_metric_data', side_effect=error):
            client.put_metric("DeliveryFailed")

    @mock_aws
    def test_count_adds_event_type_dimension(self):
        client = MetricsClient(region_name="us-east-1")

        with patch.object(client.cloudwatch, 'put_metric_data') as put:
            client.count("EventIngested", "payment.failed")
            client.count("EventIngested")

        first, second = put.call_args_list
        assert first.kwargs["MetricData"] == [{
            'MetricName': 'EventIngested',
            'Value': 1.0,
            'Unit': 'Count',
            'Dimensions': [{'Name': 'EventType', 'Value': 'payment.failed'}],
        }]
        assert 'Dimensions' not in second.kwargs["MetricData"][0]
        assert first.kwargs["Namespace"] == "HookRelay"

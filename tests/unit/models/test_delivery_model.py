"""
Module: test_delivery_model.py
Description: Unit tests for the Delivery model and its state machine.

Tests invariant validation, deterministic ids and the allowed
transitions out of PENDING and RETRYING.
"""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from hookrelay.models.delivery import Delivery, DeliveryStatus, delivery_id_for

NOW = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)


class TestDeliveryId:
    """Test cases for delivery_id_for()."""

    def test_stable_for_same_pair(self):
        assert delivery_id_for("evt_1", "whk_1") == delivery_id_for("evt_1", "whk_1")

    def test_distinct_pairs_get_distinct_ids(self):
        ids = {
            delivery_id_for("evt_1", "whk_1"),
            delivery_id_for("evt_1", "whk_2"),
            delivery_id_for("evt_2", "whk_1"),
        }
        assert len(ids) == 3

    def test_separator_prevents_concatenation_collisions(self):
        assert delivery_id_for("evt_1", "2whk") != delivery_id_for("evt_12", "whk")

    def test_format(self):
        delivery_id = delivery_id_for("evt_1", "whk_1")
        assert delivery_id.startswith("dlv_")
        assert len(delivery_id) == 28


class TestDeliveryInvariants:
    """Test cases for model-level invariant validation."""

    def test_create_starts_pending(self):
        delivery = Delivery.create("evt_1", "whk_1", max_retries=3, now=NOW)

        assert delivery.status == DeliveryStatus.PENDING
        assert delivery.retry_count == 0
        assert delivery.max_retries == 3
        assert delivery.delivered_at is None
        assert delivery.next_attempt_at is None
        assert delivery.created_at == NOW
        assert delivery.attempt_number == 1

    def test_retry_count_cannot_exceed_max_retries(self):
        with pytest.raises(ValidationError):
            Delivery(
                delivery_id="dlv_x", event_id="evt_1", webhook_id="whk_1",
                retry_count=4, max_retries=3
            )

    def test_delivered_at_requires_success(self):
        with pytest.raises(ValidationError):
            Delivery(
                delivery_id="dlv_x", event_id="evt_1", webhook_id="whk_1",
                status=DeliveryStatus.PENDING, delivered_at=NOW
            )

    def test_success_requires_delivered_at(self):
        with pytest.raises(ValidationError):
            Delivery(
                delivery_id="dlv_x", event_id="evt_1", webhook_id="whk_1",
                status=DeliveryStatus.SUCCESS
            )

    def test_retrying_requires_next_attempt_at(self):
        with pytest.raises(ValidationError):
            Delivery(
                delivery_id="dlv_x", event_id="evt_1", webhook_id="whk_1",
                status=DeliveryStatus.RETRYING, retry_count=1
            )

    def test_next_attempt_at_only_when_retrying(self):
        with pytest.raises(ValidationError):
            Delivery(
                delivery_id="dlv_x", event_id="evt_1", webhook_id="whk_1",
                status=DeliveryStatus.FAILED, next_attempt_at=NOW
            )

    def test_terminal_statuses(self):
        assert DeliveryStatus.SUCCESS.is_terminal
        assert DeliveryStatus.FAILED.is_terminal
        assert not DeliveryStatus.PENDING.is_terminal
        assert not DeliveryStatus.RETRYING.is_terminal


class TestDeliveryTransitions:
    """Test cases for succeeded(), retrying() and failed()."""

    def test_pending_to_success(self, pending_delivery):
        delivered = pending_delivery.succeeded(NOW, response_code=200, response_body="ok")

        assert delivered.status == DeliveryStatus.SUCCESS
        assert delivered.delivered_at == NOW
        assert delivered.next_attempt_at is None
        assert delivered.response_code == 200
        assert delivered.response_body == "ok"
        assert delivered.retry_count == 0
        # The original is untouched
        assert pending_delivery.status == DeliveryStatus.PENDING

    def test_pending_to_retrying_consumes_one_retry(self, pending_delivery):
        due = NOW + timedelta(seconds=1)
        retrying = pending_delivery.retrying(NOW, next_attempt_at=due, error="http_503", response_code=503)

        assert retrying.status == DeliveryStatus.RETRYING
        assert retrying.retry_count == 1
        assert retrying.next_attempt_at == due
        assert retrying.last_error == "http_503"
        assert retrying.attempt_number == 2

    def test_retrying_to_retrying(self, pending_delivery):
        first = pending_delivery.retrying(NOW, NOW + timedelta(seconds=1), error="network")
        second = first.retrying(NOW, NOW + timedelta(seconds=2), error="network")

        assert second.status == DeliveryStatus.RETRYING
        assert second.retry_count == 2

    def test_retrying_to_success_clears_schedule(self, pending_delivery):
        retrying = pending_delivery.retrying(NOW, NOW + timedelta(seconds=1), error="network")
        delivered = retrying.succeeded(NOW, response_code=204)

        assert delivered.status == DeliveryStatus.SUCCESS
        assert delivered.next_attempt_at is None
        assert delivered.last_error is None
        assert delivered.retry_count == 1

    def test_retrying_beyond_budget_is_rejected(self):
        delivery = Delivery.create("evt_1", "whk_1", max_retries=0, now=NOW)

        with pytest.raises(ValidationError):
            delivery.retrying(NOW, NOW + timedelta(seconds=1), error="http_500")

    def test_pending_to_failed(self, pending_delivery):
        failed = pending_delivery.failed(NOW, error="http_410", response_code=410)

        assert failed.status == DeliveryStatus.FAILED
        assert failed.next_attempt_at is None
        assert failed.delivered_at is None
        assert failed.last_error == "http_410"

    @pytest.mark.parametrize("terminal", ["success", "failed"])
    def test_no_transition_out_of_terminal_state(self, pending_delivery, terminal):
        if terminal == "success":
            done = pending_delivery.succeeded(NOW, response_code=200)
        else:
            done = pending_delivery.failed(NOW, error="http_500")

        with pytest.raises(ValueError, match="already"):
            done.succeeded(NOW)
        with pytest.raises(ValueError, match="already"):
            done.failed(NOW, error="network")
        with pytest.raises(ValueError, match="already"):
            done.retrying(NOW, NOW + timedelta(seconds=1), error="network")

"""
Module: test_worker.py
Description: Unit tests for WorkerPool, RetrySweeper and the SQS Lambda handlers.
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from hookrelay.delivery import worker
from hookrelay.delivery.worker import RetrySweeper, WorkerPool, _process_records
from hookrelay.errors import StoreUnavailableError
from hookrelay.models.delivery import DeliveryStatus

NOW = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)


class TestWorkerPool:
    """Test cases for the in-process worker pool."""

    @pytest.mark.asyncio
    async def test_runs_submitted_attempts(self):
        attempted = []

        async def attempt(delivery_id):
            attempted.append(delivery_id)

        pool = WorkerPool(attempt, concurrency=2)
        await pool.start()
        for delivery_id in ("dlv_1", "dlv_2", "dlv_3"):
            await pool.submit(delivery_id)
        await pool.join()
        await pool.stop()

        assert sorted(attempted) == ["dlv_1", "dlv_2", "dlv_3"]
        assert not pool.running

    @pytest.mark.asyncio
    async def test_duplicate_queued_id_runs_once(self):
        attempt = AsyncMock()
        pool = WorkerPool(attempt, concurrency=1)
        await pool.start()

        # The single worker is idle until the loop yields, so both land in the queue window
        await pool.submit("dlv_1")
        await pool.submit("dlv_1")
        await pool.stop()

        attempt.assert_awaited_once_with("dlv_1")

    @pytest.mark.asyncio
    async def test_attempts_run_in_parallel(self):
        in_flight = 0
        peak = 0

        async def attempt(delivery_id):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1

        pool = WorkerPool(attempt, concurrency=4)
        await pool.start()
        for index in range(8):
            await pool.submit(f"dlv_{index}")
        await pool.stop()

        assert peak == 4

    @pytest.mark.asyncio
    async def test_failing_attempt_does_not_kill_worker(self):
        attempted = []

        async def attempt(delivery_id):
            attempted.append(delivery_id)
            if delivery_id == "dlv_store":
                raise StoreUnavailableError("get_delivery", "down")
            if delivery_id == "dlv_bug":
                raise RuntimeError("unexpected")

        pool = WorkerPool(attempt, concurrency=1)
        await pool.start()
        for delivery_id in ("dlv_store", "dlv_bug", "dlv_ok"):
            await pool.submit(delivery_id)
        await pool.stop()

        assert attempted == ["dlv_store", "dlv_bug", "dlv_ok"]

    @pytest.mark.asyncio
    async def test_submit_before_start_rejected(self):
        pool = WorkerPool(AsyncMock())

        with pytest.raises(RuntimeError, match="not started"):
            await pool.submit("dlv_1")

    def test_invalid_concurrency(self):
        with pytest.raises(ValueError):
            WorkerPool(AsyncMock(), concurrency=0)


class TestRetrySweeper:
    """Test cases for the due-retry sweep."""

    @pytest.mark.asyncio
    async def test_run_once_submits_due_deliveries(self, store, sample_event):
        created = await store.create_deliveries_if_absent(sample_event.event_id, ["whk_1", "whk_2"], max_retries=3)
        due, later = created
        await store.conditional_update_delivery(
            due.delivery_id, due.status, 0, due.retrying(NOW, NOW - timedelta(seconds=1), error="network")
        )
        await store.conditional_update_delivery(
            later.delivery_id, later.status, 0, later.retrying(NOW, NOW + timedelta(hours=1), error="network")
        )
        submit = AsyncMock()

        count = await RetrySweeper(store, submit).run_once(NOW)

        assert count == 1
        submit.assert_awaited_once_with(due.delivery_id)

    @pytest.mark.asyncio
    async def test_run_once_nothing_due(self, store):
        submit = AsyncMock()

        assert await RetrySweeper(store, submit).run_once(NOW) == 0
        submit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_run_survives_store_errors_and_stops(self):
        mock_store = MagicMock()
        mock_store.find_due_retries = AsyncMock(side_effect=[
            StoreUnavailableError("find_due_retries", "Throttled"),
            ["dlv_1"],
            [],
            [],
        ] + [[]] * 100)
        submit = AsyncMock()
        sweeper = RetrySweeper(mock_store, submit, interval_seconds=0.01)
        stop_event = asyncio.Event()

        task = asyncio.create_task(sweeper.run(stop_event))
        await asyncio.sleep(0.1)
        stop_event.set()
        await asyncio.wait_for(task, timeout=1)

        submit.assert_awaited_once_with("dlv_1")
        assert mock_store.find_due_retries.await_count >= 2

    def test_invalid_interval(self, store):
        with pytest.raises(ValueError):
            RetrySweeper(store, AsyncMock(), interval_seconds=0)


class TestSweepDuringAttempt:
    """A sweep that fires while the same delivery is being attempted."""

    @pytest.mark.asyncio
    async def test_in_flight_retry_dispatched_once(self, httpx_mock, store, coordinator, clock, sample_event,
                                                   order_webhook):
        await store.create_event(sample_event)
        await store.put_webhook(order_webhook)
        [delivery] = await store.create_deliveries_if_absent(sample_event.event_id, [order_webhook.webhook_id], 3)
        httpx_mock.add_response(url=order_webhook.url, status_code=500)
        httpx_mock.add_response(url=order_webhook.url, status_code=500)
        httpx_mock.add_response(url=order_webhook.url, status_code=200)

        send = coordinator.dispatcher.send
        in_flight = asyncio.Event()

        async def slow_send(*args):
            in_flight.set()
            await asyncio.sleep(0.05)
            return await send(*args)

        pool = WorkerPool(coordinator.attempt, concurrency=1)
        sweeper = RetrySweeper(store, pool.submit, clock=clock)
        await pool.start()
        with patch.object(coordinator.dispatcher, 'send', new=slow_send):
            await pool.submit(delivery.delivery_id)
            await pool.join()
            assert len(httpx_mock.get_requests()) == 1

            clock.advance(1)
            in_flight.clear()
            assert await sweeper.run_once() == 1
            await in_flight.wait()
            # Still RETRYING and due while the attempt runs, so it is queued again
            assert await sweeper.run_once() == 1
            await pool.join()

            stored = await store.get_delivery(delivery.delivery_id)
            assert (stored.status, stored.retry_count) == (DeliveryStatus.RETRYING, 2)
            assert len(httpx_mock.get_requests()) == 2

            clock.now = stored.next_attempt_at
            assert await sweeper.run_once() == 1
            await pool.join()
        await pool.stop()

        stored = await store.get_delivery(delivery.delivery_id)
        assert stored.status == DeliveryStatus.SUCCESS
        assert len(httpx_mock.get_requests()) == 3


class TestLambdaHandlers:
    """Test cases for the SQS and scheduled Lambda entry points."""

    @pytest.mark.asyncio
    async def test_process_records(self):
        attempt = AsyncMock()
        records = [
            {'messageId': 'msg-1', 'body': json.dumps({'delivery_id': 'dlv_1'})},
            {'messageId': 'msg-2', 'body': json.dumps({'delivery_id': 'dlv_2'})},
        ]

        failures = await _process_records(records, attempt)

        assert failures == []
        assert [c.args[0] for c in attempt.await_args_list] == ['dlv_1', 'dlv_2']

    @pytest.mark.asyncio
    async def test_malformed_message_dropped(self):
        attempt = AsyncMock()
        records = [
            {'messageId': 'msg-1', 'body': 'not json'},
            {'messageId': 'msg-2', 'body': json.dumps({'other': 'field'})},
            {'messageId': 'msg-3', 'body': json.dumps({'delivery_id': 'dlv_3'})},
        ]

        failures = await _process_records(records, attempt)

        assert failures == []
        attempt.assert_awaited_once_with('dlv_3')

    @pytest.mark.asyncio
    async def test_store_failure_reported_as_batch_failure(self):
        attempt = AsyncMock(side_effect=[StoreUnavailableError("acquire_lease", "down"), None])
        records = [
            {'messageId': 'msg-1', 'body': json.dumps({'delivery_id': 'dlv_1'})},
            {'messageId': 'msg-2', 'body': json.dumps({'delivery_id': 'dlv_2'})},
        ]

        failures = await _process_records(records, attempt)

        assert failures == [{'itemIdentifier': 'msg-1'}]

    def test_handler_uses_engine(self):
        engine = MagicMock()
        engine.coordinator.attempt = AsyncMock()
        event = {'Records': [{'messageId': 'msg-1', 'body': json.dumps({'delivery_id': 'dlv_1'})}]}

        with patch.object(worker, '_engine', engine):
            response = worker.handler(event, None)

        assert response == {'batchItemFailures': []}
        engine.coordinator.attempt.assert_awaited_once_with('dlv_1')

    def test_sweep_handler(self):
        engine = MagicMock()
        engine.sweeper.run_once = AsyncMock(return_value=3)

        with patch.object(worker, '_engine', engine):
            assert worker.sweep_handler({}, None) == {'submitted': 3}

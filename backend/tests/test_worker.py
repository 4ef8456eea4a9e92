"""
Tests for the reconciliation worker

The queue and reconciler are mocked; the worker's decisions about dropping
or re-scheduling entries are what is under test.
"""

from unittest.mock import AsyncMock, Mock

import pytest

from config import settings
from pipeline.error_handler import AIGenerationError, OwnershipError
from pipeline.reconciler import PollResult
from redis_client import RedisClient
from worker import ReconciliationWorker


def _result(terminal: bool, status: str = "processing") -> PollResult:
    return PollResult(task_id="task-1", scene_id="scene-1", status=status, terminal=terminal)


@pytest.fixture
def queue():
    queue = Mock(spec=RedisClient)
    queue.dequeue_reconcile.return_value = {"task_id": "task-1", "principal": "user-1"}
    queue.ping.return_value = True
    queue.reconcile_queue_size.return_value = 0
    return queue


@pytest.fixture
def reconciler():
    reconciler = Mock()
    reconciler.poll_one = AsyncMock(return_value=_result(terminal=False))
    return reconciler


@pytest.fixture
def worker(db, queue, reconciler):
    w = ReconciliationWorker(
        worker_id="worker-test",
        queue=queue,
        reconciler_factory=lambda session: reconciler,
        install_signal_handlers=False,
    )
    yield w
    if w._loop is not None:
        w._loop.close()


class TestProcessEntry:

    def test_running_task_is_rescheduled(self, worker, queue, reconciler):
        result = worker.process_entry("task-1", "user-1")

        assert result.terminal is False
        reconciler.poll_one.assert_awaited_once_with("user-1", "task-1")
        queue.enqueue_reconcile.assert_called_once_with(
            "task-1", "user-1", delay=settings.RECONCILE_INTERVAL
        )

    def test_terminal_task_is_dropped(self, worker, queue, reconciler):
        reconciler.poll_one.return_value = _result(terminal=True, status="completed")

        worker.process_entry("task-1", "user-1")

        queue.enqueue_reconcile.assert_not_called()

    def test_unknown_task_is_dropped(self, worker, queue, reconciler):
        reconciler.poll_one.side_effect = OwnershipError("video", "task-1")

        assert worker.process_entry("task-1", "user-1") is None
        queue.enqueue_reconcile.assert_not_called()

    def test_query_failure_is_rescheduled(self, worker, queue, reconciler):
        reconciler.poll_one.side_effect = AIGenerationError("fake-video", "query failed: 503")

        assert worker.process_entry("task-1", "user-1") is None
        queue.enqueue_reconcile.assert_called_once()

    def test_unexpected_error_is_rescheduled(self, worker, queue, reconciler):
        reconciler.poll_one.side_effect = RuntimeError("boom")

        worker.process_entry("task-1", "user-1")

        queue.enqueue_reconcile.assert_called_once()
        assert worker.state.polls == 1


class TestRunOnce:

    def test_empty_queue(self, worker, queue, reconciler):
        queue.dequeue_reconcile.return_value = None

        assert worker.run_once() is False
        reconciler.poll_one.assert_not_called()

    def test_invalid_entry_is_discarded(self, worker, queue, reconciler):
        queue.dequeue_reconcile.return_value = {"task_id": "task-1"}

        assert worker.run_once() is True
        reconciler.poll_one.assert_not_called()
        queue.enqueue_reconcile.assert_not_called()

    def test_processes_due_entry(self, worker, reconciler):
        assert worker.run_once() is True
        assert worker.state.current_task_id is None
        reconciler.poll_one.assert_awaited_once()

    def test_run_stops_on_shutdown(self, worker, queue, monkeypatch):
        monkeypatch.setattr("worker.init_db", lambda: None)
        worker.idle_sleep = 0
        queue.dequeue_reconcile.side_effect = lambda: worker.state.request_shutdown()

        worker.run()

        assert worker.state.is_running() is False


class TestHealth:

    def test_health_status(self, worker, queue):
        status = worker.get_health_status()

        assert status["healthy"] is True
        assert status["redis_healthy"] is True
        assert status["database_healthy"] is True

    def test_unhealthy_when_redis_down(self, worker, queue):
        queue.ping.return_value = False
        assert worker.get_health_status()["healthy"] is False

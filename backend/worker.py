"""
Reconciliation Worker for async video tasks

This worker:
- Claims due entries from the Redis reconcile queue
- Polls each task once through the Reconciler
- Re-schedules tasks that are still running after RECONCILE_INTERVAL
- Drops entries once the task is terminal, unknown, or past the ceiling
- Supports graceful shutdown (SIGTERM, SIGINT)
- Logs a periodic health check
- Designed for horizontal scaling (multiple workers)
"""

import asyncio
import signal
import sys
import time
import traceback
import structlog
from typing import Optional, Dict, Any, Callable
from datetime import datetime, timezone

from sqlalchemy import text

from redis_client import RedisClient, redis_client as default_redis_client
from database import get_db_context, init_db
from config import settings
from pipeline.error_handler import OwnershipError, PipelineError
from pipeline.reconciler import PollResult, Reconciler

logger = structlog.get_logger()


class WorkerState:
    """Worker state management for graceful shutdown"""

    def __init__(self):
        self.running = True
        self.current_task_id: Optional[str] = None
        self.shutdown_requested = False
        self.polls = 0

    def request_shutdown(self):
        """Request graceful shutdown"""
        self.shutdown_requested = True
        logger.info("shutdown_requested")

    def is_running(self) -> bool:
        """Check if worker should continue running"""
        return self.running and not self.shutdown_requested

    def stop(self):
        """Stop the worker"""
        self.running = False
        logger.info("worker_stopped")


class ReconciliationWorker:
    """
    Worker that drives reconciliation server-side.

    Both this worker and GET /api/generate/video/status/{task_id} call the
    same Reconciler, so whichever polls first applies the outcome.
    """

    def __init__(
        self,
        worker_id: Optional[str] = None,
        queue: Optional[RedisClient] = None,
        reconciler_factory: Optional[Callable] = None,
        install_signal_handlers: bool = True,
    ):
        """
        Initialize worker

        Args:
            worker_id: Optional worker identifier for multi-worker setups
            queue: Redis client holding the reconcile queue
            reconciler_factory: Callable(db) -> Reconciler (tests)
        """
        self.worker_id = worker_id or f"worker-{id(self)}"
        self.state = WorkerState()
        self.queue = queue or default_redis_client
        self.reconciler_factory = reconciler_factory or Reconciler
        self.idle_sleep = 1.0  # seconds between empty queue checks
        self.health_check_interval = 30  # seconds
        self.last_health_check = time.time()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        if install_signal_handlers:
            signal.signal(signal.SIGTERM, self._handle_shutdown_signal)
            signal.signal(signal.SIGINT, self._handle_shutdown_signal)

        logger.info(
            "worker_initialized",
            worker_id=self.worker_id,
            interval=settings.RECONCILE_INTERVAL,
            ceiling=settings.RECONCILE_CEILING
        )

    def _handle_shutdown_signal(self, signum, frame):
        """Handle shutdown signals (SIGTERM, SIGINT)"""
        signal_name = "SIGTERM" if signum == signal.SIGTERM else "SIGINT"
        logger.info(
            "shutdown_signal_received",
            signal=signal_name,
            current_task=self.state.current_task_id
        )
        self.state.request_shutdown()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        # One loop for the worker's lifetime; cached vendor clients are bound to it
        if self._loop is None:
            self._loop = asyncio.new_event_loop()
        return self._loop

    def run(self):
        """
        Main worker loop

        Continuously claims due entries and polls them.
        Exits gracefully on shutdown signal.
        """
        logger.info("worker_started", worker_id=self.worker_id)

        try:
            init_db()
        except Exception as e:
            logger.error("database_init_failed", error=str(e))
            return

        try:
            while self.state.is_running():
                try:
                    self._perform_health_check()

                    if not self.run_once():
                        time.sleep(self.idle_sleep)

                except KeyboardInterrupt:
                    logger.info("keyboard_interrupt_received")
                    break
                except Exception as e:
                    logger.error(
                        "worker_loop_error",
                        error=str(e),
                        traceback=traceback.format_exc()
                    )
                    # Continue processing despite errors
                    time.sleep(1)
        finally:
            if self._loop is not None:
                self._loop.close()

        logger.info("worker_shutdown_complete", worker_id=self.worker_id, polls=self.state.polls)

    def run_once(self) -> bool:
        """
        Claim and process one due entry.

        Returns:
            True if an entry was processed, False if nothing was due
        """
        entry = self.queue.dequeue_reconcile()
        if entry is None:
            return False

        task_id = entry.get("task_id")
        principal = entry.get("principal")
        if not task_id or not principal:
            logger.error("reconcile_entry_invalid", entry=entry)
            return True

        self.state.current_task_id = task_id
        try:
            self.process_entry(task_id, principal)
        finally:
            self.state.current_task_id = None
        return True

    def process_entry(self, task_id: str, principal: str) -> Optional[PollResult]:
        """
        Poll one task and decide whether it goes back on the queue.

        Returns:
            The poll result, or None if the poll raised
        """
        self.state.polls += 1
        try:
            with get_db_context() as db:
                reconciler = self.reconciler_factory(db)
                result = self.loop.run_until_complete(reconciler.poll_one(principal, task_id))

        except OwnershipError:
            logger.warning("reconcile_task_not_found", task_id=task_id)
            return None

        except PipelineError as e:
            # Status query failed; the ceiling still bounds how long we retry
            e.log_error()
            self._reschedule(task_id, principal)
            return None

        except Exception as e:
            logger.error(
                "reconcile_unexpected_error",
                task_id=task_id,
                error=str(e),
                traceback=traceback.format_exc()
            )
            self._reschedule(task_id, principal)
            return None

        if result.terminal:
            logger.info(
                "reconcile_entry_done",
                task_id=task_id,
                status=result.status,
                worker_id=self.worker_id
            )
        else:
            self._reschedule(task_id, principal)
        return result

    def _reschedule(self, task_id: str, principal: str):
        self.queue.enqueue_reconcile(task_id, principal, delay=settings.RECONCILE_INTERVAL)

    def _perform_health_check(self):
        """
        Perform periodic health check

        Verifies:
        - Redis connection is alive
        - Database connection is alive
        """
        current_time = time.time()
        if current_time - self.last_health_check < self.health_check_interval:
            return

        self.last_health_check = current_time
        status = self.get_health_status()
        if status["healthy"]:
            logger.info(
                "health_check_passed",
                worker_id=self.worker_id,
                queue_size=self.queue.reconcile_queue_size()
            )
        else:
            logger.error("health_check_failed", **status)

    def get_health_status(self) -> Dict[str, Any]:
        """
        Get current health status

        Returns:
            Dictionary with health status information
        """
        redis_healthy = self.queue.ping()
        db_healthy = False

        try:
            with get_db_context() as db:
                db.execute(text("SELECT 1"))
            db_healthy = True
        except Exception as e:
            logger.error("health_check_database_error", worker_id=self.worker_id, error=str(e))

        return {
            "worker_id": self.worker_id,
            "running": self.state.is_running(),
            "current_task": self.state.current_task_id,
            "redis_healthy": redis_healthy,
            "database_healthy": db_healthy,
            "healthy": redis_healthy and db_healthy and self.state.is_running(),
            "timestamp": datetime.now(timezone.utc).isoformat()
        }


def main():
    """
    Main entry point for worker

    Usage:
        python worker.py [worker_id]

    Example:
        python worker.py worker-1
    """
    worker_id = sys.argv[1] if len(sys.argv) > 1 else None

    worker = ReconciliationWorker(worker_id=worker_id)

    try:
        worker.run()
    except Exception as e:
        logger.error(
            "worker_fatal_error",
            error=str(e),
            traceback=traceback.format_exc()
        )
        sys.exit(1)


if __name__ == "__main__":
    main()

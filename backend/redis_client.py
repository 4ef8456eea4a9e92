"""
Redis client for the video reconciliation queue
"""

import json
import time
import structlog
from typing import Optional, Dict, Any
from redis import Redis, ConnectionPool
from redis.exceptions import RedisError, ConnectionError
from config import settings

logger = structlog.get_logger()


class RedisClient:
    """Redis client with connection pooling and helper methods"""

    def __init__(self, client: Optional[Redis] = None):
        """
        Initialize the client. The connection is opened on first use so the
        API can start (and serve client-driven polling) without Redis.

        Args:
            client: Optional pre-built Redis instance (tests)
        """
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[Redis] = client

    def _connect(self):
        """Establish Redis connection with connection pool"""
        try:
            self._pool = ConnectionPool.from_url(
                settings.REDIS_URL,
                max_connections=settings.REDIS_MAX_CONNECTIONS,
                socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
                socket_connect_timeout=settings.REDIS_SOCKET_CONNECT_TIMEOUT,
                retry_on_timeout=settings.REDIS_RETRY_ON_TIMEOUT,
                health_check_interval=settings.REDIS_HEALTH_CHECK_INTERVAL,
                decode_responses=True
            )
            self._client = Redis(connection_pool=self._pool)

            # Test connection
            self._client.ping()
            logger.info("redis_connected", url=settings.REDIS_URL)

        except ConnectionError as e:
            logger.error("redis_connection_failed", error=str(e))
            self._client = None
            raise

    def get_client(self) -> Redis:
        """Get Redis client instance"""
        if self._client is None:
            self._connect()
        return self._client

    def ping(self) -> bool:
        """Check if Redis is connected"""
        try:
            return bool(self.get_client().ping())
        except RedisError as e:
            logger.error("redis_ping_failed", error=str(e))
            return False

    def close(self):
        """Close Redis connection"""
        if self._client:
            self._client.close()
            self._client = None
            logger.info("redis_connection_closed")

    # ===== Reconcile Queue Operations =====
    #
    # Entries live in a sorted set scored by the time they become due, so a
    # still-running task can be put back with a delay instead of spinning.

    def enqueue_reconcile(self, task_id: str, principal: str, delay: float = 0.0) -> bool:
        """
        Schedule a video task for reconciliation

        Args:
            task_id: Vendor task identifier
            principal: Owner the reconciler acts for
            delay: Seconds to wait before the entry is due

        Returns:
            bool: Success status
        """
        try:
            entry = json.dumps({"task_id": task_id, "principal": principal})
            self.get_client().zadd(settings.RECONCILE_QUEUE_NAME, {entry: time.time() + delay})
            logger.info("reconcile_enqueued", task_id=task_id, delay=delay)
            return True

        except RedisError as e:
            logger.error("reconcile_enqueue_failed", task_id=task_id, error=str(e))
            return False

    def dequeue_reconcile(self) -> Optional[Dict[str, Any]]:
        """
        Claim the next due entry

        Returns:
            Optional[Dict]: {"task_id", "principal"} or None if nothing is due
        """
        try:
            client = self.get_client()
            due = client.zrangebyscore(settings.RECONCILE_QUEUE_NAME, "-inf", time.time(), start=0, num=1)
            if not due:
                return None

            entry = due[0]
            # zrem succeeds for exactly one worker
            if not client.zrem(settings.RECONCILE_QUEUE_NAME, entry):
                return None
            return json.loads(entry)

        except RedisError as e:
            logger.error("reconcile_dequeue_failed", error=str(e))
            return None

    def reconcile_queue_size(self) -> int:
        """Number of scheduled entries, due or not"""
        try:
            return int(self.get_client().zcard(settings.RECONCILE_QUEUE_NAME))
        except RedisError as e:
            logger.error("reconcile_queue_size_failed", error=str(e))
            return 0


# Global Redis client instance
redis_client = RedisClient()

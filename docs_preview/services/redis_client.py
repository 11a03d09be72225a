"""
Redis client wrapper for artifact handoff, the publish job queue and locks.

This service provides Redis operations for:
- Artifact storage using write-once string keys with expiry
- Publish job queue using lists
- Per-target publish locks and supersession tickets

Includes connection pooling and retry logic for resilience.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.asyncio.lock import Lock
from redis.exceptions import ConnectionError, RedisError, TimeoutError

from docs_preview.exceptions import DocsPreviewError
from docs_preview.models.publish import PublishJob


logger = logging.getLogger(__name__)


class RedisConnectionError(DocsPreviewError):
    """Raised when Redis connection fails after retries."""
    pass


class RedisClient:
    """
    Redis client wrapper with connection pooling and retry logic.

    Provides methods for:
    - Artifact storage (write-once string keys)
    - Publish job queue operations (list push/pop)
    - Lock and supersession ticket handling
    """

    # Redis key prefixes
    ARTIFACT_KEY = "docs_preview:artifact:{run_id}:{name}"
    JOB_QUEUE_KEY = "docs_preview:job_queue:publish"
    LOCK_KEY = "docs_preview:lock:{scope}"
    TICKET_KEY = "docs_preview:ticket:{scope}"

    def __init__(
        self,
        redis_url: Optional[str] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        connection_timeout: int = 5
    ):
        """
        Initialize Redis client.

        Args:
            redis_url: Redis connection URL. If None, will load from settings.
            max_retries: Maximum number of attempts for transient errors
            retry_delay: Base delay between retries (exponential backoff)
            connection_timeout: Connection timeout in seconds
        """
        self._redis_url = redis_url
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[redis.Redis] = None
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._connection_timeout = connection_timeout

    async def initialize(self) -> None:
        """
        Initialize Redis connection pool.

        Raises:
            RedisConnectionError: If connection fails
        """
        try:
            if not self._redis_url:
                from docs_preview.config import settings
                self._redis_url = settings.redis_url

            # Artifacts are raw bytes, so responses are not decoded
            self._pool = ConnectionPool.from_url(
                self._redis_url,
                max_connections=10,
                socket_timeout=self._connection_timeout,
                socket_connect_timeout=self._connection_timeout
            )

            self._client = redis.Redis(connection_pool=self._pool)

            await self._client.ping()

            logger.info("Redis connection pool initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize Redis connection pool: {e}")
            raise RedisConnectionError(f"Failed to connect to Redis: {e}") from e

    async def close(self) -> None:
        """Close Redis connection pool."""
        if self._client:
            await self._client.aclose()

        if self._pool:
            await self._pool.disconnect()

        logger.info("Redis connection pool closed")

    @asynccontextmanager
    async def _get_client(self):
        """
        Get Redis client with connection check.

        Yields:
            redis.Redis: Redis client instance

        Raises:
            RuntimeError: If client not initialized
        """
        if not self._client:
            raise RuntimeError("Redis client not initialized. Call initialize() first.")

        yield self._client

    async def _retry_operation(self, operation, *args, **kwargs):
        """
        Execute Redis operation with retry logic.

        Only connection and timeout errors are retried; other Redis errors
        propagate unchanged.

        Raises:
            RedisConnectionError: If operation fails after all retries
        """
        last_error = None

        for attempt in range(self._max_retries):
            try:
                return await operation(*args, **kwargs)

            except (ConnectionError, TimeoutError) as e:
                last_error = e
                if attempt < self._max_retries - 1:
                    delay = self._retry_delay * (2 ** attempt)
                    logger.warning(
                        f"Redis operation failed (attempt {attempt + 1}/{self._max_retries}), "
                        f"retrying in {delay}s: {e}"
                    )
                    await asyncio.sleep(delay)
                else:
                    logger.error(f"Redis operation failed after {self._max_retries} attempts: {e}")

            except RedisError as e:
                logger.error(f"Redis operation failed with non-transient error: {e}")
                raise

        raise RedisConnectionError(f"Redis operation failed after {self._max_retries} retries: {last_error}")

    # ========== Artifact Operations (String) ==========

    def _artifact_key(self, run_id: str, name: str) -> str:
        return self.ARTIFACT_KEY.format(run_id=run_id, name=name)

    async def put_artifact(self, run_id: str, name: str, data: bytes, ttl_seconds: int) -> bool:
        """
        Store an artifact once.

        Returns:
            True if stored, False if the key already existed
        """
        async def _put():
            async with self._get_client() as client:
                key = self._artifact_key(run_id, name)
                stored = await client.set(key, data, nx=True, ex=ttl_seconds)
                return bool(stored)

        return await self._retry_operation(_put)

    async def get_artifact(self, run_id: str, name: str) -> Optional[bytes]:
        """
        Fetch an artifact.

        Returns:
            Artifact bytes, or None if missing or expired
        """
        async def _get():
            async with self._get_client() as client:
                return await client.get(self._artifact_key(run_id, name))

        return await self._retry_operation(_get)

    # ========== Job Queue Operations (List) ==========

    async def enqueue_publish_job(self, job: PublishJob) -> None:
        """Push a publish job on the queue (FIFO)."""
        async def _enqueue():
            async with self._get_client() as client:
                job_json = json.dumps(job.model_dump(mode='json'))
                await client.rpush(self.JOB_QUEUE_KEY, job_json)
                logger.info(f"Enqueued publish job for run {job.run_id}")

        await self._retry_operation(_enqueue)

    async def dequeue_publish_job(self, timeout: int = 0) -> Optional[PublishJob]:
        """
        Pop the next publish job.

        Args:
            timeout: Blocking timeout in seconds (0 for non-blocking)

        Returns:
            PublishJob if available, None if queue is empty
        """
        async def _dequeue():
            async with self._get_client() as client:
                if timeout > 0:
                    result = await client.blpop([self.JOB_QUEUE_KEY], timeout=timeout)
                    if not result:
                        return None
                    _, job_json = result
                else:
                    job_json = await client.lpop(self.JOB_QUEUE_KEY)

                if not job_json:
                    return None

                job = PublishJob(**json.loads(job_json))
                logger.info(f"Dequeued publish job for run {job.run_id}")
                return job

        return await self._retry_operation(_dequeue)

    # ========== Lock Operations ==========

    def lock(self, scope: str, timeout: int, blocking_timeout: int) -> Lock:
        """
        Build a Redis lock for a publish scope.

        Args:
            scope: Lock scope (a target path, or the global scope)
            timeout: Seconds after which a crashed holder's lock expires
            blocking_timeout: Seconds to wait for the lock before giving up
        """
        if not self._client:
            raise RuntimeError("Redis client not initialized. Call initialize() first.")

        return self._client.lock(
            self.LOCK_KEY.format(scope=scope),
            timeout=timeout,
            blocking_timeout=blocking_timeout
        )

    async def take_ticket(self, scope: str, ttl_seconds: int) -> int:
        """Take the next supersession ticket for a scope."""
        async def _take():
            async with self._get_client() as client:
                key = self.TICKET_KEY.format(scope=scope)
                ticket = await client.incr(key)
                await client.expire(key, ttl_seconds)
                return int(ticket)

        return await self._retry_operation(_take)

    async def latest_ticket(self, scope: str) -> int:
        """Return the most recent ticket handed out for a scope."""
        async def _latest():
            async with self._get_client() as client:
                value = await client.get(self.TICKET_KEY.format(scope=scope))
                return int(value) if value is not None else 0

        return await self._retry_operation(_latest)


_redis_client: Optional[RedisClient] = None


def get_redis_client() -> RedisClient:
    """Get the process-wide RedisClient instance."""
    global _redis_client
    if _redis_client is None:
        _redis_client = RedisClient()
    return _redis_client

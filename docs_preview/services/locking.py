"""
Publish locks.

Pushes for the same target must never interleave. A lock manager hands out
``hold(target)`` contexts that serialize work per lock scope and release on
every exit path.

Scopes:
- ``target``: one lock per ``pr-<n>`` target
- ``global``: one lock for the whole destination

Supersession: every caller takes a ticket for its target before waiting.
Tickets are per target even when the lock is global. After acquiring the
lock, a caller whose ticket is no longer the newest knows a later request for
the same target is queued behind it and can skip its own push. A push that
has already started is never interrupted.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, Literal, Protocol

from redis.asyncio.lock import Lock
from redis.exceptions import LockError

from docs_preview.exceptions import DocsPreviewError
from docs_preview.models.publish import PublishTarget
from docs_preview.services.redis_client import RedisClient
from docs_preview.utils.logging import get_logger

logger = get_logger(__name__)

GLOBAL_SCOPE = "global"

LockScope = Literal["target", "global"]


class LockTimeoutError(DocsPreviewError):
    """Raised when a publish lock cannot be acquired in time."""
    pass


@dataclass(frozen=True)
class Lease:
    """A held publish lock."""

    scope: str
    ticket: int
    superseded: bool


class LockManager(Protocol):
    def hold(self, target: PublishTarget) -> "AsyncIterator[Lease]":
        ...


def scope_for(target: PublishTarget, lock_scope: LockScope) -> str:
    if lock_scope == "global":
        return GLOBAL_SCOPE
    return target.path


class InProcessLockManager:
    """
    Lock manager for a single process.

    Suitable for the one-shot CLI and for tests; several worker processes
    need ``RedisLockManager`` instead.
    """

    def __init__(
        self,
        lock_scope: LockScope = "target",
        blocking_timeout: float = 900,
        supersede_queued: bool = True
    ):
        self.lock_scope = lock_scope
        self.blocking_timeout = blocking_timeout
        self.supersede_queued = supersede_queued
        self._locks: Dict[str, asyncio.Lock] = {}
        self._tickets: Dict[str, int] = {}
        # Holders and waiters per lock scope and per target
        self._scope_users: Dict[str, int] = {}
        self._target_users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, target: PublishTarget) -> AsyncIterator[Lease]:
        scope = scope_for(target, self.lock_scope)
        lock = self._locks.setdefault(scope, asyncio.Lock())
        self._scope_users[scope] = self._scope_users.get(scope, 0) + 1
        self._target_users[target.path] = self._target_users.get(target.path, 0) + 1

        ticket = self._tickets.get(target.path, 0) + 1
        self._tickets[target.path] = ticket

        try:
            try:
                await asyncio.wait_for(lock.acquire(), self.blocking_timeout)
            except asyncio.TimeoutError as e:
                raise LockTimeoutError(f"Timed out waiting for publish lock {scope}") from e

            try:
                superseded = self.supersede_queued and self._tickets[target.path] != ticket
                yield Lease(scope=scope, ticket=ticket, superseded=superseded)
            finally:
                lock.release()
        finally:
            self._forget(scope, target.path)

    def _forget(self, scope: str, target_path: str) -> None:
        """Drop the lock and ticket entries once nobody holds or waits for them."""
        self._scope_users[scope] -= 1
        if not self._scope_users[scope]:
            del self._scope_users[scope]
            del self._locks[scope]

        self._target_users[target_path] -= 1
        if not self._target_users[target_path]:
            del self._target_users[target_path]
            del self._tickets[target_path]


class RedisLockManager:
    """Lock manager shared by every worker through Redis."""

    def __init__(
        self,
        redis_client: RedisClient,
        lock_scope: LockScope = "target",
        timeout: int = 600,
        blocking_timeout: int = 900,
        supersede_queued: bool = True
    ):
        self.redis = redis_client
        self.lock_scope = lock_scope
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout
        self.supersede_queued = supersede_queued

    @asynccontextmanager
    async def hold(self, target: PublishTarget) -> AsyncIterator[Lease]:
        scope = scope_for(target, self.lock_scope)

        # Tickets outlive the longest possible wait plus the hold
        ticket = await self.redis.take_ticket(target.path, self.timeout + self.blocking_timeout)

        lock = self.redis.lock(scope, timeout=self.timeout, blocking_timeout=self.blocking_timeout)
        acquired = await lock.acquire()
        if not acquired:
            raise LockTimeoutError(f"Timed out waiting for publish lock {scope}")

        logger.debug(f"Acquired publish lock {scope} with ticket {ticket}")

        renewal = asyncio.create_task(self._keep_alive(lock, scope))

        try:
            superseded = False
            if self.supersede_queued:
                superseded = await self.redis.latest_ticket(target.path) != ticket
            yield Lease(scope=scope, ticket=ticket, superseded=superseded)
        finally:
            renewal.cancel()
            try:
                await renewal
            except asyncio.CancelledError:
                pass

            try:
                await lock.release()
            except LockError as e:
                # The lock expired while held; the next holder already owns it
                logger.warning(f"Publish lock {scope} expired before release: {e}")

    async def _keep_alive(self, lock: Lock, scope: str) -> None:
        """Reset the lock expiry every third of the timeout while it is held."""
        interval = self.timeout / 3

        while True:
            await asyncio.sleep(interval)
            try:
                await lock.reacquire()
            except LockError as e:
                logger.error(f"Lost publish lock {scope} while holding it: {e}")
                return

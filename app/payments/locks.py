"""
Per-order mutual exclusion for status writes.

Every write to a PaymentOrder's state (submission outcome, callback, poll)
happens while holding the order's distributed lock, so two writers for the
same order are never interleaved. Writers for different orders never
contend.

The lock lives in Redis so it works across web workers and Celery workers.
Inside the lock, writers additionally re-read the row with
select_for_update() before deciding on a transition.

Usage:

    from payments.locks import order_lock

    with order_lock(order.order_id):
        with transaction.atomic():
            order = PaymentOrder.objects.select_for_update().get(pk=order.pk)
            ...

Note:
    Gateway calls are never made while holding an order lock; fetch first,
    then lock and apply.
"""

from __future__ import annotations

import logging
import time
import uuid as uuid_module
from typing import TYPE_CHECKING

from django.conf import settings

from django_redis import get_redis_connection
from redis.exceptions import RedisError

from payments.exceptions import LockAcquisitionError

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis

logger = logging.getLogger(__name__)


# =============================================================================
# Distributed Locks
# =============================================================================


class DistributedLock:
    """
    Redis-based distributed lock with TTL.

    Features:
        - Automatic TTL prevents deadlocks from crashed processes
        - Token-based ownership prevents accidental release by other processes
        - Blocking and non-blocking acquisition modes
        - Context manager support

    Example:
        with DistributedLock("payment_order:BRANDIFY-1-2", ttl=30):
            apply_status()

        lock = DistributedLock("ipn_registration", ttl=30, blocking=False)
        try:
            with lock:
                register()
        except LockAcquisitionError:
            # Another process holds the lock
            handle_contention()

    Args:
        key: Lock identifier (will be prefixed with "lock:")
        ttl: Lock TTL in seconds (auto-releases after this time)
        blocking: If True, acquire() waits until lock is available
        timeout: Maximum wait time in seconds (only if blocking=True)
    """

    # Lua script for atomic check-and-delete (release)
    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    POLL_INTERVAL = 0.05

    def __init__(
        self,
        key: str,
        ttl: int = 30,
        blocking: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.key = f"lock:{key}"
        self.ttl = ttl
        self.blocking = blocking
        self.timeout = timeout
        self._token: str | None = None
        self._redis: Redis | None = None

    def _get_redis(self) -> Redis:
        """Get Redis connection (lazy initialization)."""
        if self._redis is None:
            self._redis = get_redis_connection("default")
        return self._redis

    def acquire(self) -> bool:
        """
        Attempt to acquire the lock.

        Returns:
            True if lock was acquired

        Raises:
            LockAcquisitionError: If lock couldn't be acquired, including
                when Redis is unreachable
        """
        self._token = str(uuid_module.uuid4())
        try:
            return self._acquire()
        except RedisError as e:
            self._token = None
            logger.error(
                "Lock store unavailable",
                extra={"lock_key": self.key, "error": str(e)},
            )
            raise LockAcquisitionError(
                f"Lock store unavailable for '{self.key}'",
                details={"key": self.key},
            ) from e

    def _acquire(self) -> bool:
        redis = self._get_redis()

        if self.blocking:
            end_time = time.monotonic() + self.timeout
            while time.monotonic() < end_time:
                if self._try_acquire(redis):
                    return True
                time.sleep(self.POLL_INTERVAL)

            self._token = None
            logger.warning(
                "Timed out waiting for lock",
                extra={"lock_key": self.key, "timeout": self.timeout},
            )
            raise LockAcquisitionError(
                f"Failed to acquire lock '{self.key}' within {self.timeout}s",
                details={"key": self.key, "timeout": self.timeout},
            )

        if not self._try_acquire(redis):
            self._token = None
            raise LockAcquisitionError(
                f"Lock '{self.key}' is already held",
                details={"key": self.key},
            )
        return True

    def _try_acquire(self, redis: Redis) -> bool:
        """Try once to acquire the lock."""
        return bool(redis.set(self.key, self._token, nx=True, ex=self.ttl))

    def release(self) -> bool:
        """
        Release the lock if we hold it.

        Returns:
            True if lock was released, False if we didn't hold it (never
            acquired, already released, or expired and taken by someone else)
        """
        if self._token is None:
            return False

        token, self._token = self._token, None
        try:
            result = self._get_redis().eval(self.RELEASE_SCRIPT, 1, self.key, token)
        except RedisError:
            # The TTL still expires the key
            logger.error(
                "Lock release failed", extra={"lock_key": self.key}, exc_info=True
            )
            return False
        if not result:
            logger.warning("Lock expired before release", extra={"lock_key": self.key})
        return bool(result)

    @property
    def is_held(self) -> bool:
        """Check if we currently hold the lock."""
        return self._token is not None

    def __enter__(self) -> DistributedLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> bool:
        self.release()
        return False  # Don't suppress exceptions


def order_lock(order_id: str) -> DistributedLock:
    """
    Build the lock that serializes status writes for one order.

    TTL and wait timeout come from PESAPAL_ORDER_LOCK_TTL_SECONDS and
    PESAPAL_ORDER_LOCK_TIMEOUT_SECONDS.
    """
    return DistributedLock(
        f"payment_order:{order_id}",
        ttl=settings.PESAPAL_ORDER_LOCK_TTL_SECONDS,
        blocking=True,
        timeout=settings.PESAPAL_ORDER_LOCK_TIMEOUT_SECONDS,
    )


__all__ = [
    "DistributedLock",
    "order_lock",
]

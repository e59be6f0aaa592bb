"""
Concurrency control utilities for payment and refund operations.

Two mechanisms serialize work on a booking:

1. **Distributed Locks** (DistributedLock)
   - Redis-based mutual exclusion across processes/servers
   - TTL prevents deadlocks from crashed processes
   - Held around refund creation; released before the PayMongo call
   - A per-refund dispatch lock keeps two approvals from racing

2. **Row Locks** (lock_booking)
   - ``select_for_update()`` on the booking row
   - Taken inside ``transaction.atomic()`` by both refund creation and
     payment reconciliation, so those two serialize per booking

Usage:

    from payments.locks import DistributedLock, lock_booking, refund_lock_key

    with DistributedLock(refund_lock_key(booking_id), ttl=60):
        with transaction.atomic():
            booking = lock_booking(booking_id)
            ...
"""

from __future__ import annotations

import time
import uuid as uuid_module
from typing import TYPE_CHECKING

from django_redis import get_redis_connection

from core.exceptions import NotFoundError
from payments.exceptions import LockAcquisitionError

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis

    from bookings.models import Booking


# =============================================================================
# Distributed Locks
# =============================================================================


def refund_lock_key(booking_id: int) -> str:
    """Lock key guarding refund creation for one booking."""
    return f"refund:booking:{booking_id}"


def refund_dispatch_lock_key(refund_id: int) -> str:
    """Lock key held while one refund is being submitted to PayMongo."""
    return f"refund:dispatch:{refund_id}"


class DistributedLock:
    """
    Redis-based distributed lock with TTL.

    Provides mutual exclusion across multiple processes/servers
    for critical refund operations.

    Features:
        - Automatic TTL prevents deadlocks from crashed processes
        - Token-based ownership prevents accidental release by other processes
        - Blocking and non-blocking acquisition modes
        - Context manager support

    Example:
        with DistributedLock("refund:booking:501", ttl=60):
            RefundOrchestrator.process_refund(request)

        lock = DistributedLock("refund:booking:501", blocking=False)
        try:
            with lock:
                ...
        except LockAcquisitionError:
            # Another worker is refunding this booking
            ...

    Args:
        key: Lock identifier (will be prefixed with "lock:")
        ttl: Lock TTL in seconds (auto-releases after this time)
        blocking: If True, acquire() waits until lock is available
        timeout: Maximum wait time in seconds (only if blocking=True)

    Note:
        A lock held across a PayMongo call needs a TTL of at least
        PAYMONGO_API_TIMEOUT_SECONDS per request made under it.
    """

    # Lua script for atomic check-and-delete (release)
    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

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
            LockAcquisitionError: If lock couldn't be acquired
        """
        self._token = str(uuid_module.uuid4())
        redis = self._get_redis()

        if self.blocking:
            end_time = time.time() + self.timeout
            while time.time() < end_time:
                if self._try_acquire(redis):
                    return True
                time.sleep(0.05)

            self._token = None
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
        return bool(redis.set(self.key, self._token, nx=True, ex=self.ttl))

    def release(self) -> bool:
        """
        Release the lock if we hold it.

        Safe to call multiple times; the Lua script only deletes the key
        while it still carries our token.
        """
        if self._token is None:
            return False

        redis = self._get_redis()
        result = redis.eval(self.RELEASE_SCRIPT, 1, self.key, self._token)
        self._token = None
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
        return False


# =============================================================================
# Row Locks
# =============================================================================


def lock_booking(booking_id: int) -> Booking:
    """
    Lock a booking row for the rest of the current transaction.

    Must be called inside ``transaction.atomic()``; the lock is held
    until the transaction commits or rolls back.

    Raises:
        NotFoundError: If the booking doesn't exist
    """
    from bookings.models import Booking

    booking = Booking.objects.select_for_update().filter(pk=booking_id).first()
    if booking is None:
        raise NotFoundError(
            f"Booking {booking_id} not found",
            error_code="BOOKING_NOT_FOUND",
            details={"booking_id": booking_id},
        )
    return booking


__all__ = [
    "DistributedLock",
    "lock_booking",
    "refund_lock_key",
]

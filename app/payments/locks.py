"""
Concurrency control utilities for ledger and settlement operations.

Three complementary mechanisms:

1. **Distributed Locks** (DistributedLock)
   - Redis-based mutual exclusion across processes/servers
   - TTL prevents deadlocks from crashed processes
   - Use for: the settlement worker, so two workers never pick up the
     same request

2. **Optimistic Locking** (check_version)
   - select_for_update plus a version check on a single record
   - Use for: callers that read a payment, decided something, and want
     the write rejected if the payment moved in between

3. **Compare-and-swap** (compare_and_swap_version)
   - Conditional ``UPDATE ... WHERE version = n`` without holding a lock
   - Use for: the per-(vendor, date) settlement cursor bumped by each claim

Usage:

    from payments.locks import DistributedLock, check_version

    with DistributedLock(f"settlement:{request_id}", ttl=60):
        SettlementCoordinator.begin_processing(request_id)

    with transaction.atomic():
        payment = check_version(Payment, payment.pk, expected_version=3)
        payment.complete(at=now)
        payment.save()  # Version auto-increments
"""

from __future__ import annotations

import time
import uuid as uuid_module
from typing import TYPE_CHECKING, TypeVar

from django.conf import settings
from django.db import models, transaction
from django.db.models import F

from django_redis import get_redis_connection

from core.exceptions import NotFoundError
from payments.exceptions import LockAcquisitionError, StaleRecordError

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis

T = TypeVar("T", bound=models.Model)


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
        - Lock extension for long-running operations

    Example:
        lock = DistributedLock("settlement:<uuid>", ttl=60, blocking=False)
        try:
            with lock:
                move_request_to_processing()
        except LockAcquisitionError:
            # Another worker holds the request
            pass

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

    # Lua script for atomic check-and-extend
    EXTEND_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("expire", KEYS[1], ARGV[2])
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

    @classmethod
    def for_settlement_request(cls, request_id: Any, blocking: bool = False) -> DistributedLock:
        """
        Build the lock guarding one settlement request.

        TTL and timeout come from SETTLEMENT_LOCK_TTL_SECONDS and
        SETTLEMENT_LOCK_TIMEOUT_SECONDS.
        """
        return cls(
            f"settlement:{request_id}",
            ttl=settings.SETTLEMENT_LOCK_TTL_SECONDS,
            blocking=blocking,
            timeout=settings.SETTLEMENT_LOCK_TIMEOUT_SECONDS,
        )

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
        """Try once to acquire the lock."""
        return bool(redis.set(self.key, self._token, nx=True, ex=self.ttl))

    def release(self) -> bool:
        """
        Release the lock if we hold it.

        Returns:
            True if lock was released, False if we didn't hold it
        """
        if self._token is None:
            return False

        redis = self._get_redis()
        result = redis.eval(self.RELEASE_SCRIPT, 1, self.key, self._token)
        self._token = None
        return bool(result)

    def extend(self, additional_ttl: int | None = None) -> bool:
        """
        Extend the lock TTL if we hold it.

        The new TTL replaces the remaining time (not added to it).

        Returns:
            True if lock was extended, False if we don't hold it
        """
        if self._token is None:
            return False

        ttl = additional_ttl or self.ttl
        redis = self._get_redis()
        result = redis.eval(self.EXTEND_SCRIPT, 1, self.key, self._token, ttl)
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
# Optimistic Locking
# =============================================================================


def check_version(
    model_class: type[T],
    pk: Any,
    expected_version: int,
) -> T:
    """
    Atomically check version and lock a record for update.

    Combines optimistic locking (version check) with pessimistic locking
    (select_for_update) for the actual update operation.

    Args:
        model_class: Django model class (must have 'version' field)
        pk: Primary key of the record
        expected_version: Version the caller expects

    Returns:
        The locked model instance (within a transaction)

    Raises:
        StaleRecordError: If version doesn't match (concurrent modification)
        NotFoundError: If record doesn't exist

    Note:
        Must be called within a transaction context. The lock is held
        until the outer transaction commits or rolls back.
    """
    with transaction.atomic():
        instance = (
            model_class.objects.select_for_update()
            .filter(pk=pk, version=expected_version)
            .first()
        )

        if instance is None:
            model_name = model_class.__name__
            current_version = (
                model_class.objects.filter(pk=pk)
                .values_list("version", flat=True)
                .first()
            )
            if current_version is None:
                raise NotFoundError(
                    f"{model_name} {pk} not found",
                    error_code=f"{model_name.upper()}_NOT_FOUND",
                    details={"pk": str(pk)},
                )

            raise StaleRecordError(
                f"{model_name} {pk} has been modified "
                f"(expected version {expected_version}, current {current_version})",
                details={
                    "pk": str(pk),
                    "expected_version": expected_version,
                    "current_version": current_version,
                },
            )

        return instance


def compare_and_swap_version(
    model_class: type[models.Model],
    pk: Any,
    expected_version: int,
    **updates: Any,
) -> None:
    """
    Bump a record's version only if it still equals expected_version.

    Issues a single conditional UPDATE, so two writers that observed the
    same version cannot both succeed. Extra keyword arguments are written
    in the same statement.

    Raises:
        StaleRecordError: If no row matched (another writer got there first)

    Example:
        with transaction.atomic():
            compare_and_swap_version(
                SettlementCursor, cursor.pk, observed, last_claimed_at=now
            )
            ...  # writes that must commit only for the winner
    """
    updated = model_class.objects.filter(pk=pk, version=expected_version).update(
        version=F("version") + 1,
        **updates,
    )
    if updated != 1:
        raise StaleRecordError(
            f"{model_class.__name__} {pk} moved past version {expected_version}",
            details={"pk": str(pk), "expected_version": expected_version},
        )


__all__ = [
    "DistributedLock",
    "check_version",
    "compare_and_swap_version",
]

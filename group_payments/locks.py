"""
Locks used by the split payment services.

Intent creation and refund cascades call the gateway, so they are
serialized across workers with a Redis lock:

    with ShareLock.for_intent(share.id):
        ...  # at most one intent per share

    with ShareLock.for_refunds(split_payment.id) as lock:
        for share in paid_shares:
            refund(share)
            lock.extend()

Share status transitions are serialized on the row itself with
check_version, which pairs SELECT ... FOR UPDATE with the version column
every IndividualPayment carries:

    with transaction.atomic():
        share = check_version(IndividualPayment, share_id, expected_version=3)
        share.mark_paid(confirmation_id)
        share.save()
"""

from __future__ import annotations

import time
import uuid
from typing import TYPE_CHECKING, TypeVar

from django.db import models, transaction

from django_redis import get_redis_connection

from group_payments.exceptions import (
    ConcurrencyConflict,
    LockAcquisitionError,
    SplitPaymentNotFoundError,
)

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis

M = TypeVar("M", bound=models.Model)

KEY_PREFIX = "lock:split"

# Intent creation: short critical section, callers wait briefly for it
INTENT_LOCK_TTL = 30
INTENT_LOCK_WAIT = 5.0

# One refund cascade; extended after every refund
REFUND_LOCK_TTL = 120

RETRY_INTERVAL = 0.05


class ShareLock:
    """
    Redis lock owned by a random token.

    Only the owner can release or extend it (both go through a Lua script
    that compares the stored token). The TTL frees the lock if the worker
    holding it dies.

    Args:
        name: Lock name under ``lock:split:``
        ttl: Seconds before Redis drops the lock
        wait: Seconds to keep retrying; 0 gives up after one attempt
    """

    OWNED_DELETE = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    end
    return 0
    """

    OWNED_EXPIRE = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("expire", KEYS[1], ARGV[2])
    end
    return 0
    """

    def __init__(self, name: str, ttl: int, wait: float = 0.0) -> None:
        self.key = f"{KEY_PREFIX}:{name}"
        self.ttl = ttl
        self.wait = wait
        self.token: str | None = None
        self._client: Redis | None = None

    @classmethod
    def for_intent(cls, individual_payment_id: Any) -> ShareLock:
        return cls(f"intent:{individual_payment_id}", ttl=INTENT_LOCK_TTL, wait=INTENT_LOCK_WAIT)

    @classmethod
    def for_refunds(cls, split_payment_id: Any) -> ShareLock:
        return cls(f"refunds:{split_payment_id}", ttl=REFUND_LOCK_TTL)

    @property
    def client(self) -> Redis:
        if self._client is None:
            self._client = get_redis_connection("default")
        return self._client

    @property
    def is_held(self) -> bool:
        return self.token is not None

    def acquire(self) -> ShareLock:
        """
        Take the lock or raise LockAcquisitionError.

        With ``wait`` set, retries every 50ms until the wait runs out.
        """
        token = uuid.uuid4().hex
        give_up_at = time.monotonic() + self.wait

        while True:
            if self.client.set(self.key, token, nx=True, ex=self.ttl):
                self.token = token
                return self
            if time.monotonic() >= give_up_at:
                raise LockAcquisitionError(
                    f"Lock '{self.key}' is held by another worker",
                    details={"key": self.key, "waited_seconds": self.wait},
                )
            time.sleep(RETRY_INTERVAL)

    def release(self) -> bool:
        """Drop the lock if this instance still owns it."""
        if not self.is_held:
            return False
        released = self.client.eval(self.OWNED_DELETE, 1, self.key, self.token)
        self.token = None
        return bool(released)

    def extend(self) -> bool:
        """Restart the TTL if this instance still owns the lock."""
        if not self.is_held:
            return False
        return bool(self.client.eval(self.OWNED_EXPIRE, 1, self.key, self.token, self.ttl))

    def __enter__(self) -> ShareLock:
        return self.acquire()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()


def check_version(model_class: type[M], pk: Any, expected_version: int) -> M:
    """
    Lock a row and make sure nobody changed it since it was read.

    Must run inside ``transaction.atomic()`` for the row lock to outlast
    the call; a savepoint is opened so it is also safe on its own.

    Raises:
        SplitPaymentNotFoundError: The row is gone
        ConcurrencyConflict: The row's version moved on
    """
    with transaction.atomic():
        instance = model_class.objects.select_for_update().filter(pk=pk).first()

    name = model_class.__name__
    if instance is None:
        raise SplitPaymentNotFoundError(
            f"{name} {pk} not found",
            error_code=f"{name.upper()}_NOT_FOUND",
            details={"pk": str(pk)},
        )
    if instance.version != expected_version:
        raise ConcurrencyConflict(
            f"{name} {pk} was modified concurrently",
            details={
                "pk": str(pk),
                "expected_version": expected_version,
                "current_version": instance.version,
            },
        )
    return instance


__all__ = [
    "ShareLock",
    "check_version",
]

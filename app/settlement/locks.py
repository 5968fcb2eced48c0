"""
Locks used around the settlement ledger.

Balance mutations are serialized per store by ``select_for_update`` inside
SellerBalanceService. Two further tools live here:

DistributedLock
    A Redis key with a TTL, owned through a random token. Workers take it
    so two processes never release the same sub-order or poll the same
    checkout session at once. A crashed worker's lock expires on its own.

check_version
    Optimistic check for rows carrying a ``version`` column (Payout,
    SellerBalance). Admin actions pass the version they displayed; if the
    row moved on in the meantime the action is refused with
    StaleRecordError instead of overwriting newer state.

Usage:

    from settlement.locks import DistributedLock, check_version

    with DistributedLock(f"settlement:release:{sub_order_id}", ttl=30):
        SellerBalanceService.release_sub_order_payment(sub_order_id)

    payout = check_version(Payout, payout_id, expected_version=2)
"""

from __future__ import annotations

import time
import uuid as uuid_module
from typing import TYPE_CHECKING, TypeVar

from django.db import models, transaction

from django_redis import get_redis_connection

from settlement.exceptions import (
    LockAcquisitionError,
    SettlementNotFoundError,
    StaleRecordError,
)

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis

ModelT = TypeVar("ModelT", bound=models.Model)

# Seconds between attempts while waiting on a held lock
RETRY_INTERVAL = 0.05


class DistributedLock:
    """
    Token-owned Redis lock.

    Args:
        key: Lock name, stored as ``lock:<key>``
        ttl: Seconds before Redis drops the key on its own
        blocking: Wait for a held lock instead of failing at once
        timeout: Longest wait in seconds when blocking

    Raises LockAcquisitionError from acquire() (and on entering the
    context manager) when the lock cannot be taken.
    """

    # Delete / expire only while the key still holds our token
    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    end
    return 0
    """

    EXTEND_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("expire", KEYS[1], ARGV[2])
    end
    return 0
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
        self._client: Redis | None = None

    @property
    def client(self) -> Redis:
        if self._client is None:
            self._client = get_redis_connection("default")
        return self._client

    @property
    def is_held(self) -> bool:
        return self._token is not None

    def _claim(self, token: str) -> bool:
        return bool(self.client.set(self.key, token, nx=True, ex=self.ttl))

    def acquire(self) -> bool:
        token = uuid_module.uuid4().hex

        if not self.blocking:
            if not self._claim(token):
                raise LockAcquisitionError(
                    f"Lock '{self.key}' is already held",
                    details={"key": self.key},
                )
            self._token = token
            return True

        deadline = time.monotonic() + self.timeout
        while time.monotonic() < deadline:
            if self._claim(token):
                self._token = token
                return True
            time.sleep(RETRY_INTERVAL)

        raise LockAcquisitionError(
            f"Gave up waiting for lock '{self.key}' after {self.timeout}s",
            details={"key": self.key, "timeout": self.timeout},
        )

    def release(self) -> bool:
        """Drop the lock if this instance still owns it."""
        if self._token is None:
            return False
        token, self._token = self._token, None
        return bool(self.client.eval(self.RELEASE_SCRIPT, 1, self.key, token))

    def extend(self, ttl: int | None = None) -> bool:
        """Restart the TTL (``ttl`` seconds, default the lock's own) on a held lock."""
        if self._token is None:
            return False
        return bool(self.client.eval(self.EXTEND_SCRIPT, 1, self.key, self._token, ttl or self.ttl))

    def __enter__(self) -> DistributedLock:
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.release()
        return False


def check_version(model_class: type[ModelT], pk: Any, expected_version: int) -> ModelT:
    """
    Return the row locked for update if it is still at ``expected_version``.

    The row lock lasts until the caller's transaction ends, so call it
    inside one.

    Raises:
        SettlementNotFoundError: No such row (code ``<MODEL>_NOT_FOUND``)
        StaleRecordError: The row was saved since the caller read it
    """
    name = model_class.__name__
    with transaction.atomic():
        row = model_class.objects.select_for_update().filter(pk=pk).first()
        if row is None:
            raise SettlementNotFoundError(
                f"{name} {pk} not found",
                error_code=f"{name.upper()}_NOT_FOUND",
                details={"pk": str(pk)},
            )
        if row.version != expected_version:
            raise StaleRecordError(
                f"{name} {pk} changed since it was read "
                f"(read version {expected_version}, now {row.version})",
                details={
                    "pk": str(pk),
                    "expected_version": expected_version,
                    "current_version": row.version,
                },
            )
        return row


__all__ = [
    "DistributedLock",
    "check_version",
]

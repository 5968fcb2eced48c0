"""
Idempotency keys and retry helpers for gateway calls.

Gateways never retry on their own. The transaction ledger wraps gateway
calls in call_with_retry, which retries only errors flagged retryable
(rate limits, timeouts, unavailability) with exponential backoff and
jitter. Permanent errors (declines, invalid requests) propagate on the
first attempt.

Usage:
    from settlement.gateways.retry import IdempotencyKeyGenerator, call_with_retry

    key = IdempotencyKeyGenerator.generate("create_session", order_id)
    session = call_with_retry(lambda: gateway.create_session(request))
"""

from __future__ import annotations

import hashlib
import logging
import random
import time
import uuid
from typing import TYPE_CHECKING, TypeVar

from django.conf import settings

from settlement.exceptions import GatewayError

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class IdempotencyKeyGenerator:
    """
    Generate idempotency keys for gateway calls.

    Format: "{operation}:{entity_id}:{attempt}:{hash}"

    The same (operation, entity, attempt) always yields the same key, so a
    retried call after a timeout is recognised by the gateway as a replay.

    Example:
        key = IdempotencyKeyGenerator.generate(
            operation='refund',
            entity_id=refund.id,
        )
        # Result: "refund:550e8400-e29b-41d4-a716-446655440000:1:a1b2c3d4"
    """

    @staticmethod
    def generate(
        operation: str,
        entity_id: uuid.UUID | str,
        attempt: int = 1,
    ) -> str:
        entity_str = str(entity_id)
        hash_input = f"{operation}:{entity_str}:{attempt}:{settings.SECRET_KEY}"
        short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]

        return f"{operation}:{entity_str}:{attempt}:{short_hash}"


def is_retryable_gateway_error(error: Exception) -> bool:
    """
    Check if a gateway error is retryable.

    Args:
        error: The exception to check

    Returns:
        True if the error is a transient gateway error that can be retried
    """
    if isinstance(error, GatewayError):
        return getattr(error, "is_retryable", False)
    return False


def backoff_delay(attempt: int, base: float = 1.0, max_delay: float = 60.0) -> float:
    """
    Calculate exponential backoff delay with jitter.

    Args:
        attempt: Current attempt number (0-indexed)
        base: Base delay in seconds (default: 1.0)
        max_delay: Maximum delay in seconds (default: 60.0)

    Returns:
        Delay in seconds with jitter (0-25% of calculated delay)

    Example:
        # Attempt 0: 1.0 - 1.25 seconds
        # Attempt 1: 2.0 - 2.5 seconds
        # Attempt 2: 4.0 - 5.0 seconds
        delay = backoff_delay(attempt=2)
    """
    delay = min(base * (2**attempt), max_delay)
    jitter = delay * random.uniform(0, 0.25)
    return delay + jitter


def call_with_retry(
    func: Callable[[], T],
    max_attempts: int | None = None,
    operation: str = "gateway_call",
) -> T:
    """
    Call ``func`` and retry retryable gateway errors with backoff.

    Args:
        func: Zero-argument callable performing the gateway call
        max_attempts: Total attempts (default: SETTLEMENT_GATEWAY_MAX_ATTEMPTS)
        operation: Name used in log records

    Returns:
        Whatever ``func`` returns

    Raises:
        GatewayError: The last retryable error once attempts run out, or
            the first permanent error
    """
    if max_attempts is None:
        max_attempts = settings.SETTLEMENT_GATEWAY_MAX_ATTEMPTS
    max_attempts = max(1, max_attempts)

    for attempt in range(max_attempts):
        try:
            return func()
        except GatewayError as e:
            if not is_retryable_gateway_error(e) or attempt + 1 >= max_attempts:
                raise
            delay = backoff_delay(attempt)
            logger.warning(
                "Retryable gateway error, backing off",
                extra={
                    "operation": operation,
                    "attempt": attempt + 1,
                    "max_attempts": max_attempts,
                    "delay_seconds": round(delay, 3),
                    "error_code": e.error_code,
                },
            )
            time.sleep(delay)

    raise AssertionError("unreachable")  # pragma: no cover

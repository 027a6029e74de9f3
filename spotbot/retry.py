"""Bounded retry for gateway calls.

Only ``GatewayError`` instances flagged ``retryable`` are retried. The delay
before attempt ``n + 1`` is ``base_delay * n`` (linear backoff). A
non-retryable error, or the last failed attempt, is re-raised unchanged.
"""
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from .gateway import GatewayError
from .logging_setup import logger

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
    return base_delay * attempt


def call_with_retry(
    operation: Callable[[], T],
    policy: RetryPolicy = RetryPolicy(),
    *,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "gateway call",
) -> T:
    """Run ``operation`` until it succeeds or fails permanently.

    Args:
        operation: Zero-argument callable performing one gateway request
        policy: Attempt count and base delay
        sleep: Blocking wait function (injected by tests)
        description: Label used in log lines

    Returns:
        The value returned by the first successful attempt

    Raises:
        GatewayError: If the error is not retryable or every attempt failed
    """
    attempt = 1
    while True:
        try:
            return operation()
        except GatewayError as e:
            if not e.retryable:
                logger.error(f"{description} failed (not retryable) | error={e}")
                raise
            if attempt >= policy.max_attempts:
                logger.error(
                    f"{description} failed after {attempt} attempts | error={e}"
                )
                raise
            delay = backoff_delay(attempt, policy.base_delay)
            logger.warning(
                f"Retrying {description} | attempt={attempt} max_attempts={policy.max_attempts} "
                f"delay_seconds={delay} error={e}"
            )
            sleep(delay)
            attempt += 1

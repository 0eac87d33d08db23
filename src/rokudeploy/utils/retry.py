"""Bounded retry for flaky local filesystem operations."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")

logger = logging.getLogger("rokudeploy.retry")


class RetryPolicy(BaseModel):
    """Fixed-delay retry configuration.

    Args:
        max_attempts: Maximum number of attempts, including the first one
        delay_s: Pause between attempts in seconds
    """

    model_config = {"frozen": True}

    max_attempts: int = Field(default=10, ge=1)
    delay_s: float = Field(default=0.02, ge=0.0)


async def try_repeat_async(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
) -> T:
    """Run operation until it succeeds or the attempt budget is spent.

    Args:
        operation: Zero-argument coroutine function
        policy: Retry policy (defaults to 10 attempts, 20ms apart)

    Returns:
        Result of the first successful attempt

    Raises:
        Exception: The exception of the last attempt, unchanged
    """
    policy = policy or RetryPolicy()
    last_error: Optional[BaseException] = None

    for attempt in range(policy.max_attempts):
        if attempt > 0:
            logger.debug(
                f"Retrying (attempt {attempt + 1}/{policy.max_attempts}) "
                f"after {policy.delay_s * 1000:.0f}ms: {last_error}"
            )
            await asyncio.sleep(policy.delay_s)
        try:
            return await operation()
        except Exception as e:
            last_error = e

    logger.warning(f"Giving up after {policy.max_attempts} attempts: {last_error}")
    raise last_error

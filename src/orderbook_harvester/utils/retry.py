"""Retry utilities with exponential backoff."""

import asyncio
import inspect
import random
import logging
from typing import Callable, Any, TypeVar

from ..config.settings import RetryConfig

logger = logging.getLogger(__name__)

T = TypeVar('T')


async def exponential_backoff(
    func: Callable[[], Any],
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    backoff_factor: float = 2.0,
    jitter: bool = True,
    exceptions: tuple = (Exception,)
) -> T:
    """
    Execute a function with exponential backoff retry logic.

    Args:
        func: Async function to execute
        max_attempts: Maximum number of attempts
        initial_delay: Initial delay between retries (seconds)
        max_delay: Maximum delay between retries (seconds)
        backoff_factor: Multiplier for delay after each failure
        jitter: Whether to add random jitter to delays
        exceptions: Tuple of exceptions to catch and retry on

    Returns:
        Result of the function call

    Raises:
        The last exception encountered if all retries fail
    """
    delay = initial_delay
    attempts = max(1, max_attempts)

    for attempt in range(attempts):
        try:
            if inspect.iscoroutinefunction(func):
                return await func()
            return func()
        except exceptions as e:
            if attempt == attempts - 1:
                logger.error(f"Function failed after {attempts} attempts: {e}")
                raise

            if jitter:
                # ±25% of the delay
                jitter_range = delay * 0.25
                actual_delay = delay + random.uniform(-jitter_range, jitter_range)
            else:
                actual_delay = delay

            actual_delay = max(0.0, min(actual_delay, max_delay))

            logger.warning(
                f"Attempt {attempt + 1}/{attempts} failed: {e}. "
                f"Retrying in {actual_delay:.2f} seconds..."
            )

            await asyncio.sleep(actual_delay)
            delay *= backoff_factor


async def retry_with_config(
    func: Callable[[], Any],
    retry_config: RetryConfig,
    exceptions: tuple = (Exception,)
) -> T:
    """Run ``exponential_backoff`` with the service retry settings."""
    return await exponential_backoff(
        func,
        max_attempts=retry_config.max_attempts,
        initial_delay=retry_config.initial_backoff_seconds,
        max_delay=retry_config.max_backoff_seconds,
        backoff_factor=retry_config.backoff_multiplier,
        jitter=retry_config.jitter,
        exceptions=exceptions
    )

"""
Connection supervision shared by the broker consumer and the search client.

A connection is tried once and then retried a fixed number of times with a
fixed delay in between. Running out of retries raises ConnectionFailedError,
which is fatal to startup.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from .errors import ConnectionFailedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-delay retry policy; ``retries`` counts the tries after the first."""
    retries: int = 5
    delay_seconds: float = 5.0

    def __post_init__(self):
        if self.retries < 0:
            raise ValueError("Connection retries cannot be negative")
        if self.delay_seconds < 0:
            raise ValueError("Retry delay cannot be negative")

    @property
    def max_tries(self) -> int:
        return self.retries + 1


async def connect_with_retry(
    connect: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    name: str,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Call ``connect`` until it succeeds or the policy runs out of retries.

    Args:
        connect: Coroutine factory establishing the connection
        policy: Number of retries and delay between tries
        name: Human readable name of the remote service, used in logs and errors
        retry_on: Exception types considered transient
        sleep: Sleep function, replaceable in tests

    Returns:
        Whatever ``connect`` returned on the first successful try

    Raises:
        ConnectionFailedError: If every try failed
    """
    last_error = None
    max_tries = policy.max_tries

    for attempt in range(1, max_tries + 1):
        try:
            result = await connect()
        except retry_on as e:
            last_error = e
            logger.warning(
                f"Could not connect to {name} (attempt {attempt}/{max_tries}): {e}"
            )
            if attempt < max_tries:
                await sleep(policy.delay_seconds)
            continue

        if attempt > 1:
            logger.info(f"Connected to {name} after {attempt} attempts")
        else:
            logger.info(f"Connected to {name}")
        return result

    raise ConnectionFailedError(name, max_tries, last_error) from last_error

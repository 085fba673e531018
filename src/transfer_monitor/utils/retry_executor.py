"""
Retry wrapper with linear backoff and endpoint failover for ledger calls.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from .endpoint_pool import RpcEndpointPool

T = TypeVar("T")

# Failover happens after this many consecutive failures of one call
FAILOVER_AFTER_ATTEMPT = 2


class RetryExecutor:
    """
    Runs ledger operations with bounded retries.

    After attempt k fails (k below the attempt cap) the executor waits
    base_delay * k seconds. Before waiting out the second failure it rotates
    the endpoint pool. The last error is re-raised once the attempts run out.
    """

    def __init__(
        self,
        pool: RpcEndpointPool,
        max_attempts: int = 3,
        base_delay: float = 1.0
    ) -> None:
        """
        Initialize the executor.

        Args:
            pool: Endpoint pool to rotate on sustained failure
            max_attempts: Total attempts per operation
            base_delay: Backoff unit in seconds
        """
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

        self.pool = pool
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    async def execute(self, operation: Callable[[], Awaitable[T]], label: str) -> T:
        """
        Run an operation until it succeeds or the attempts are exhausted.

        The operation must resolve the active endpoint itself on each call,
        since a rotation may happen between attempts.

        Args:
            operation: Zero-argument coroutine function
            label: Description used in log messages

        Returns:
            The operation's result

        Raises:
            Exception: The error of the final attempt, unchanged
        """
        for attempt in range(1, self.max_attempts + 1):
            endpoint = self.pool.current()
            try:
                return await operation()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.warning(
                    f"{label} failed (attempt {attempt}/{self.max_attempts}): {e}"
                )

                if attempt == self.max_attempts:
                    raise

                if attempt == FAILOVER_AFTER_ATTEMPT:
                    # Concurrent callers share the pool; only rotate away from the endpoint that failed
                    if self.pool.current() == endpoint:
                        self.pool.rotate()
                    else:
                        self.logger.debug(f"{label}: pool already moved off {endpoint}")
                await asyncio.sleep(self.base_delay * attempt)

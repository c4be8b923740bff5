"""
Bounded timeout and retry policy for remote store calls.

Remote calls are the only place a mutation can hang. This module wraps each
call so that a pending mutation always settles:

1. **Timeout**: a call that does not answer within ``timeout_seconds``
   settles as ``ServerRejection(code="timeout")``. The call itself is not
   cancelled (it may already have reached the store); it is shielded and
   left to finish in the background, and its late result is only logged.
   The change feed reconciles whatever the store ended up doing.
2. **Retry**: a call that returns ``NetworkError`` (sent, no usable
   response) is retried with exponential backoff, up to ``max_retries``
   times, then escalated to ``ServerRejection(code="unreachable")``.

Configuration:
    - Default timeout: 30.0 seconds (None disables it)
    - Default retries: 2
    - Default base delay: 0.5 seconds, multiplier 2.0x per retry
    - Jitter: random variance of +/-20% added to delay

Example:
    >>> policy = RemoteCallPolicy(timeout_seconds=10, max_retries=3)
    >>> result = await policy.execute(lambda: remote.delete("7f1c"), label="delete 7f1c")
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from tasksync.core.sync.errors import Err, NetworkError, Result, ServerRejection

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _log_late_result(label: str, task: asyncio.Future[Any]) -> None:
    """Done-callback for calls that finished after their timeout."""
    if task.cancelled():
        logger.warning("Timed-out call %s was cancelled", label)
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("Timed-out call %s eventually raised: %s", label, exc)
        return
    logger.warning("Timed-out call %s eventually completed: %r (discarded)", label, task.result())


class RemoteCallPolicy:
    """
    Timeout plus retry wrapper for remote store calls.

    Attributes:
        timeout_seconds: Per-attempt timeout, or None for no timeout
        max_retries: Retries after the first attempt for NetworkError results
        base_delay: Delay before the first retry, in seconds
        multiplier: Exponential backoff multiplier
        jitter: Whether to add random variance to delays
    """

    def __init__(
        self,
        timeout_seconds: float | None = 30.0,
        max_retries: int = 2,
        base_delay: float = 0.5,
        multiplier: float = 2.0,
        jitter: bool = True,
        jitter_ratio: float = 0.2,
    ) -> None:
        """
        Initialize the policy.

        Raises:
            ValueError: If any parameter is out of range
        """
        if timeout_seconds is not None and timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be positive, got {timeout_seconds}")
        if max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if base_delay < 0:
            raise ValueError("base_delay must be non-negative")
        if multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")
        if not 0.0 <= jitter_ratio <= 1.0:
            raise ValueError("jitter_ratio must be between 0.0 and 1.0")

        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.multiplier = multiplier
        self.jitter = jitter
        self.jitter_ratio = jitter_ratio

    def calculate_delay(self, attempt: int) -> float:
        """
        Delay before retry number ``attempt`` (0-indexed).

        delay = base_delay * (multiplier ^ attempt), plus optional jitter.
        """
        delay = self.base_delay * (self.multiplier**attempt)
        if self.jitter:
            variance = delay * self.jitter_ratio
            delay += random.uniform(-variance, variance)
        return max(0.0, delay)

    async def execute(
        self,
        call: Callable[[], Awaitable[Result[T]]],
        *,
        label: str = "remote call",
    ) -> Result[T]:
        """
        Run ``call`` under the timeout and retry rules.

        Args:
            call: Zero-argument factory returning a fresh awaitable per attempt
            label: Description used in log messages and error text

        Returns:
            The call's own result, or ``Err(ServerRejection)`` on timeout or
            when retries are exhausted

        Raises:
            Exception: Anything the call itself raises (a broken adapter)
        """
        attempt = 0
        while True:
            result = await self._run_once(call, label)

            if isinstance(result, Err) and isinstance(result.error, NetworkError):
                if attempt >= self.max_retries:
                    logger.error(
                        "%s failed after %d attempt(s): %s", label, attempt + 1, result.error
                    )
                    return Err(
                        ServerRejection(
                            f"{label} failed after {attempt + 1} attempt(s): {result.error}",
                            code="unreachable",
                        )
                    )
                delay = self.calculate_delay(attempt)
                logger.warning(
                    "%s: network error (%s), retrying in %.2fs (%d/%d)",
                    label,
                    result.error,
                    delay,
                    attempt + 1,
                    self.max_retries,
                )
                await asyncio.sleep(delay)
                attempt += 1
                continue

            return result

    async def _run_once(
        self,
        call: Callable[[], Awaitable[Result[T]]],
        label: str,
    ) -> Result[T]:
        if self.timeout_seconds is None:
            return await call()

        task = asyncio.ensure_future(call())
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            task.add_done_callback(lambda t: _log_late_result(label, t))
            logger.error("%s timed out after %ss", label, self.timeout_seconds)
            return Err(
                ServerRejection(
                    f"{label} timed out after {self.timeout_seconds}s",
                    code="timeout",
                )
            )


__all__ = ["RemoteCallPolicy"]

"""
Async retry executor for transient failures.

Retry policy:
- Exponential backoff with jitter: delay = min(initial * 2^(attempt-1) * jitter, max_delay),
  jitter drawn uniformly from [0.8, 1.2]
- Only transport-transient and server-transient failures are retried
- Everything else is raised immediately, after a single invocation
- On exhaustion the last observed error is raised unchanged
- No logging inside the executor (caller handles logging)

Backoff state lives in local variables of each run() call, so one executor
can be shared by concurrent activations.

The wrapped operation must be retry-safe: it may be invoked more than once.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

import httpx

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_INITIAL_DELAY = 1.0
DEFAULT_MAX_DELAY = 32.0

JITTER_RANGE = (0.8, 1.2)

# Raw transport exceptions retried when a collaborator did not map them to a kind
TRANSIENT_EXCEPTIONS: Tuple[Type[BaseException], ...] = (
    asyncio.TimeoutError,
    httpx.TransportError,
    ConnectionError,
)


def is_retryable(error: BaseException) -> bool:
    """
    Decide whether a failure may be retried.

    Named activation errors answer through their `is_retryable` flag;
    unmapped transport exceptions are retryable.
    """
    flag = getattr(error, "is_retryable", None)
    if isinstance(flag, bool):
        return flag
    return isinstance(error, TRANSIENT_EXCEPTIONS)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    initial_delay: float = DEFAULT_INITIAL_DELAY
    max_delay: float = DEFAULT_MAX_DELAY

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")

    def delay_for(self, attempt: int, jitter: float) -> float:
        """Delay after failed attempt number `attempt` (1-based)."""
        return min(self.initial_delay * (2 ** (attempt - 1)) * jitter, self.max_delay)


class RetryExecutor:
    """
    Runs an async operation under a RetryPolicy.

    Args:
        policy: Attempts and delays (defaults: 3 attempts, 1s initial, 32s cap)
        sleep: Awaitable sleep used between attempts (injectable for tests)
        rng: Random source for jitter
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._rng = rng or random.Random()

    def jitter(self) -> float:
        return self._rng.uniform(*JITTER_RANGE)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        cancellation=None,
    ) -> T:
        """
        Invoke `operation` until it succeeds, fails fatally, or attempts run out.

        Args:
            operation: Zero-argument callable returning an awaitable
            cancellation: Optional cancellation token; checked before every
                attempt and honoured during the backoff sleep, never mid-attempt

        Returns:
            Result of the first successful attempt

        Raises:
            The last observed error when attempts are exhausted
            Non-retryable errors immediately
            ActivationCancelled if the run is cancelled between attempts
        """
        last_error: Optional[BaseException] = None

        for attempt in range(1, self.policy.max_attempts + 1):
            if cancellation is not None:
                cancellation.raise_if_cancelled()

            try:
                return await operation()
            except Exception as e:
                if not is_retryable(e):
                    raise
                last_error = e

            if attempt >= self.policy.max_attempts:
                break

            delay = self.policy.delay_for(attempt, self.jitter())
            if cancellation is not None:
                await cancellation.sleep(delay, sleep=self._sleep)
            else:
                await self._sleep(delay)

        if last_error is not None:
            raise last_error

        from activator.services.activation.exceptions import ActivationError, ErrorKind
        raise ActivationError(ErrorKind.NETWORK_ERROR)

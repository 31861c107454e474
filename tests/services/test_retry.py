"""
Unit tests for the retry executor.

Tests focus on:
- Backoff delays (exponential, capped, jittered)
- Transient vs fatal classification
- Cancellation between attempts
"""
import asyncio
import random

import httpx
import pytest

from activator.services.activation.cancellation import CancellationToken
from activator.services.activation.exceptions import ActivationCancelled, ActivationError, ErrorKind
from activator.utils.retry import RetryExecutor, RetryPolicy, is_retryable


class FixedJitter(random.Random):
    def uniform(self, a, b):
        return 1.0


class TestRetryPolicy:
    """Tests for RetryPolicy.delay_for"""

    def test_exponential_growth(self):
        """Delays double per attempt"""
        policy = RetryPolicy(max_attempts=5, initial_delay=1.0, max_delay=32.0)
        assert [policy.delay_for(n, 1.0) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]

    def test_delay_capped(self):
        """Delay never exceeds max_delay, even with upward jitter"""
        policy = RetryPolicy(max_attempts=10, initial_delay=1.0, max_delay=32.0)
        assert policy.delay_for(8, 1.2) == 32.0

    def test_jitter_applied(self):
        """Jitter scales the delay"""
        policy = RetryPolicy(initial_delay=1.0)
        assert policy.delay_for(1, 0.8) == pytest.approx(0.8)

    def test_invalid_attempts(self):
        """max_attempts below one is rejected"""
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)


class TestIsRetryable:
    """Tests for error classification"""

    def test_named_transient_kinds(self):
        """Transport and server kinds are retryable"""
        for kind in (ErrorKind.TIMEOUT, ErrorKind.HOST_UNREACHABLE, ErrorKind.SERVER_ERROR,
                     ErrorKind.GATEWAY_TIMEOUT, ErrorKind.DNS_FAILURE, ErrorKind.CONNECTION_LOST):
            assert is_retryable(ActivationError(kind)) is True

    def test_named_fatal_kinds(self):
        """Domain and auth kinds are fatal"""
        for kind in (ErrorKind.INVALID_KEY, ErrorKind.ALREADY_REDEEMED, ErrorKind.AUTHENTICATION_FAILED):
            assert is_retryable(ActivationError(kind)) is False

    def test_raw_transport_exceptions(self):
        """Unmapped transport exceptions are retryable"""
        assert is_retryable(asyncio.TimeoutError()) is True
        assert is_retryable(httpx.ConnectError("boom")) is True
        assert is_retryable(ValueError("bad")) is False


class TestRetryExecutor:
    """Tests for RetryExecutor.run"""

    @pytest.mark.asyncio
    async def test_succeeds_first_attempt(self, recording_sleep):
        """No sleeping when the first attempt succeeds"""
        executor = RetryExecutor(sleep=recording_sleep)

        async def op():
            return "ok"

        assert await executor.run(op) == "ok"
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_retries_transient_then_succeeds(self, recording_sleep):
        """Transient failures are retried with growing delays"""
        executor = RetryExecutor(RetryPolicy(max_attempts=3), sleep=recording_sleep, rng=FixedJitter())
        attempts = []

        async def op():
            attempts.append(1)
            if len(attempts) < 3:
                raise ActivationError(ErrorKind.SERVER_ERROR)
            return "done"

        assert await executor.run(op) == "done"
        assert len(attempts) == 3
        assert recording_sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_fatal_error_not_retried(self, recording_sleep):
        """A fatal error propagates after one attempt"""
        executor = RetryExecutor(sleep=recording_sleep)
        attempts = []

        async def op():
            attempts.append(1)
            raise ActivationError(ErrorKind.INVALID_KEY)

        with pytest.raises(ActivationError) as exc:
            await executor.run(op)
        assert exc.value.kind == ErrorKind.INVALID_KEY
        assert len(attempts) == 1
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_exhaustion_raises_last_error(self, recording_sleep):
        """After max attempts the last observed error is raised"""
        executor = RetryExecutor(RetryPolicy(max_attempts=3), sleep=recording_sleep, rng=FixedJitter())
        errors = [ActivationError(ErrorKind.TIMEOUT), ActivationError(ErrorKind.HOST_UNREACHABLE),
                  ActivationError(ErrorKind.GATEWAY_TIMEOUT)]

        async def op():
            raise errors.pop(0)

        with pytest.raises(ActivationError) as exc:
            await executor.run(op)
        assert exc.value.kind == ErrorKind.GATEWAY_TIMEOUT
        assert len(recording_sleep.delays) == 2

    @pytest.mark.asyncio
    async def test_cancelled_before_attempt(self, recording_sleep):
        """A cancelled token stops the executor before the next attempt"""
        executor = RetryExecutor(sleep=recording_sleep)
        token = CancellationToken()
        token.cancel("user")
        called = []

        async def op():
            called.append(1)

        with pytest.raises(ActivationCancelled):
            await executor.run(op, cancellation=token)
        assert called == []

    @pytest.mark.asyncio
    async def test_cancelled_during_backoff(self):
        """Cancellation during the backoff sleep ends the run without another attempt"""
        token = CancellationToken()
        attempts = []

        async def slow_sleep(delay):
            await asyncio.sleep(10)

        executor = RetryExecutor(RetryPolicy(max_attempts=3), sleep=slow_sleep)

        async def op():
            attempts.append(1)
            raise ActivationError(ErrorKind.TIMEOUT)

        task = asyncio.ensure_future(executor.run(op, cancellation=token))
        await asyncio.sleep(0.01)
        token.cancel()
        with pytest.raises(ActivationCancelled):
            await asyncio.wait_for(task, timeout=1.0)
        assert len(attempts) == 1

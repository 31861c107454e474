"""
Correlation IDs and failure taxonomy for activation logs.

Logging contract:
- correlation_id: the activation run id, set once per run
- component: activation | bundle | gate | redeemer | client
- outcome: success | degraded | failed | cancelled

Failure taxonomy:
- infra_error: transport failures (timeouts, DNS, connection)
- dependency_error: upstream service failures (5xx, malformed responses, auth)
- domain_error: activation rules (invalid key, region mismatch, already redeemed)
- unexpected_error: anything else (bugs)
"""

import asyncio
import uuid
from contextvars import ContextVar
from typing import Optional

_correlation_id: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)


def generate_correlation_id() -> str:
    """
    Generate a unique correlation ID for an activation run.

    Returns:
        UUID string (e.g., "550e8400-e29b-41d4-a716-446655440000")
    """
    return str(uuid.uuid4())


def set_correlation_id(correlation_id: str) -> None:
    _correlation_id.set(correlation_id)


def get_correlation_id() -> Optional[str]:
    return _correlation_id.get()


def classify_error(exception: BaseException) -> str:
    """
    Classify error type for failure taxonomy.

    Args:
        exception: Exception to classify

    Returns:
        Error type: "infra_error" | "dependency_error" | "domain_error" | "unexpected_error"
    """
    import httpx
    from activator.services.activation.exceptions import (
        ActivationError,
        ActivationServiceError,
        ErrorKind,
        RETRYABLE_KINDS,
    )

    infra_kinds = {
        ErrorKind.TIMEOUT,
        ErrorKind.HOST_UNREACHABLE,
        ErrorKind.CONNECTION_LOST,
        ErrorKind.DNS_FAILURE,
        ErrorKind.NETWORK_ERROR,
        ErrorKind.NO_NETWORK,
        ErrorKind.TOKEN_TIMEOUT,
    }
    dependency_kinds = RETRYABLE_KINDS | {
        ErrorKind.INVALID_RESPONSE,
        ErrorKind.HTTP_ERROR,
        ErrorKind.ACCOUNT_INFO_FAILED,
        ErrorKind.SUBSCRIPTIONS_FETCH_FAILED,
        ErrorKind.PROXY_CREDENTIALS_FAILED,
        ErrorKind.PROXY_AUTHENTICATION_FAILED,
        ErrorKind.MAX_RETRIES_EXCEEDED,
    }

    if isinstance(exception, ActivationError):
        if exception.kind in infra_kinds:
            return "infra_error"
        if exception.kind in dependency_kinds:
            return "dependency_error"
        return "domain_error"

    if isinstance(exception, ActivationServiceError):
        return "domain_error"

    if isinstance(exception, (asyncio.TimeoutError, httpx.TransportError, ConnectionError, OSError)):
        return "infra_error"

    if isinstance(exception, httpx.HTTPError):
        return "dependency_error"

    return "unexpected_error"

"""
Shared httpx plumbing for the activation clients.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from activator.services.activation.exceptions import ActivationError, ErrorKind

logger = logging.getLogger(__name__)

# Explicit timeout for every outbound call (connect, read, write, pool)
DEFAULT_TIMEOUT = httpx.Timeout(connect=5.0, read=10.0, write=5.0, pool=5.0)

_DNS_MARKERS = ("name or service not known", "nodename nor servname", "name resolution", "getaddrinfo")


def map_transport_error(error: httpx.HTTPError) -> ActivationError:
    """Translate an httpx transport failure into a named ActivationError."""
    if isinstance(error, httpx.TimeoutException):
        return ActivationError(ErrorKind.TIMEOUT)
    if isinstance(error, httpx.ProxyError):
        return ActivationError(ErrorKind.HOST_UNREACHABLE, "proxy")
    if isinstance(error, httpx.ConnectError):
        message = str(error).lower()
        if any(marker in message for marker in _DNS_MARKERS):
            return ActivationError(ErrorKind.DNS_FAILURE)
        return ActivationError(ErrorKind.HOST_UNREACHABLE)
    if isinstance(error, (httpx.RemoteProtocolError, httpx.ReadError, httpx.WriteError)):
        return ActivationError(ErrorKind.CONNECTION_LOST)
    return ActivationError(ErrorKind.NETWORK_ERROR, type(error).__name__)


def decode_json(response: httpx.Response) -> Any:
    """Decoded body, or None when it is empty or not JSON."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


class BaseClient:
    """
    Base for the HTTP clients.

    Args:
        base_url: Service root, without trailing slash
        timeout: httpx timeout for every request
        transport: Optional httpx transport; when given it replaces the
            network stack entirely (proxies included)
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: Optional[httpx.Timeout] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or DEFAULT_TIMEOUT
        self._transport = transport

    def url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        proxy: Optional[str] = None,
    ) -> httpx.Response:
        """
        Send one request.

        Raises:
            ActivationError: transport failure mapped to its kind
        """
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                proxy=None if self._transport is not None else proxy,
            ) as client:
                return await client.request(method, url, headers=headers, params=params, json=json)
        except httpx.HTTPError as e:
            mapped = map_transport_error(e)
            logger.warning("%s %s failed: %s", method, url.split("?")[0], mapped.kind.value)
            raise mapped from e

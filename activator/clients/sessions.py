"""
Session backend client.

The backend stores one row per activation session and exposes edge
functions for completion reporting, proxy credentials and portal links.
"""

import logging
from collections import OrderedDict
from dataclasses import replace
from typing import Any, Dict, Optional, Sequence, Tuple

import httpx

from activator.clients.base import BaseClient, decode_json
from activator.core.proxy import ProxyCredentials
from activator.core.structured_logger import mask_key
from activator.services.activation.exceptions import ActivationError, ErrorKind
from activator.services.activation.models import Product

logger = logging.getLogger(__name__)

SESSIONS_PATH = "/rest/v1/activation_sessions"
READINESS_PATH = "/rest/v1/line_item_readiness"
MARK_ACTIVATED_PATH = "/functions/v1/mark-activated"
PROXY_CREDS_PATH = "/functions/v1/get-proxy-creds"
PORTAL_AUTH_PATH = "/functions/v1/portal-auth"

# Order references kept for portal links of sessions not yet reported
MAX_TRACKED_ORDERS = 256


class SessionClient(BaseClient):
    """
    Args:
        base_url: Backend root URL
        api_key: Public API key sent as `apikey` and bearer
        game_pass_ids: Product ids treated as subscriptions
        proxy_ttl: Lifetime assumed for proxy credentials without expires_at
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        game_pass_ids: Sequence[str] = (),
        proxy_ttl: float = 3600.0,
        timeout: Optional[httpx.Timeout] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(base_url, timeout=timeout, transport=transport)
        self.api_key = api_key
        self.game_pass_ids = tuple(game_pass_ids)
        self.proxy_ttl = proxy_ttl
        # session token -> (order_id, order_number), filled by fetch(), dropped by mark_activated()
        self._orders: "OrderedDict[str, Tuple[Optional[str], Optional[str]]]" = OrderedDict()

    def _remember_order(self, session_token: str, product: Product) -> None:
        self._orders[session_token] = (product.order_id, product.order_number)
        self._orders.move_to_end(session_token)
        while len(self._orders) > MAX_TRACKED_ORDERS:
            self._orders.popitem(last=False)

    def _headers(self) -> Dict[str, str]:
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def fetch(self, session_token: str) -> Product:
        """
        Load the product attached to a session.

        Raises:
            ActivationError: invalid_session, session_expired,
                product_not_found, server_error, transport kinds
        """
        response = await self.request(
            "GET",
            self.url(SESSIONS_PATH),
            headers=self._headers(),
            params={"session_token": f"eq.{session_token}", "select": "*"},
        )
        if response.status_code >= 500:
            raise ActivationError(ErrorKind.SERVER_ERROR, f"HTTP {response.status_code}")
        if response.status_code != 200:
            raise ActivationError(ErrorKind.INVALID_SESSION, f"HTTP {response.status_code}")

        rows = decode_json(response)
        if not isinstance(rows, list) or not rows or not isinstance(rows[0], dict):
            raise ActivationError(ErrorKind.PRODUCT_NOT_FOUND)

        product = Product.from_dict(rows[0], self.game_pass_ids)
        if product.is_expired():
            raise ActivationError(ErrorKind.SESSION_EXPIRED)

        readiness = await self._readiness(product)
        if readiness:
            product = _with_readiness(product, readiness)
        self._remember_order(session_token, product)
        logger.info("Session loaded: session=%s keys=%d", mask_key(session_token), len(product.keys))
        return product

    async def _readiness(self, product: Product) -> Optional[Dict[str, Any]]:
        """Best-effort lookup of the line item's activation method."""
        if not product.order_id or not product.line_item_id:
            return None
        try:
            response = await self.request(
                "GET",
                self.url(READINESS_PATH),
                headers=self._headers(),
                params={
                    "order_id": f"eq.{product.order_id}",
                    "line_item_id": f"eq.{product.line_item_id}",
                    "select": "activation_method,order_number",
                },
            )
        except ActivationError as e:
            logger.warning("Readiness lookup failed: %s", e.kind.value)
            return None
        rows = decode_json(response)
        if response.status_code != 200 or not isinstance(rows, list) or not rows:
            return None
        return rows[0] if isinstance(rows[0], dict) else None

    async def mark_activated(self, session_token: str, success: bool) -> None:
        """Report the outcome. Failures are logged, never raised."""
        self._orders.pop(session_token, None)
        try:
            response = await self.request(
                "POST",
                self.url(MARK_ACTIVATED_PATH),
                headers=self._headers(),
                json={"session_token": session_token, "success": success},
            )
        except ActivationError as e:
            logger.warning("mark-activated failed: session=%s error=%s", mask_key(session_token), e.kind.value)
            return
        if response.status_code != 200:
            logger.warning(
                "mark-activated rejected: session=%s status=%s", mask_key(session_token), response.status_code
            )

    async def fetch_proxy_credentials(self, session_token: Optional[str] = None) -> ProxyCredentials:
        """
        Credentials for the regional proxies, authorized by the run's session.

        Raises:
            ActivationError(proxy_credentials_failed)
        """
        response = await self.request(
            "POST",
            self.url(PROXY_CREDS_PATH),
            headers=self._headers(),
            json={"session_token": session_token},
        )
        if response.status_code != 200:
            raise ActivationError(ErrorKind.PROXY_CREDENTIALS_FAILED, f"HTTP {response.status_code}")
        payload = decode_json(response)
        if not isinstance(payload, dict):
            raise ActivationError(ErrorKind.PROXY_CREDENTIALS_FAILED, "invalid payload")
        try:
            return ProxyCredentials.from_payload(payload, self.proxy_ttl)
        except (KeyError, TypeError) as e:
            raise ActivationError(ErrorKind.PROXY_CREDENTIALS_FAILED, "missing field") from e

    async def portal_url(self, session_token: str) -> Optional[str]:
        """Signed portal link for a digital-account order, or None."""
        order_id, order_number = self._orders.get(session_token, (None, None))
        response = await self.request(
            "POST",
            self.url(PORTAL_AUTH_PATH),
            headers=self._headers(),
            json={
                "action": "create_token_and_redirect",
                "data": {
                    "session_token": session_token,
                    "order_id": order_id,
                    "order_number": order_number,
                },
            },
        )
        payload = decode_json(response)
        if response.status_code != 200 or not isinstance(payload, dict):
            logger.warning("portal-auth failed: status=%s", response.status_code)
            return None
        url = payload.get("portal_url")
        return url if isinstance(url, str) and url else None


def _with_readiness(product: Product, readiness: Dict[str, Any]) -> Product:
    method = readiness.get("activation_method")
    number = readiness.get("order_number")
    return replace(
        product,
        activation_method=method if isinstance(method, str) and method else product.activation_method,
        order_number=str(number) if number else product.order_number,
    )

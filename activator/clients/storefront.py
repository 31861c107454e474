"""
Storefront purchase API client.

Token description lookups and order submissions, optionally routed through
a regional proxy. Responses are returned raw as StoreResponse; the redeemer
interprets status codes and error codes.
"""

import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from activator.clients.base import BaseClient, decode_json
from activator.services.activation.collaborators import ProxyRoute, StoreResponse

logger = logging.getLogger(__name__)

DEFAULT_STOREFRONT_URL = "https://purchase.mp.microsoft.com"
LANGUAGE = "en-US"


def _auth_header(token: str) -> Dict[str, str]:
    return {
        "Authorization": f'WLID1.0="{token}"',
        "Accept": "application/json",
        "Content-Type": "application/json",
    }


def _store_response(response: httpx.Response) -> StoreResponse:
    body = decode_json(response)
    return StoreResponse(response.status_code, body if isinstance(body, dict) else {})


class StorefrontClient(BaseClient):
    def __init__(
        self,
        base_url: str = DEFAULT_STOREFRONT_URL,
        *,
        timeout: Optional[httpx.Timeout] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(base_url, timeout=timeout, transport=transport)

    async def token_description(
        self, key: str, market: str, token: str, proxy: Optional[ProxyRoute]
    ) -> StoreResponse:
        response = await self.request(
            "GET",
            self.url(f"/v7.0/tokenDescriptions/{quote(key, safe='')}"),
            headers=_auth_header(token),
            params={"market": market, "language": LANGUAGE, "supportMultiAvailabilities": "true"},
            proxy=proxy.url if proxy else None,
        )
        return _store_response(response)

    async def submit_order(
        self, payload: Dict[str, Any], token: str, proxy: Optional[ProxyRoute]
    ) -> StoreResponse:
        response = await self.request(
            "POST",
            self.url("/v7.0/users/me/orders"),
            headers=_auth_header(token),
            json=payload,
            proxy=proxy.url if proxy else None,
        )
        if response.status_code not in (200, 201):
            logger.info("Order rejected: status=%s market=%s", response.status_code, payload.get("market"))
        return _store_response(response)

"""
Interfaces of the external collaborators consumed by the activation engine.

HTTP implementations live in activator.clients; tests supply fakes.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, Tuple

from activator.core.proxy import ProxyCredentials, ProxyEndpoint
from activator.services.activation.models import (
    ActivationRecord,
    DiagnosticResults,
    Product,
    ProductInfo,
    SubscriptionStatus,
)


@dataclass(frozen=True)
class StoreResponse:
    """Raw storefront response: status code plus decoded JSON body (empty dict when absent)."""
    status: int
    body: Dict[str, Any] = field(default_factory=dict)

    @property
    def error_code(self) -> Optional[str]:
        code = self.body.get("errorCode") or self.body.get("code")
        return code if isinstance(code, str) else None

    @property
    def inner_error_code(self) -> Optional[str]:
        inner = self.body.get("innererror")
        if isinstance(inner, dict) and isinstance(inner.get("code"), str):
            return inner["code"]
        return None

    @property
    def data_items(self) -> Tuple[str, ...]:
        data = self.body.get("data")
        if isinstance(data, list):
            return tuple(str(item) for item in data if item)
        return ()


@dataclass(frozen=True)
class ProxyRoute:
    endpoint: ProxyEndpoint
    credentials: ProxyCredentials

    @property
    def url(self) -> str:
        return self.endpoint.url(self.credentials)


class SessionLookup(Protocol):
    async def fetch(self, session_token: str) -> Product:
        """Raises ActivationError(invalid_session | session_expired | product_not_found)."""
        ...


class CompletionReporter(Protocol):
    async def mark_activated(self, session_token: str, success: bool) -> None:
        ...


class CatalogEnricher(Protocol):
    async def enrich(self, info: ProductInfo, market: str) -> ProductInfo:
        """Never raises; returns `info` unchanged on failure."""
        ...


class AccountInfo(Protocol):
    async def region(self, account_token: Optional[str]) -> Tuple[str, str]:
        """Returns (region, market). Raises ActivationError(account_info_failed)."""
        ...


class SubscriptionLookup(Protocol):
    async def subscriptions(self, account_token: Optional[str]) -> SubscriptionStatus:
        """Raises ActivationError(subscriptions_fetch_failed)."""
        ...


class TokenCapture(Protocol):
    async def capture(self) -> str:
        """Returns a bearer token. Raises ActivationError(no_token) or ActivationCancelled."""
        ...


class Persistence(Protocol):
    async def save(self, record: ActivationRecord) -> None:
        ...


class Reachability(Protocol):
    def is_reachable(self) -> bool:
        ...


class DiagnosticsProbe(Protocol):
    async def run(self) -> DiagnosticResults:
        ...


class ConversionHandler(Protocol):
    async def convert(self, key: str, token: str, region: str) -> None:
        """Completes a subscription conversion for `key`. Raises ActivationError on failure."""
        ...


class ProxyCredentialSource(Protocol):
    async def fetch_proxy_credentials(self, session_token: Optional[str] = None) -> ProxyCredentials:
        ...


class PortalLinks(Protocol):
    async def portal_url(self, session_token: str) -> Optional[str]:
        ...


class StorefrontTransport(Protocol):
    async def token_description(
        self, key: str, market: str, token: str, proxy: Optional[ProxyRoute]
    ) -> StoreResponse:
        ...

    async def submit_order(
        self, payload: Dict[str, Any], token: str, proxy: Optional[ProxyRoute]
    ) -> StoreResponse:
        ...

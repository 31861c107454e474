"""
HTTP clients for the services the activation engine talks to.

Every client opens one httpx.AsyncClient per request with an explicit
timeout; transport failures are mapped to ActivationError kinds so the
retry executor can classify them.
"""

from activator.clients.account import AccountClient
from activator.clients.catalog import CatalogClient
from activator.clients.sessions import SessionClient
from activator.clients.storefront import StorefrontClient

__all__ = ["AccountClient", "CatalogClient", "SessionClient", "StorefrontClient"]

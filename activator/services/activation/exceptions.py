"""
Activation Service Domain Exceptions

All exceptions raised by the activation service layer. Every failure carries
a named ErrorKind so callers choose a terminal state without string matching.
"""

from enum import Enum
from typing import Optional, Sequence, Tuple


class ErrorKind(str, Enum):
    """Named failure kinds"""
    # Input / state
    INVALID_SESSION = "invalid_session"
    SESSION_EXPIRED = "session_expired"
    PRODUCT_NOT_FOUND = "product_not_found"
    INVALID_KEY = "invalid_key"
    ALREADY_REDEEMED = "already_redeemed"
    ALREADY_OWNED = "already_owned"
    KEY_STATE_INVALID = "key_state_invalid"
    VENDOR_MISMATCH = "vendor_mismatch"
    # Policy
    REGION_MISMATCH = "region_mismatch"
    REGION_RESTRICTED = "region_restricted"
    REGION_CHECK_FAILED = "region_check_failed"
    ACTIVE_SUBSCRIPTION = "active_subscription"
    UNSUPPORTED_REGION = "unsupported_region"
    # Provider responses
    CATALOG_NOT_FOUND = "catalog_not_found"
    MARKET_MISMATCH = "market_mismatch"
    VALIDATION_FAILED = "validation_failed"
    BAD_REQUEST = "bad_request"
    PRECONDITION_FAILED = "precondition_failed"
    CONVERSION_REQUIRED = "conversion_required"
    CONVERSION_TIMEOUT = "conversion_timeout"
    CONVERSION_FAILED = "conversion_failed"
    INVALID_RESPONSE = "invalid_response"
    HTTP_ERROR = "http_error"
    # Authentication
    AUTHENTICATION_FAILED = "authentication_failed"
    FORBIDDEN = "forbidden"
    PROXY_AUTHENTICATION_FAILED = "proxy_authentication_failed"
    PROXY_CREDENTIALS_FAILED = "proxy_credentials_failed"
    NO_TOKEN = "no_token"
    TOKEN_TIMEOUT = "token_timeout"
    # Collaborators
    ACCOUNT_INFO_FAILED = "account_info_failed"
    SUBSCRIPTIONS_FETCH_FAILED = "subscriptions_fetch_failed"
    # Transport
    TIMEOUT = "timeout"
    HOST_UNREACHABLE = "host_unreachable"
    CONNECTION_LOST = "connection_lost"
    DNS_FAILURE = "dns_failure"
    SERVER_ERROR = "server_error"
    GATEWAY_TIMEOUT = "gateway_timeout"
    NETWORK_ERROR = "network_error"
    MAX_RETRIES_EXCEEDED = "max_retries_exceeded"
    # Diagnostics
    COOKIES_DISABLED = "cookies_disabled"
    NOT_LOGGED_IN = "not_logged_in"
    NO_NETWORK = "no_network"
    DIAGNOSTICS_TIMEOUT = "diagnostics_timeout"
    UNKNOWN = "unknown"


_DESCRIPTIONS = {
    ErrorKind.INVALID_SESSION: "Invalid or expired session",
    ErrorKind.SESSION_EXPIRED: "Session has expired",
    ErrorKind.PRODUCT_NOT_FOUND: "Product not found",
    ErrorKind.INVALID_KEY: "Invalid product key",
    ErrorKind.ALREADY_REDEEMED: "This key has already been redeemed",
    ErrorKind.ALREADY_OWNED: "You already own this product",
    ErrorKind.KEY_STATE_INVALID: "Key is not in an active state",
    ErrorKind.VENDOR_MISMATCH: "This product is not sold through the Microsoft Store",
    ErrorKind.REGION_MISMATCH: "Account region does not match the key region",
    ErrorKind.REGION_RESTRICTED: "This key is restricted to a different region",
    ErrorKind.REGION_CHECK_FAILED: "Could not verify the account region",
    ErrorKind.ACTIVE_SUBSCRIPTION: "An active subscription already exists on this account",
    ErrorKind.UNSUPPORTED_REGION: "Region is not supported",
    ErrorKind.CATALOG_NOT_FOUND: "Product is not available in this market",
    ErrorKind.MARKET_MISMATCH: "Account market does not match the key market",
    ErrorKind.VALIDATION_FAILED: "Key validation failed",
    ErrorKind.BAD_REQUEST: "The store rejected the request",
    ErrorKind.PRECONDITION_FAILED: "The store reported an unmet precondition",
    ErrorKind.CONVERSION_REQUIRED: "Subscription conversion is required",
    ErrorKind.CONVERSION_TIMEOUT: "Subscription conversion timed out",
    ErrorKind.CONVERSION_FAILED: "Subscription conversion failed",
    ErrorKind.INVALID_RESPONSE: "Invalid response from server",
    ErrorKind.HTTP_ERROR: "Unexpected HTTP error",
    ErrorKind.AUTHENTICATION_FAILED: "Authentication failed, please sign in again",
    ErrorKind.FORBIDDEN: "Access denied",
    ErrorKind.PROXY_AUTHENTICATION_FAILED: "Proxy authentication failed",
    ErrorKind.PROXY_CREDENTIALS_FAILED: "Could not obtain proxy credentials",
    ErrorKind.NO_TOKEN: "No authentication token found, please sign in",
    ErrorKind.TOKEN_TIMEOUT: "Timed out waiting for authentication",
    ErrorKind.ACCOUNT_INFO_FAILED: "Could not load account information",
    ErrorKind.SUBSCRIPTIONS_FETCH_FAILED: "Could not load account subscriptions",
    ErrorKind.TIMEOUT: "The request timed out",
    ErrorKind.HOST_UNREACHABLE: "Could not connect to the server",
    ErrorKind.CONNECTION_LOST: "The network connection was lost",
    ErrorKind.DNS_FAILURE: "Could not resolve the server address",
    ErrorKind.SERVER_ERROR: "Server error",
    ErrorKind.GATEWAY_TIMEOUT: "Gateway timeout",
    ErrorKind.NETWORK_ERROR: "Network error",
    ErrorKind.MAX_RETRIES_EXCEEDED: "Maximum retry attempts exceeded",
    ErrorKind.COOKIES_DISABLED: "Cookies are disabled",
    ErrorKind.NOT_LOGGED_IN: "Not signed in to the store account",
    ErrorKind.NO_NETWORK: "No network connection",
    ErrorKind.DIAGNOSTICS_TIMEOUT: "Diagnostics did not finish in time",
    ErrorKind.UNKNOWN: "Unknown error",
}

# Transport-transient and server-transient kinds; everything else is fatal
RETRYABLE_KINDS = frozenset({
    ErrorKind.TIMEOUT,
    ErrorKind.HOST_UNREACHABLE,
    ErrorKind.CONNECTION_LOST,
    ErrorKind.DNS_FAILURE,
    ErrorKind.SERVER_ERROR,
    ErrorKind.GATEWAY_TIMEOUT,
})

# Credential failures; the cached credential for the scope is dropped first
AUTH_KINDS = frozenset({
    ErrorKind.AUTHENTICATION_FAILED,
    ErrorKind.FORBIDDEN,
    ErrorKind.PROXY_AUTHENTICATION_FAILED,
})


def describe(kind: ErrorKind) -> str:
    return _DESCRIPTIONS.get(kind, _DESCRIPTIONS[ErrorKind.UNKNOWN])


class ActivationServiceError(Exception):
    """Base exception for activation service errors"""
    pass


class ActivationError(ActivationServiceError):
    """Raised when a step of an activation fails with a named kind"""

    def __init__(self, kind: ErrorKind, detail: Optional[str] = None):
        self.kind = ErrorKind(kind)
        self.detail = detail
        super().__init__(self.message)

    @property
    def description(self) -> str:
        return describe(self.kind)

    @property
    def message(self) -> str:
        if self.detail:
            return f"{self.description}: {self.detail}"
        return self.description

    @property
    def is_retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    @property
    def is_auth_failure(self) -> bool:
        return self.kind in AUTH_KINDS

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.kind.value!r}, detail={self.detail!r})"


class HTTPStatusError(ActivationError):
    """Raised for provider responses identified only by status (and optional error code)"""

    def __init__(self, kind: ErrorKind, status: int, code: Optional[str] = None):
        self.status = status
        self.code = code
        detail = f"HTTP {status}" if code is None else f"HTTP {status} ({code})"
        super().__init__(kind, detail)


class AlreadyOwnedError(ActivationError):
    """Raised when the account already owns the content behind the key"""

    def __init__(self, products: Sequence[str] = ()):
        self.products: Tuple[str, ...] = tuple(products)
        super().__init__(ErrorKind.ALREADY_OWNED, ", ".join(self.products) or None)


class RegionMismatchError(ActivationError):
    """Raised when the account region differs from the key region"""

    def __init__(self, account_region: str, key_region: str):
        self.account_region = account_region
        self.key_region = key_region
        super().__init__(ErrorKind.REGION_MISMATCH, f"account {account_region}, key {key_region}")


class VendorMismatchError(ActivationError):
    """Raised when the product is sold by a vendor other than the storefront"""

    def __init__(self, vendor: str):
        self.vendor = vendor
        super().__init__(ErrorKind.VENDOR_MISMATCH, vendor)


class ActivationCancelled(ActivationServiceError):
    """Raised at a suspension point once the run has been cancelled"""

    def __init__(self, outcome=None):
        self.outcome = outcome
        super().__init__("Activation cancelled")


class InvalidTransitionError(ActivationServiceError):
    """Raised when the state machine is driven outside its transition table"""
    pass


class BundleStateError(ActivationServiceError):
    """Raised when bundle bookkeeping would break its counting rules"""
    pass

"""
Activation data model.

Payload decoding is defensive: unknown or missing fields fall back to
defaults instead of failing the activation.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from activator.core.region import is_global_region, normalize_region

DEFAULT_VENDOR = "Microsoft Store"
DIGITAL_ACCOUNT_METHODS = frozenset({"digital_account", "digital account"})
REDEEMED_STATUS_MARKERS = ("redeemed", "alreadyredeemed", "used", "invalid", "consumed", "duplicate")

# Catalog image purposes, best first
IMAGE_PURPOSE_PRIORITY = ("Poster", "BoxArt", "SuperHeroArt", "Hero", "Tile", "Logo")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into an aware datetime (UTC when naive)."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def _str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _keys(values: Iterable[Any]) -> Tuple[str, ...]:
    """Strip, drop empties and duplicates, keep first-seen order."""
    return tuple(dict.fromkeys(k for k in (_str(v) for v in values) if k))


def is_redeemed_status(status: Optional[str]) -> bool:
    """True when a session/key status string reports the key as consumed."""
    if not status:
        return False
    lowered = status.lower()
    return any(marker in lowered for marker in REDEEMED_STATUS_MARKERS)


# ====================================================================================
# PENDING ACTIVATION
# ====================================================================================

@dataclass(frozen=True)
class PendingActivation:
    """
    Immutable description of what is to be activated.

    `keys` is the canonical form; a single key is normalized to a one-element
    tuple. Construction fails when no key is present, except for
    session-backed activations whose keys arrive with the product.
    """
    region: str
    product_name: str
    keys: Tuple[str, ...] = ()
    product_image: Optional[str] = None
    vendor: Optional[str] = DEFAULT_VENDOR
    session_token: Optional[str] = None
    is_test_mode: bool = False
    activation_method: Optional[str] = None
    order_number: Optional[str] = None
    portal_url: Optional[str] = None
    product_id: Optional[str] = None
    is_subscription: bool = False

    def __post_init__(self):
        object.__setattr__(self, "keys", _keys(self.keys))
        object.__setattr__(self, "region", normalize_region(self.region) or "")
        if not self.keys and not self.session_token:
            raise ValueError("PendingActivation requires at least one key or a session token")

    @classmethod
    def create(
        cls,
        *,
        region: str,
        product_name: str,
        product_key: Optional[str] = None,
        product_keys: Optional[Sequence[str]] = None,
        **kwargs,
    ) -> "PendingActivation":
        """Build from either a single key or a key list; the list wins when both are given."""
        keys: Sequence[str] = product_keys or ([product_key] if product_key else [])
        return cls(region=region, product_name=product_name, keys=tuple(keys), **kwargs)

    @property
    def product_key(self) -> Optional[str]:
        return self.keys[0] if self.keys else None

    @property
    def is_bundle(self) -> bool:
        return len(self.keys) > 1

    @property
    def is_region_agnostic(self) -> bool:
        return is_global_region(self.region)

    @property
    def requires_digital_account(self) -> bool:
        return (self.activation_method or "").strip().lower() in DIGITAL_ACCOUNT_METHODS

    def with_product(self, product: "Product") -> "PendingActivation":
        """Merge a session product into this activation; product data wins where present."""
        return replace(
            self,
            keys=product.keys or self.keys,
            region=product.region or self.region,
            product_name=product.product_name or self.product_name,
            product_image=product.product_image or self.product_image,
            vendor=product.vendor if product.vendor is not None else self.vendor,
            activation_method=product.activation_method or self.activation_method,
            order_number=product.order_number or self.order_number,
            portal_url=product.portal_url or self.portal_url,
            product_id=product.product_id or self.product_id,
            is_subscription=self.is_subscription or product.is_game_pass,
        )


# ====================================================================================
# SESSION PRODUCT
# ====================================================================================

@dataclass(frozen=True)
class Product:
    """Product record returned by the session backend"""
    id: str
    product_name: str
    region: str
    keys: Tuple[str, ...] = ()
    product_image: Optional[str] = None
    session_token: Optional[str] = None
    vendor: Optional[str] = None
    status: Optional[str] = None
    is_game_pass: bool = False
    activation_method: Optional[str] = None
    order_number: Optional[str] = None
    portal_url: Optional[str] = None
    product_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    order_id: Optional[str] = None
    line_item_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], game_pass_ids: Sequence[str] = ()) -> "Product":
        keys = data.get("product_keys") or data.get("license_keys") or []
        if not isinstance(keys, list):
            keys = []
        single = _str(data.get("product_key")) or _str(data.get("license_key"))
        if not keys and single:
            keys = [single]
        product_id = _str(data.get("product_id"))
        return cls(
            id=str(data.get("id") or uuid.uuid4()),
            product_name=_str(data.get("product_name")) or "Unknown Product",
            region=_str(data.get("region")) or "",
            keys=_keys(keys),
            product_image=_str(data.get("product_image")),
            session_token=_str(data.get("session_token")),
            vendor=data.get("vendor") if isinstance(data.get("vendor"), str) else None,
            status=_str(data.get("status")),
            is_game_pass=bool(data.get("is_game_pass")) or (product_id in game_pass_ids),
            activation_method=_str(data.get("activation_method")),
            order_number=_str(data.get("order_number")),
            portal_url=_str(data.get("portal_url")),
            product_id=product_id,
            expires_at=parse_timestamp(data.get("expires_at")),
            order_id=_str(str(data["order_id"])) if data.get("order_id") is not None else None,
            line_item_id=_str(str(data["line_item_id"])) if data.get("line_item_id") is not None else None,
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at < (now or datetime.now(timezone.utc))


# ====================================================================================
# CATALOG / VALIDATION
# ====================================================================================

@dataclass(frozen=True)
class ProductInfo:
    """Structured view of a token description, optionally enriched from the catalog"""
    asset_id: Optional[str] = None
    product_id: Optional[str] = None
    title: Optional[str] = None
    image_url: Optional[str] = None
    token_state: Optional[str] = None

    @classmethod
    def from_token_description(cls, data: Dict[str, Any]) -> "ProductInfo":
        asset_id = _str(data.get("assetId"))
        product_id = asset_id.split("/")[0] if asset_id else None
        return cls(
            asset_id=asset_id,
            product_id=product_id or _str(data.get("productId")),
            title=_str(data.get("productTitle")) or _str(data.get("title")),
            image_url=_str(data.get("productImage")),
            token_state=_str(data.get("tokenState")),
        )


def select_image(images: Iterable[Dict[str, Any]]) -> Optional[str]:
    """Pick the best catalog image by purpose priority; protocol-relative URIs get https."""
    by_purpose: Dict[str, str] = {}
    for image in images:
        if not isinstance(image, dict):
            continue
        purpose = image.get("ImagePurpose")
        uri = _str(image.get("Uri"))
        if isinstance(purpose, str) and uri and purpose not in by_purpose:
            by_purpose[purpose] = uri
    for purpose in IMAGE_PURPOSE_PRIORITY:
        uri = by_purpose.get(purpose)
        if uri:
            return f"https:{uri}" if uri.startswith("//") else uri
    return None


@dataclass(frozen=True)
class KeyValidationResult:
    is_valid: bool
    is_already_redeemed: bool
    token_state: str
    product_info: Optional[ProductInfo] = None
    catalog_error: bool = False


@dataclass(frozen=True)
class RedeemOutcome:
    key: str
    market: str
    product_info: Optional[ProductInfo] = None
    converted: bool = False


# ====================================================================================
# ACCOUNT
# ====================================================================================

@dataclass(frozen=True)
class ActiveSubscription:
    name: str
    product_id: str
    end_date: Optional[str] = None
    days_remaining: Optional[int] = None
    has_payment_issue: bool = False
    autorenews: bool = True

    @property
    def is_expiring(self) -> bool:
        """A subscription that will lapse on its own (no renewal or failing payment)."""
        return self.has_payment_issue or not self.autorenews


@dataclass(frozen=True)
class SubscriptionStatus:
    has_active_target_subscription: bool
    snapshot: Optional[ActiveSubscription] = None


# ====================================================================================
# BUNDLES
# ====================================================================================

@dataclass(frozen=True)
class BundleProgress:
    """Immutable progress snapshot published after each bundle key"""
    total: int
    completed: int = 0
    succeeded: int = 0
    failed: int = 0
    current_key: Optional[str] = None
    current_index: Optional[int] = None

    def __post_init__(self):
        if self.completed != self.succeeded + self.failed:
            raise ValueError("completed must equal succeeded + failed")
        if not 0 <= self.completed <= self.total:
            raise ValueError("completed must be within [0, total]")

    @property
    def fraction(self) -> float:
        return self.completed / self.total if self.total else 1.0


@dataclass(frozen=True)
class KeyFailure:
    key: str
    error: str
    kind: str
    is_already_owned: bool = False
    is_already_redeemed: bool = False


@dataclass(frozen=True)
class BundleOutcome:
    succeeded: Tuple[str, ...] = ()
    failed: Tuple[KeyFailure, ...] = ()
    unattempted: Tuple[str, ...] = ()
    owned_products: Tuple[str, ...] = ()

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed) + len(self.unattempted)

    @property
    def all_succeeded(self) -> bool:
        return not self.failed and not self.unattempted and bool(self.succeeded)

    @property
    def only_duplicates_failed(self) -> bool:
        """Every failure is an already-redeemed or already-owned key."""
        return bool(self.failed) and all(f.is_already_owned or f.is_already_redeemed for f in self.failed)


# ====================================================================================
# RECORDS / DIAGNOSTICS
# ====================================================================================

@dataclass(frozen=True)
class ActivationRecord:
    """Durable outcome summary handed to persistence"""
    product_name: str
    success: bool
    session_token: Optional[str] = None
    error_message: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "product_name": self.product_name,
            "session_token": self.session_token,
            "timestamp": self.timestamp.isoformat(),
            "success": self.success,
            "error_message": self.error_message,
        }


@dataclass(frozen=True)
class DiagnosticResults:
    cookies_enabled: bool
    logged_in: bool
    network_available: bool
    account_region: Optional[str] = None
    has_game_pass: bool = False

    def blocking_issues(self) -> List[str]:
        """Names of failed checks, in the order they are reported to the user."""
        issues = []
        if not self.network_available:
            issues.append("no_network")
        if not self.cookies_enabled:
            issues.append("cookies_disabled")
        if not self.logged_in:
            issues.append("not_logged_in")
        return issues

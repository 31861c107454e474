"""
Activation entry points.

Every way an activation can start (deep link, portal link, in-app key,
test mode, redeem-page capture, external message, fully specified manual
activation) is an ActivationSource variant; resolve() turns any of them into
one canonical PendingActivation.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Union
from urllib.parse import parse_qs, urlsplit

from activator.core.structured_logger import mask_key
from activator.services.activation.models import DEFAULT_VENDOR, PendingActivation

logger = logging.getLogger(__name__)

DEFAULT_REGION = "IL"
LOADING_PRODUCT_NAME = "Loading..."
TEST_PRODUCT_NAME = "Test Product"
MANUAL_PRODUCT_NAME = "Manual Activation"
ACTIVATE_ACTION = "ACTIVATE_PRODUCT"
REDEEM_PATHS = ("/billing/redeem", "/redeem")
DEFAULT_MESSAGE_ORIGINS = ("https://exongames.co.il", "https://exon-israel.myshopify.com")


@dataclass(frozen=True)
class DeepLink:
    session_token: str


@dataclass(frozen=True)
class Portal:
    session_token: str


@dataclass(frozen=True)
class InApp:
    product_key: str
    region: str


@dataclass(frozen=True)
class TestMode:
    license: str
    region: str


@dataclass(frozen=True)
class UrlMonitorCapture:
    session_token: str


@dataclass(frozen=True)
class ExternalMessage:
    session_token: str


@dataclass(frozen=True)
class Manual:
    activation: PendingActivation


ActivationSource = Union[DeepLink, Portal, InApp, TestMode, UrlMonitorCapture, ExternalMessage, Manual]


def is_test_token(session_token: Optional[str]) -> bool:
    return bool(session_token) and "test" in session_token.lower()


def _session_activation(session_token: str, region: str, vendor: str) -> PendingActivation:
    return PendingActivation(
        region=region,
        product_name=LOADING_PRODUCT_NAME,
        vendor=vendor,
        session_token=session_token,
        is_test_mode=is_test_token(session_token),
    )


def resolve(
    source: ActivationSource,
    default_region: str = DEFAULT_REGION,
    default_vendor: str = DEFAULT_VENDOR,
) -> PendingActivation:
    """
    Normalize an entry point into a PendingActivation.

    Session-backed sources produce a placeholder whose keys, region and
    product details are filled in when the session product is fetched.

    Raises:
        ValueError: empty token or key, or an unknown source type
    """
    if isinstance(source, (DeepLink, Portal, UrlMonitorCapture, ExternalMessage)):
        if not source.session_token or not source.session_token.strip():
            raise ValueError("session token is empty")
        return _session_activation(source.session_token.strip(), default_region, default_vendor)

    if isinstance(source, InApp):
        return PendingActivation.create(
            product_key=source.product_key,
            region=source.region or default_region,
            product_name=MANUAL_PRODUCT_NAME,
            vendor=default_vendor,
        )

    if isinstance(source, TestMode):
        return PendingActivation.create(
            product_key=source.license,
            region=source.region or default_region,
            product_name=TEST_PRODUCT_NAME,
            vendor=default_vendor,
            is_test_mode=True,
        )

    if isinstance(source, Manual):
        return source.activation

    raise ValueError(f"Unknown activation source: {type(source).__name__}")


# ====================================================================================
# PARSERS
# ====================================================================================

def parse_deep_link(
    url: str,
    schemes: Sequence[str] = ("exonactivate", "exonstore"),
    portal_host: str = "portal.exongames.co.il",
) -> Optional[ActivationSource]:
    """
    Parse an activation link.

    Accepted forms:
        exonactivate://session/<token>
        exonstore://activate/<token>
        https://<portal_host>/activate/<token>

    Returns:
        DeepLink / Portal source, or None when the URL is not an activation link
    """
    parts = urlsplit(url.strip())
    segments = [s for s in parts.path.split("/") if s]

    if parts.scheme in schemes:
        expected_host = "session" if parts.scheme == "exonactivate" else "activate"
        if parts.netloc == expected_host and segments:
            return DeepLink(session_token=segments[0])
        return None

    if parts.scheme in ("http", "https") and parts.netloc == portal_host:
        if "activate" in segments:
            tokens = [s for s in segments if s != "activate"]
            if tokens:
                return Portal(session_token=tokens[0])
    return None


class UrlMonitor:
    """
    Watches storefront redeem-page URLs for activation parameters.

    Only redeem pages are considered and the same URL is never processed twice
    in a row.
    """

    def __init__(self, default_region: str = DEFAULT_REGION):
        self.default_region = default_region
        self._last_url: Optional[str] = None

    def should_process(self, url: str) -> bool:
        path = urlsplit(url).path
        if not any(p in path for p in REDEEM_PATHS):
            return False
        if url == self._last_url:
            return False
        self._last_url = url
        return True

    def extract(self, url: str) -> Optional[ActivationSource]:
        query = parse_qs(urlsplit(url).query)
        session = query.get("session", [None])[0]
        if session:
            return UrlMonitorCapture(session_token=session)
        license_key = query.get("license", [None])[0]
        if license_key:
            region = query.get("region", [self.default_region])[0] or self.default_region
            logger.info("Redeem page test activation: key=%s region=%s", mask_key(license_key), region)
            return TestMode(license=license_key, region=region)
        return None

    def observe(self, url: str) -> Optional[ActivationSource]:
        if not self.should_process(url):
            return None
        return self.extract(url)


def parse_external_message(
    origin: str,
    message: Dict[str, Any],
    allowed_origins: Sequence[str] = DEFAULT_MESSAGE_ORIGINS,
) -> Optional[ActivationSource]:
    """Accept {"action": "ACTIVATE_PRODUCT", "session_token": ...} from an allowed origin."""
    if origin not in allowed_origins:
        logger.warning("External message rejected: origin=%s", origin)
        return None
    if not isinstance(message, dict) or message.get("action") != ACTIVATE_ACTION:
        return None
    token = message.get("session_token")
    if not isinstance(token, str) or not token:
        return None
    return ExternalMessage(session_token=token)

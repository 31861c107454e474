"""
Explicit activation context.

One ActivationContext is built at process start and handed to every state
machine instance. It owns the shared CredentialCache and RetryExecutor and
the collaborator implementations; aclose() releases them at shutdown.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Tuple

from activator.core.credential_cache import CredentialCache
from activator.services.activation.collaborators import (
    AccountInfo,
    CatalogEnricher,
    CompletionReporter,
    ConversionHandler,
    DiagnosticsProbe,
    Persistence,
    PortalLinks,
    ProxyCredentialSource,
    Reachability,
    SessionLookup,
    StorefrontTransport,
    SubscriptionLookup,
    TokenCapture,
)
from activator.services.activation.models import DEFAULT_VENDOR
from activator.services.activation.sources import DEFAULT_MESSAGE_ORIGINS
from activator.utils.retry import RetryExecutor, RetryPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActivationSettings:
    """Tunables of one process, snapshotted from config once."""
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    token_timeout: float = 30.0
    conversion_timeout: float = 30.0
    diagnostics_timeout: float = 15.0
    bundle_key_delay: float = 3.0
    token_cache_seconds: float = 3600.0
    proxy_credentials_ttl: float = 3600.0
    default_region: str = "IL"
    default_vendor: str = DEFAULT_VENDOR
    accepted_vendors: Tuple[str, ...] = ("Microsoft Store", "Xbox", "Microsoft", "Xbox Game Pass")
    game_pass_product_ids: Tuple[str, ...] = ("CFQ7TTC0K5DJ", "CFQ7TTC0KHS0")
    allowed_message_origins: Tuple[str, ...] = DEFAULT_MESSAGE_ORIGINS

    @classmethod
    def from_config(cls) -> "ActivationSettings":
        import config

        return cls(
            retry_policy=RetryPolicy(
                max_attempts=config.RETRY_MAX_ATTEMPTS,
                initial_delay=config.RETRY_INITIAL_DELAY,
                max_delay=config.RETRY_MAX_DELAY,
            ),
            token_timeout=config.TOKEN_CAPTURE_TIMEOUT,
            conversion_timeout=config.CONVERSION_TIMEOUT,
            diagnostics_timeout=config.DIAGNOSTICS_TIMEOUT,
            bundle_key_delay=config.BUNDLE_KEY_DELAY,
            token_cache_seconds=config.TOKEN_CACHE_SECONDS,
            proxy_credentials_ttl=config.PROXY_CREDENTIALS_TTL,
            default_region=config.DEFAULT_REGION,
            default_vendor=config.DEFAULT_VENDOR,
            accepted_vendors=tuple(config.ACCEPTED_VENDORS),
            game_pass_product_ids=tuple(config.GAME_PASS_PRODUCT_IDS),
            allowed_message_origins=tuple(config.ALLOWED_MESSAGE_ORIGINS),
        )


@dataclass
class ActivationContext:
    storefront: StorefrontTransport
    settings: ActivationSettings = field(default_factory=ActivationSettings)
    cache: CredentialCache = field(default_factory=CredentialCache)
    retry: Optional[RetryExecutor] = None
    sessions: Optional[SessionLookup] = None
    reporter: Optional[CompletionReporter] = None
    catalog: Optional[CatalogEnricher] = None
    account: Optional[AccountInfo] = None
    subscriptions: Optional[SubscriptionLookup] = None
    token_capture: Optional[TokenCapture] = None
    persistence: Optional[Persistence] = None
    reachability: Optional[Reachability] = None
    diagnostics: Optional[DiagnosticsProbe] = None
    conversion: Optional[ConversionHandler] = None
    proxy_source: Optional[ProxyCredentialSource] = None
    portal_links: Optional[PortalLinks] = None
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep

    def __post_init__(self):
        if self.retry is None:
            self.retry = RetryExecutor(self.settings.retry_policy, sleep=self.sleep)

    def is_reachable(self) -> bool:
        if self.reachability is None:
            return True
        return self.reachability.is_reachable()

    async def aclose(self) -> None:
        """Close every collaborator exposing aclose(), each at most once."""
        seen = set()
        for name in (
            "storefront", "sessions", "reporter", "catalog", "account",
            "subscriptions", "token_capture", "persistence", "diagnostics",
            "conversion", "proxy_source", "portal_links",
        ):
            collaborator = getattr(self, name)
            closer = getattr(collaborator, "aclose", None)
            if collaborator is None or closer is None or id(collaborator) in seen:
                continue
            seen.add(id(collaborator))
            try:
                await closer()
            except Exception as e:
                logger.warning("Failed to close %s: %s", name, e)
        self.cache.clear()

"""
Key redemption against the storefront purchase API.

Flow for one key:
1. route: global keys go to the US market directly; regional keys go through
   the region's proxy with cached proxy credentials
2. validate: token description lookup, interpreted into KeyValidationResult
3. submit: order creation with an order id fixed for all transport retries
4. enrich: best-effort catalog lookup for title and image

A regional key whose product is missing from the regional catalog, or whose
market the account rejects, is tried once more in the US market.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from activator.core.credential_cache import BEARER_SCOPE, PROXY_SCOPE, CredentialCache
from activator.core.proxy import ProxyCredentials, proxy_for_region
from activator.core.region import GLOBAL_MARKET, is_global_region, normalize_region
from activator.core.structured_logger import mask_key
from activator.services.activation.collaborators import (
    CatalogEnricher,
    ConversionHandler,
    ProxyCredentialSource,
    ProxyRoute,
    StoreResponse,
    StorefrontTransport,
)
from activator.services.activation.exceptions import (
    ActivationError,
    AlreadyOwnedError,
    ErrorKind,
    HTTPStatusError,
)
from activator.services.activation.models import (
    KeyValidationResult,
    ProductInfo,
    RedeemOutcome,
    is_redeemed_status,
)
from activator.utils.retry import RetryExecutor

logger = logging.getLogger(__name__)

ACTIVE_TOKEN_STATE = "Active"
LANGUAGE = "en-US"
CLIENT_NAME = "AccountMicrosoftCom"

# Kinds that send a regional key to the US market for a second try
MARKET_FALLBACK_KINDS = frozenset({ErrorKind.CATALOG_NOT_FOUND, ErrorKind.MARKET_MISMATCH})


@dataclass(frozen=True)
class AuthContext:
    """Bearer token for the storefront, the region the key belongs to and the run's session."""
    token: str
    region: str
    account_region: Optional[str] = None
    session_token: Optional[str] = None


def _server_error(status: int) -> HTTPStatusError:
    if status == 504:
        return HTTPStatusError(ErrorKind.GATEWAY_TIMEOUT, status)
    return HTTPStatusError(ErrorKind.SERVER_ERROR, status)


def interpret_validation(response: StoreResponse) -> KeyValidationResult:
    """
    Interpret a token description response.

    Raises:
        ActivationError: invalid_key, authentication_failed,
            proxy_authentication_failed, validation_failed, server_error,
            gateway_timeout
    """
    status = response.status
    if status == 200:
        token_state = response.body.get("tokenState")
        if not isinstance(token_state, str):
            token_state = ""
        info = ProductInfo.from_token_description(response.body)
        if token_state == ACTIVE_TOKEN_STATE:
            return KeyValidationResult(True, False, token_state, info)
        return KeyValidationResult(False, is_redeemed_status(token_state), token_state, info)
    if status == 400:
        if response.inner_error_code == "CatalogSkuDataNotFound":
            return KeyValidationResult(False, False, "", None, catalog_error=True)
        raise HTTPStatusError(ErrorKind.VALIDATION_FAILED, status, response.error_code)
    if status == 401:
        raise ActivationError(ErrorKind.AUTHENTICATION_FAILED)
    if status == 403:
        raise ActivationError(ErrorKind.FORBIDDEN)
    if status == 404:
        raise ActivationError(ErrorKind.INVALID_KEY)
    if status == 407:
        raise ActivationError(ErrorKind.PROXY_AUTHENTICATION_FAILED)
    if status >= 500:
        raise _server_error(status)
    raise HTTPStatusError(ErrorKind.VALIDATION_FAILED, status)


def interpret_order(response: StoreResponse) -> None:
    """
    Interpret an order submission response; returns on 200/201.

    Raises:
        ActivationError with the kind matching the provider's status and error codes
    """
    status = response.status
    if status in (200, 201):
        return
    if status == 412:
        if response.inner_error_code == "ConversionConsentRequired":
            raise ActivationError(ErrorKind.CONVERSION_REQUIRED)
        raise HTTPStatusError(ErrorKind.PRECONDITION_FAILED, status)
    if status == 403:
        if response.inner_error_code == "ActiveMarketMismatch":
            raise ActivationError(ErrorKind.MARKET_MISMATCH)
        if response.error_code == "UserAlreadyOwnsContent":
            raise AlreadyOwnedError(response.data_items)
        raise ActivationError(ErrorKind.FORBIDDEN)
    if status == 400:
        code = response.error_code
        if code == "TokenAlreadyRedeemed":
            raise ActivationError(ErrorKind.ALREADY_REDEEMED)
        if code == "InvalidToken":
            raise ActivationError(ErrorKind.INVALID_KEY)
        if code == "UserAlreadyOwnsContent":
            raise AlreadyOwnedError(response.data_items)
        if code == "RegionRestricted":
            raise ActivationError(ErrorKind.REGION_RESTRICTED)
        raise HTTPStatusError(ErrorKind.BAD_REQUEST, status, code or "Unknown")
    if status == 401:
        raise ActivationError(ErrorKind.AUTHENTICATION_FAILED)
    if status == 404:
        raise ActivationError(ErrorKind.INVALID_KEY)
    if status == 407:
        raise ActivationError(ErrorKind.PROXY_AUTHENTICATION_FAILED)
    if status >= 500:
        raise _server_error(status)
    raise HTTPStatusError(ErrorKind.HTTP_ERROR, status)


def build_order_payload(key: str, market: str, order_id: str) -> Dict[str, Any]:
    return {
        "orderId": order_id,
        "orderState": "Purchased",
        "billingInformation": {
            "sessionId": str(uuid.uuid4()),
            "paymentInstrumentType": "Token",
            "paymentInstrumentId": key,
        },
        "friendlyName": None,
        "clientContext": {
            "client": CLIENT_NAME,
            "deviceFamily": "desktop",
            "clientVersion": "1.0",
        },
        "language": LANGUAGE,
        "market": market,
        "orderAdditionalMetadata": None,
    }


class KeyRedeemer:
    """
    Validates and redeems single keys.

    Args:
        transport: Storefront HTTP collaborator
        retry: Executor wrapping each network call
        cache: Credential cache (proxy credentials, bearer token scopes)
        proxy_source: Proxy credential service; None redeems regional keys directly
        catalog: Optional catalog enrichment
        conversion: Optional subscription conversion collaborator
        proxy_ttl: Lifetime assumed for proxy credentials without expires_at
        conversion_timeout: Upper bound on one conversion, seconds
    """

    def __init__(
        self,
        transport: StorefrontTransport,
        retry: RetryExecutor,
        cache: CredentialCache,
        *,
        proxy_source: Optional[ProxyCredentialSource] = None,
        catalog: Optional[CatalogEnricher] = None,
        conversion: Optional[ConversionHandler] = None,
        proxy_ttl: float = 3600.0,
        conversion_timeout: float = 30.0,
    ):
        self.transport = transport
        self.retry = retry
        self.cache = cache
        self.proxy_source = proxy_source
        self.catalog = catalog
        self.conversion = conversion
        self.proxy_ttl = proxy_ttl
        self.conversion_timeout = conversion_timeout

    # ====================================================================================
    # ROUTING
    # ====================================================================================

    async def _proxy_credentials(self, session_token: Optional[str]) -> ProxyCredentials:
        async def refresh() -> Tuple[ProxyCredentials, float]:
            credentials = await self.proxy_source.fetch_proxy_credentials(session_token)
            ttl = credentials.seconds_left()
            return credentials, ttl if ttl > 0 else self.proxy_ttl

        return await self.cache.get_or_refresh(PROXY_SCOPE, refresh)

    async def route(
        self, region: str, cancellation=None, session_token: Optional[str] = None
    ) -> Tuple[str, Optional[ProxyRoute]]:
        """
        Resolve (market, proxy) for a key region.

        Raises:
            ActivationError(unsupported_region) when no proxy serves the region
        """
        if is_global_region(region):
            return GLOBAL_MARKET, None
        endpoint = proxy_for_region(region)
        if endpoint is None:
            raise ActivationError(ErrorKind.UNSUPPORTED_REGION, normalize_region(region))
        if self.proxy_source is None:
            return endpoint.market, None
        credentials = await self.retry.run(lambda: self._proxy_credentials(session_token), cancellation=cancellation)
        return endpoint.market, ProxyRoute(endpoint, credentials)

    def _drop_credentials(self, error: ActivationError) -> None:
        if error.kind == ErrorKind.PROXY_AUTHENTICATION_FAILED:
            self.cache.invalidate(PROXY_SCOPE)
        elif error.is_auth_failure:
            self.cache.invalidate(BEARER_SCOPE)

    # ====================================================================================
    # VALIDATION
    # ====================================================================================

    async def _validate_in_market(
        self,
        key: str,
        market: str,
        auth: AuthContext,
        proxy: Optional[ProxyRoute],
        cancellation=None,
    ) -> KeyValidationResult:
        async def attempt() -> KeyValidationResult:
            response = await self.transport.token_description(key, market, auth.token, proxy)
            return interpret_validation(response)

        try:
            return await self.retry.run(attempt, cancellation=cancellation)
        except ActivationError as e:
            self._drop_credentials(e)
            raise

    async def validate(self, key: str, region: str, auth: AuthContext, cancellation=None) -> KeyValidationResult:
        """Validate `key` in the market of `region` without redeeming it."""
        market, proxy = await self.route(region, cancellation, auth.session_token)
        return await self._validate_in_market(key, market, auth, proxy, cancellation)

    # ====================================================================================
    # REDEMPTION
    # ====================================================================================

    async def _redeem_in_market(
        self,
        key: str,
        market: str,
        auth: AuthContext,
        proxy: Optional[ProxyRoute],
        cancellation=None,
    ) -> RedeemOutcome:
        validation = await self._validate_in_market(key, market, auth, proxy, cancellation)
        if validation.catalog_error:
            raise ActivationError(ErrorKind.CATALOG_NOT_FOUND, market)
        if validation.is_already_redeemed:
            raise ActivationError(ErrorKind.ALREADY_REDEEMED)
        if not validation.is_valid:
            raise ActivationError(ErrorKind.KEY_STATE_INVALID, validation.token_state or None)

        if cancellation is not None:
            cancellation.raise_if_cancelled()

        payload = build_order_payload(key, market, str(uuid.uuid4()))

        async def attempt() -> None:
            response = await self.transport.submit_order(payload, auth.token, proxy)
            interpret_order(response)

        try:
            await self.retry.run(attempt, cancellation=cancellation)
        except ActivationError as e:
            self._drop_credentials(e)
            raise

        info = validation.product_info or ProductInfo()
        return RedeemOutcome(key=key, market=market, product_info=await self._enrich(info, market))

    async def redeem(self, key: str, auth: AuthContext, cancellation=None) -> RedeemOutcome:
        """
        Redeem one key in the region carried by `auth`.

        Returns:
            RedeemOutcome with enriched product metadata

        Raises:
            ActivationError: invalid_key, already_redeemed, already_owned,
                region_restricted, authentication_failed, forbidden,
                conversion_required, unsupported_region, transport kinds
        """
        market, proxy = await self.route(auth.region, cancellation, auth.session_token)
        markets = [market]
        if not is_global_region(auth.region) and market != GLOBAL_MARKET:
            markets.append(GLOBAL_MARKET)

        for index, current in enumerate(markets):
            try:
                outcome = await self._redeem_in_market(key, current, auth, proxy, cancellation)
                logger.info("Key redeemed: key=%s market=%s", mask_key(key), current)
                return outcome
            except ActivationError as e:
                has_fallback = index + 1 < len(markets)
                if e.kind in MARKET_FALLBACK_KINDS and has_fallback:
                    logger.info(
                        "Key redeem in market=%s failed with %s, retrying in %s",
                        current, e.kind.value, markets[index + 1],
                    )
                    continue
                if e.kind == ErrorKind.MARKET_MISMATCH:
                    raise ActivationError(ErrorKind.REGION_RESTRICTED, current) from e
                raise

        raise ActivationError(ErrorKind.UNKNOWN)

    async def convert(self, key: str, auth: AuthContext, cancellation=None) -> None:
        """
        Complete a subscription conversion for `key` within the conversion timeout.

        Raises:
            ActivationError: conversion_timeout, conversion_failed
        """
        if self.conversion is None:
            raise ActivationError(ErrorKind.CONVERSION_FAILED, "no conversion handler configured")
        try:
            if cancellation is not None:
                await cancellation.guard(
                    self.conversion.convert(key, auth.token, auth.region),
                    timeout=self.conversion_timeout,
                )
            else:
                await asyncio.wait_for(
                    self.conversion.convert(key, auth.token, auth.region),
                    timeout=self.conversion_timeout,
                )
        except asyncio.TimeoutError:
            raise ActivationError(ErrorKind.CONVERSION_TIMEOUT)
        logger.info("Conversion completed: key=%s", mask_key(key))

    async def _enrich(self, info: ProductInfo, market: str) -> ProductInfo:
        if self.catalog is None or not info.product_id:
            return info
        try:
            return await self.catalog.enrich(info, market)
        except Exception as e:
            logger.warning("Catalog enrichment failed: product_id=%s error=%s", info.product_id, type(e).__name__)
            return info

"""
Account gate: region compatibility and subscription-conflict checks.

The checks short-circuit on the first block:
1. account region lookup (retried); failure blocks with region_check_failed
2. region comparison, skipped for region-agnostic products
3. for subscription products, active subscription lookup (retried)
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union

from activator.core.region import is_global_region, normalize_region
from activator.services.activation.collaborators import AccountInfo, SubscriptionLookup
from activator.services.activation.exceptions import ActivationError, ErrorKind
from activator.services.activation.models import ActiveSubscription
from activator.utils.retry import TRANSIENT_EXCEPTIONS, RetryExecutor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Proceed:
    account_region: Optional[str] = None
    market: Optional[str] = None


@dataclass(frozen=True)
class Blocked:
    reason: ErrorKind
    account_region: Optional[str] = None
    key_region: Optional[str] = None
    subscription: Optional[ActiveSubscription] = None
    detail: Optional[str] = None


GateDecision = Union[Proceed, Blocked]

LOOKUP_ERRORS = (ActivationError,) + TRANSIENT_EXCEPTIONS


def _describe(error: BaseException) -> str:
    if isinstance(error, ActivationError):
        return error.kind.value
    return type(error).__name__


class AccountGate:
    def __init__(
        self,
        account_info: AccountInfo,
        subscriptions: Optional[SubscriptionLookup],
        retry: RetryExecutor,
    ):
        self.account_info = account_info
        self.subscriptions = subscriptions
        self.retry = retry

    async def check(
        self,
        account_token: Optional[str],
        target_region: str,
        is_subscription: bool,
        *,
        region_agnostic: Optional[bool] = None,
        cancellation=None,
    ) -> GateDecision:
        """
        Decide whether the account may receive the product.

        Args:
            account_token: Account session credential (None for the ambient session)
            target_region: Region of the key
            is_subscription: Product is a subscription (e.g. Game Pass)
            region_agnostic: Overrides global-region detection on target_region
            cancellation: Optional cancellation token, honoured between retries

        Returns:
            Proceed or Blocked; never raises for collaborator failures
        """
        if region_agnostic is None:
            region_agnostic = is_global_region(target_region)

        try:
            account_region, market = await self.retry.run(
                lambda: self.account_info.region(account_token),
                cancellation=cancellation,
            )
        except LOOKUP_ERRORS as e:
            logger.warning("Account region lookup failed: %s", _describe(e))
            return Blocked(ErrorKind.REGION_CHECK_FAILED, key_region=target_region, detail=str(e))

        account_code = normalize_region(account_region)
        key_code = normalize_region(target_region)
        if not region_agnostic and account_code != key_code:
            logger.info("Region mismatch: account=%s key=%s", account_code, key_code)
            return Blocked(
                ErrorKind.REGION_MISMATCH,
                account_region=account_code,
                key_region=key_code,
            )

        if is_subscription and self.subscriptions is not None:
            try:
                status = await self.retry.run(
                    lambda: self.subscriptions.subscriptions(account_token),
                    cancellation=cancellation,
                )
            except LOOKUP_ERRORS as e:
                logger.warning("Subscription lookup failed: %s", _describe(e))
                return Blocked(ErrorKind.SUBSCRIPTIONS_FETCH_FAILED, account_region=account_code, detail=str(e))

            snapshot = status.snapshot
            if status.has_active_target_subscription and snapshot is not None and not snapshot.is_expiring:
                logger.info("Active subscription conflict: product_id=%s", snapshot.product_id)
                return Blocked(
                    ErrorKind.ACTIVE_SUBSCRIPTION,
                    account_region=account_code,
                    subscription=snapshot,
                )

        return Proceed(account_region=account_code, market=market)

"""
Store account client: account region and active subscriptions.
"""

import logging
from typing import Any, Dict, Optional, Sequence, Tuple

import httpx

from activator.clients.base import BaseClient, decode_json
from activator.services.activation.exceptions import ActivationError, ErrorKind
from activator.services.activation.models import ActiveSubscription, SubscriptionStatus

logger = logging.getLogger(__name__)

DEFAULT_ACCOUNT_URL = "https://account.microsoft.com"
PERSONAL_INFO_PATH = "/profile/api/v1/personal-info"
SUBSCRIPTIONS_PATH = "/services/api/subscriptions-and-alerts"
FALLBACK_REGION = "US"
DEFAULT_SUBSCRIPTION_NAME = "Game Pass"
# billingState reported for a subscription whose last charge failed
BILLING_STATE_PAYMENT_ISSUE = 3


def parse_subscription(item: Dict[str, Any]) -> ActiveSubscription:
    payment = item.get("payment") if isinstance(item.get("payment"), dict) else {}
    autorenews = item.get("autorenews") is not False and item.get("autoRenew") is not False
    has_payment_issue = (
        item.get("billingState") == BILLING_STATE_PAYMENT_ISSUE
        or not autorenews
        or payment.get("valid") is False
    )
    days = item.get("daysRemaining")
    return ActiveSubscription(
        name=item.get("name") or item.get("productName") or DEFAULT_SUBSCRIPTION_NAME,
        product_id=str(item.get("productId") or ""),
        end_date=item.get("endDate") or item.get("nextBillingDate"),
        days_remaining=days if isinstance(days, int) else None,
        has_payment_issue=has_payment_issue,
        autorenews=autorenews,
    )


class AccountClient(BaseClient):
    """
    Args:
        base_url: Account site root
        game_pass_ids: Product ids that count as a target subscription
    """

    def __init__(
        self,
        base_url: str = DEFAULT_ACCOUNT_URL,
        *,
        game_pass_ids: Sequence[str] = (),
        timeout: Optional[httpx.Timeout] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(base_url, timeout=timeout, transport=transport)
        self.game_pass_ids = frozenset(game_pass_ids)

    def _headers(self, account_token: Optional[str]) -> Dict[str, str]:
        headers = {"X-Requested-With": "XMLHttpRequest", "Accept": "application/json"}
        if account_token:
            headers["Authorization"] = f"Bearer {account_token}"
        return headers

    async def region(self, account_token: Optional[str]) -> Tuple[str, str]:
        """
        Returns:
            (region, market) of the signed-in account

        Raises:
            ActivationError(account_info_failed) or a transport kind
        """
        response = await self.request("GET", self.url(PERSONAL_INFO_PATH), headers=self._headers(account_token))
        if response.status_code >= 500:
            raise ActivationError(ErrorKind.SERVER_ERROR, f"HTTP {response.status_code}")
        data = decode_json(response)
        if response.status_code != 200 or not isinstance(data, dict):
            raise ActivationError(ErrorKind.ACCOUNT_INFO_FAILED, f"HTTP {response.status_code}")
        region = data.get("region") or data.get("country") or FALLBACK_REGION
        market = data.get("market") or region
        return str(region).upper(), str(market).upper()

    async def subscriptions(self, account_token: Optional[str]) -> SubscriptionStatus:
        """
        Raises:
            ActivationError(subscriptions_fetch_failed) or a transport kind
        """
        response = await self.request(
            "GET",
            self.url(SUBSCRIPTIONS_PATH),
            headers=self._headers(account_token),
            params={"excludeWindowsStoreInstallOptions": "false", "excludeLegacySubscriptions": "false"},
        )
        if response.status_code >= 500:
            raise ActivationError(ErrorKind.SERVER_ERROR, f"HTTP {response.status_code}")
        data = decode_json(response)
        if response.status_code != 200 or not isinstance(data, dict):
            raise ActivationError(ErrorKind.SUBSCRIPTIONS_FETCH_FAILED, f"HTTP {response.status_code}")

        active = data.get("active") if isinstance(data.get("active"), list) else []
        for item in active:
            if isinstance(item, dict) and str(item.get("productId") or "") in self.game_pass_ids:
                subscription = parse_subscription(item)
                logger.info(
                    "Active subscription found: product_id=%s expiring=%s",
                    subscription.product_id, subscription.is_expiring,
                )
                return SubscriptionStatus(True, subscription)
        return SubscriptionStatus(False)

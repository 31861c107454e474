"""
Unit tests for the account gate.
"""
import pytest

from conftest import FakeAccount
from activator.services.activation.exceptions import ActivationError, ErrorKind
from activator.services.activation.gate import AccountGate, Blocked, Proceed
from activator.services.activation.models import ActiveSubscription, SubscriptionStatus
from activator.utils.retry import RetryExecutor, RetryPolicy


@pytest.fixture
def retry(recording_sleep):
    return RetryExecutor(RetryPolicy(max_attempts=3), sleep=recording_sleep)


def active(**overrides):
    values = {"name": "Game Pass Ultimate", "product_id": "CFQ7TTC0KHS0"}
    values.update(overrides)
    return SubscriptionStatus(True, ActiveSubscription(**values))


class TestRegionCheck:
    """Tests for the region comparison"""

    @pytest.mark.asyncio
    async def test_matching_region_proceeds(self, retry):
        """Same region passes the gate"""
        gate = AccountGate(FakeAccount(("IL", "IL")), None, retry)
        decision = await gate.check(None, "Israel", is_subscription=False)
        assert decision == Proceed(account_region="IL", market="IL")

    @pytest.mark.asyncio
    async def test_mismatch_blocks_with_codes(self, retry):
        """Different regions block with both normalized codes"""
        gate = AccountGate(FakeAccount(("US", "US")), None, retry)
        decision = await gate.check(None, "IL", is_subscription=False)
        assert isinstance(decision, Blocked)
        assert decision.reason == ErrorKind.REGION_MISMATCH
        assert (decision.account_region, decision.key_region) == ("US", "IL")

    @pytest.mark.asyncio
    async def test_global_key_skips_comparison(self, retry):
        """Region-agnostic keys pass regardless of account region"""
        gate = AccountGate(FakeAccount(("BR", "BR")), None, retry)
        assert isinstance(await gate.check(None, "GLOBAL", is_subscription=False), Proceed)

    @pytest.mark.asyncio
    async def test_lookup_failure_blocks(self, retry, recording_sleep):
        """A failing region lookup is retried, then blocks with region_check_failed"""
        account = FakeAccount(ActivationError(ErrorKind.SERVER_ERROR))
        gate = AccountGate(account, None, retry)
        decision = await gate.check(None, "IL", is_subscription=False)
        assert isinstance(decision, Blocked)
        assert decision.reason == ErrorKind.REGION_CHECK_FAILED
        assert account.region_calls == 3
        assert len(recording_sleep.delays) == 2


class TestSubscriptionCheck:
    """Tests for the subscription conflict check"""

    @pytest.mark.asyncio
    async def test_active_subscription_blocks(self, retry):
        """A healthy active subscription blocks a subscription product"""
        gate = AccountGate(FakeAccount(("IL", "IL"), active()), FakeAccount(("IL", "IL"), active()), retry)
        decision = await gate.check(None, "IL", is_subscription=True)
        assert isinstance(decision, Blocked)
        assert decision.reason == ErrorKind.ACTIVE_SUBSCRIPTION
        assert decision.subscription.name == "Game Pass Ultimate"

    @pytest.mark.asyncio
    async def test_expiring_subscription_allowed(self, retry):
        """A subscription with a payment issue does not block"""
        lookup = FakeAccount(subscriptions=active(has_payment_issue=True))
        gate = AccountGate(FakeAccount(("IL", "IL")), lookup, retry)
        assert isinstance(await gate.check(None, "IL", is_subscription=True), Proceed)

    @pytest.mark.asyncio
    async def test_non_renewing_subscription_allowed(self, retry):
        """A subscription that will not renew does not block"""
        lookup = FakeAccount(subscriptions=active(autorenews=False))
        gate = AccountGate(FakeAccount(("IL", "IL")), lookup, retry)
        assert isinstance(await gate.check(None, "IL", is_subscription=True), Proceed)

    @pytest.mark.asyncio
    async def test_not_checked_for_regular_products(self, retry):
        """Subscriptions are only queried for subscription products"""
        lookup = FakeAccount(subscriptions=active())
        gate = AccountGate(FakeAccount(("IL", "IL")), lookup, retry)
        assert isinstance(await gate.check(None, "IL", is_subscription=False), Proceed)
        assert lookup.subscription_calls == 0

    @pytest.mark.asyncio
    async def test_region_mismatch_short_circuits(self, retry):
        """A region block is returned before subscriptions are queried"""
        lookup = FakeAccount(subscriptions=active())
        gate = AccountGate(FakeAccount(("US", "US")), lookup, retry)
        decision = await gate.check(None, "IL", is_subscription=True)
        assert decision.reason == ErrorKind.REGION_MISMATCH
        assert lookup.subscription_calls == 0

    @pytest.mark.asyncio
    async def test_subscription_lookup_failure_blocks(self, retry):
        """A fatal subscription lookup error blocks with subscriptions_fetch_failed"""
        lookup = FakeAccount(subscriptions=ActivationError(ErrorKind.SUBSCRIPTIONS_FETCH_FAILED))
        gate = AccountGate(FakeAccount(("IL", "IL")), lookup, retry)
        decision = await gate.check(None, "IL", is_subscription=True)
        assert decision.reason == ErrorKind.SUBSCRIPTIONS_FETCH_FAILED
        assert lookup.subscription_calls == 1

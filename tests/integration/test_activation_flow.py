"""
End-to-end activation flows over in-memory collaborators.

Tests:
1. Single valid key, matching region, no subscription conflict → success
2. Bundle of three keys, second already redeemed → partial success
3. Account region DE, key region US → region mismatch, nothing redeemed
4. Token capture never resolves → token timeout after the configured wait
"""
import time
from dataclasses import replace

import pytest

from conftest import FakeAccount, FakeTokenCapture
from activator.services.activation.collaborators import StoreResponse
from activator.services.activation.exceptions import ErrorKind
from activator.services.activation.models import PendingActivation, SubscriptionStatus
from activator.services.activation.service import ActivationStateMachine
from activator.services.activation.states import Failed, PartialSuccess, RegionMismatch, Success
from activator.utils.retry import RetryPolicy

KEY = "AAAAA-BBBBB-CCCCC-DDDDD-EEEEE"


class TestSingleKeySuccess:
    """Scenario 1"""

    @pytest.mark.asyncio
    async def test_single_key_success(self, make_context, storefront, persistence):
        """A valid key in the account's region is redeemed"""
        account = FakeAccount(("US", "US"), SubscriptionStatus(False))
        context = make_context(account=account, subscriptions=account)
        activation = PendingActivation.create(product_key=KEY, region="US", product_name="Forza Horizon 5")

        final = await ActivationStateMachine(context, activation).run()

        assert final == Success(product_name="Forza Horizon 5", keys=(KEY,))
        assert storefront.order_keys() == [KEY]
        assert persistence.records[0].success is True


class TestBundlePartialSuccess:
    """Scenario 2"""

    @pytest.mark.asyncio
    async def test_second_key_already_redeemed(self, make_context, storefront):
        """The redeemed key is reported and the other two succeed"""
        keys = ["KEY01-AAAAA", "KEY02-BBBBB", "KEY03-CCCCC"]
        storefront.on_description(keys[1], StoreResponse(200, {"tokenState": "Redeemed"}))
        activation = PendingActivation.create(product_keys=keys, region="US", product_name="Bundle")

        final = await ActivationStateMachine(make_context(), activation).run()

        assert isinstance(final, PartialSuccess)
        assert (final.succeeded, final.total) == (2, 3)
        assert len(final.failed) == 1
        failure = final.failed[0]
        assert failure.key == keys[1]
        assert failure.kind == "already_redeemed"
        assert failure.is_already_redeemed is True
        assert storefront.order_keys() == [keys[0], keys[2]]


class TestRegionMismatch:
    """Scenario 3"""

    @pytest.mark.asyncio
    async def test_region_mismatch_blocks_redemption(self, make_context, storefront):
        """No storefront call is made for a key from another region"""
        context = make_context(account=FakeAccount(("DE", "DE")))
        activation = PendingActivation.create(product_key=KEY, region="US", product_name="Game")

        final = await ActivationStateMachine(context, activation).run()

        assert final == RegionMismatch(account_region="DE", key_region="US")
        assert storefront.calls == []


class TestTokenTimeout:
    """Scenario 4"""

    @pytest.mark.asyncio
    async def test_token_capture_times_out(self, make_context, settings):
        """The run fails with token_timeout once the capture window elapses"""
        timeout = 0.2
        settings = replace(settings, token_timeout=timeout, retry_policy=RetryPolicy(max_attempts=10))
        context = make_context(settings=settings, token_capture=FakeTokenCapture(hang=True))
        activation = PendingActivation.create(product_key=KEY, region="US", product_name="Game")

        started = time.monotonic()
        final = await ActivationStateMachine(context, activation).run()
        elapsed = time.monotonic() - started

        assert isinstance(final, Failed)
        assert final.kind == ErrorKind.TOKEN_TIMEOUT
        assert timeout <= elapsed < timeout + 0.5

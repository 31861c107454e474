"""
Tests for the account and catalog clients.
"""
import httpx
import pytest

from activator.clients.account import AccountClient
from activator.clients.catalog import CatalogClient
from activator.services.activation.exceptions import ActivationError, ErrorKind
from activator.services.activation.models import ProductInfo

GAME_PASS = "CFQ7TTC0KHS0"


def account_for(handler) -> AccountClient:
    return AccountClient("https://account.test", game_pass_ids=[GAME_PASS], transport=httpx.MockTransport(handler))


class TestAccountRegion:
    @pytest.mark.asyncio
    async def test_region_and_market(self):
        region = await account_for(lambda r: httpx.Response(200, json={"region": "il", "market": "IL"})).region("t")
        assert region == ("IL", "IL")

    @pytest.mark.asyncio
    async def test_country_fallback(self):
        """country is used when region is absent; market defaults to region"""
        assert await account_for(lambda r: httpx.Response(200, json={"country": "TR"})).region(None) == ("TR", "TR")

    @pytest.mark.asyncio
    async def test_failure(self):
        with pytest.raises(ActivationError) as exc:
            await account_for(lambda r: httpx.Response(401)).region("t")
        assert exc.value.kind == ErrorKind.ACCOUNT_INFO_FAILED


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_active_game_pass(self):
        body = {"active": [
            {"productId": "OTHER"},
            {"productId": GAME_PASS, "name": "Game Pass Ultimate", "autorenews": True, "billingState": 1},
        ]}
        status = await account_for(lambda r: httpx.Response(200, json=body)).subscriptions("t")
        assert status.has_active_target_subscription is True
        assert status.snapshot.name == "Game Pass Ultimate"
        assert status.snapshot.is_expiring is False

    @pytest.mark.asyncio
    async def test_payment_issue(self):
        body = {"active": [{"productId": GAME_PASS, "billingState": 3}]}
        status = await account_for(lambda r: httpx.Response(200, json=body)).subscriptions("t")
        assert status.snapshot.has_payment_issue is True
        assert status.snapshot.name == "Game Pass"

    @pytest.mark.asyncio
    async def test_none_active(self):
        status = await account_for(lambda r: httpx.Response(200, json={"active": []})).subscriptions("t")
        assert status.has_active_target_subscription is False

    @pytest.mark.asyncio
    async def test_failure(self):
        with pytest.raises(ActivationError) as exc:
            await account_for(lambda r: httpx.Response(403)).subscriptions("t")
        assert exc.value.kind == ErrorKind.SUBSCRIPTIONS_FETCH_FAILED


class TestCatalogEnrich:
    @pytest.mark.asyncio
    async def test_title_and_image(self):
        body = {"Product": {"LocalizedProperties": [{
            "ProductTitle": "Halo Infinite",
            "Images": [
                {"ImagePurpose": "Logo", "Uri": "//img/logo.png"},
                {"ImagePurpose": "Poster", "Uri": "//img/poster.png"},
            ],
        }]}}
        client = CatalogClient("https://catalog.test", transport=httpx.MockTransport(lambda r: httpx.Response(200, json=body)))
        info = await client.enrich(ProductInfo(product_id="9PP5G1F0C2B6"), "US")
        assert info.title == "Halo Infinite"
        assert info.image_url == "https://img/poster.png"

    @pytest.mark.asyncio
    async def test_failure_returns_input(self):
        original = ProductInfo(product_id="9PP5G1F0C2B6", title="Keep")
        client = CatalogClient("https://catalog.test", transport=httpx.MockTransport(lambda r: httpx.Response(404)))
        assert await client.enrich(original, "US") is original

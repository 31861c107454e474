"""
Pytest configuration and shared fakes for activation tests.

The fakes implement the collaborator protocols in memory and record every
call so tests can assert on what the engine asked for.
"""
import asyncio
from typing import Any, Dict, List, Optional, Tuple

import pytest

from activator.core.credential_cache import CredentialCache
from activator.services.activation.collaborators import StoreResponse
from activator.services.activation.context import ActivationContext, ActivationSettings
from activator.services.activation.models import Product, SubscriptionStatus
from activator.utils.retry import RetryPolicy

ACTIVE_DESCRIPTION = StoreResponse(200, {
    "tokenState": "Active",
    "assetId": "9NBLGGH4R315/0010",
    "productTitle": "Forza Horizon 5",
})
ORDER_OK = StoreResponse(201, {"orderId": "ok"})


class RecordingSleep:
    """Awaitable sleep that records delays and returns immediately."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class FakeStorefront:
    """
    Storefront fake with per-key scripted responses.

    Each script is consumed in order; the last entry repeats. Exceptions in a
    script are raised instead of returned.
    """

    def __init__(self):
        self.descriptions: Dict[Tuple[str, Optional[str]], List[Any]] = {}
        self.orders: Dict[Tuple[str, Optional[str]], List[Any]] = {}
        self.calls: List[Tuple[str, str, str]] = []
        self.proxies: List[Optional[str]] = []

    def on_description(self, key: str, *responses, market: Optional[str] = None) -> None:
        self.descriptions[(key, market)] = list(responses)

    def on_order(self, key: str, *responses, market: Optional[str] = None) -> None:
        self.orders[(key, market)] = list(responses)

    @staticmethod
    def _next(scripts, key: str, market: str, default: StoreResponse):
        script = scripts.get((key, market)) or scripts.get((key, None))
        if not script:
            return default
        item = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(item, BaseException):
            raise item
        return item

    async def token_description(self, key, market, token, proxy):
        self.calls.append(("description", key, market))
        self.proxies.append(proxy.url if proxy else None)
        await asyncio.sleep(0)
        return self._next(self.descriptions, key, market, ACTIVE_DESCRIPTION)

    async def submit_order(self, payload, token, proxy):
        key = payload["billingInformation"]["paymentInstrumentId"]
        market = payload["market"]
        self.calls.append(("order", key, market))
        await asyncio.sleep(0)
        return self._next(self.orders, key, market, ORDER_OK)

    def order_keys(self) -> List[str]:
        return [key for kind, key, _ in self.calls if kind == "order"]


class FakeSessions:
    def __init__(self, products: Optional[Dict[str, Any]] = None):
        self.products = products or {}
        self.fetches: List[str] = []
        self.reports: List[Tuple[str, bool]] = []

    async def fetch(self, session_token: str) -> Product:
        self.fetches.append(session_token)
        result = self.products[session_token]
        if isinstance(result, BaseException):
            raise result
        return result

    async def mark_activated(self, session_token: str, success: bool) -> None:
        self.reports.append((session_token, success))


class FakeAccount:
    def __init__(self, region: Any = ("IL", "IL"), subscriptions: Any = None):
        self.region_result = region
        self.subscriptions_result = subscriptions or SubscriptionStatus(False)
        self.region_calls = 0
        self.subscription_calls = 0

    async def region(self, account_token):
        self.region_calls += 1
        if isinstance(self.region_result, BaseException):
            raise self.region_result
        return self.region_result

    async def subscriptions(self, account_token):
        self.subscription_calls += 1
        if isinstance(self.subscriptions_result, BaseException):
            raise self.subscriptions_result
        return self.subscriptions_result


class FakeTokenCapture:
    """Returns `token`; with hang=True it never completes."""

    def __init__(self, token: Optional[str] = "bearer-token", hang: bool = False):
        self.token = token
        self.hang = hang
        self.calls = 0

    async def capture(self) -> str:
        self.calls += 1
        if self.hang:
            await asyncio.Event().wait()
        return self.token


class FakePersistence:
    def __init__(self):
        self.records = []

    async def save(self, record) -> None:
        self.records.append(record)


class FakeConversion:
    def __init__(self, hang: bool = False, error: Optional[BaseException] = None):
        self.hang = hang
        self.error = error
        self.converted: List[str] = []

    async def convert(self, key: str, token: str, region: str) -> None:
        if self.hang:
            await asyncio.Event().wait()
        if self.error is not None:
            raise self.error
        self.converted.append(key)


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def storefront():
    return FakeStorefront()


@pytest.fixture
def persistence():
    return FakePersistence()


@pytest.fixture
def settings():
    """Settings with small timeouts; sleeps are recorded, never awaited for real."""
    return ActivationSettings(
        retry_policy=RetryPolicy(max_attempts=3, initial_delay=1.0, max_delay=32.0),
        token_timeout=1.0,
        conversion_timeout=1.0,
        diagnostics_timeout=1.0,
        bundle_key_delay=3.0,
    )


@pytest.fixture
def make_context(storefront, persistence, settings, recording_sleep):
    """Factory building an ActivationContext around the fakes."""

    def factory(**overrides) -> ActivationContext:
        values = {
            "storefront": storefront,
            "settings": settings,
            "cache": CredentialCache(),
            "persistence": persistence,
            "token_capture": FakeTokenCapture(),
            "sleep": recording_sleep,
        }
        values.update(overrides)
        return ActivationContext(**values)

    return factory

"""
Unit tests for activation entry points.
"""
import pytest

from activator.services.activation import sources
from activator.services.activation.context import ActivationSettings
from activator.services.activation.models import PendingActivation
from activator.services.activation.sources import (
    DeepLink,
    ExternalMessage,
    InApp,
    Manual,
    Portal,
    UrlMonitor,
    UrlMonitorCapture,
    parse_deep_link,
    parse_external_message,
    resolve,
)


class TestResolve:
    """Tests for resolve()"""

    def test_deep_link_placeholder(self):
        """Session sources resolve to a placeholder awaiting the session product"""
        activation = resolve(DeepLink("abc123"))
        assert activation.session_token == "abc123"
        assert activation.product_name == sources.LOADING_PRODUCT_NAME
        assert activation.region == "IL"
        assert activation.keys == ()
        assert activation.is_test_mode is False

    def test_test_token_flags_test_mode(self):
        """A session token containing 'test' marks the activation as test mode"""
        assert resolve(Portal("my-TEST-session")).is_test_mode is True

    def test_in_app_key(self):
        """In-app keys become single-key activations"""
        activation = resolve(InApp(product_key=" AAAAA-BBBBB ", region="US"))
        assert activation.keys == ("AAAAA-BBBBB",)
        assert activation.product_key == "AAAAA-BBBBB"
        assert activation.region == "US"
        assert activation.is_bundle is False

    def test_test_mode_source(self):
        """Test-mode licenses are flagged"""
        activation = resolve(sources.TestMode(license="KEY-1", region=""))
        assert activation.is_test_mode is True
        assert activation.region == "IL"

    def test_manual_passthrough(self):
        """Manual activations are returned unchanged"""
        pending = PendingActivation.create(product_keys=["K1", "K2"], region="DE", product_name="Bundle")
        assert resolve(Manual(pending)) is pending

    def test_empty_token_rejected(self):
        """Blank session tokens are rejected"""
        with pytest.raises(ValueError):
            resolve(ExternalMessage("  "))

    def test_empty_key_rejected(self):
        """An in-app source without a key cannot be resolved"""
        with pytest.raises(ValueError):
            resolve(InApp(product_key="", region="US"))


class TestPendingActivation:
    """Tests for key normalization"""

    def test_keys_deduplicated_in_order(self):
        """Duplicate and blank keys are dropped, order kept"""
        activation = PendingActivation(region="us", product_name="P", keys=("B", "A", "", "B"))
        assert activation.keys == ("B", "A")
        assert activation.is_bundle is True
        assert activation.region == "US"

    def test_list_wins_over_single(self):
        """When both forms are given the list is used"""
        activation = PendingActivation.create(
            product_key="SINGLE", product_keys=["L1", "L2"], region="IL", product_name="P"
        )
        assert activation.keys == ("L1", "L2")

    def test_localized_region_normalized(self):
        """Country names are mapped to ISO codes"""
        activation = PendingActivation.create(product_key="K", region="Israel", product_name="P")
        assert activation.region == "IL"

    def test_global_region_agnostic(self):
        """GLOBAL keys are region-agnostic"""
        activation = PendingActivation.create(product_key="K", region="global", product_name="P")
        assert activation.is_region_agnostic is True


class TestParseDeepLink:
    """Tests for parse_deep_link()"""

    def test_session_scheme(self):
        assert parse_deep_link("exonactivate://session/tok1") == DeepLink("tok1")

    def test_store_scheme(self):
        assert parse_deep_link("exonstore://activate/tok2") == DeepLink("tok2")

    def test_portal_url(self):
        assert parse_deep_link("https://portal.exongames.co.il/activate/tok3") == Portal("tok3")

    def test_unrelated_url(self):
        """Non-activation URLs yield None"""
        assert parse_deep_link("https://example.com/activate/tok") is None
        assert parse_deep_link("exonactivate://other/tok") is None


class TestUrlMonitor:
    """Tests for redeem page monitoring"""

    def test_session_param(self):
        monitor = UrlMonitor()
        source = monitor.observe("https://account.microsoft.com/billing/redeem?session=s1")
        assert source == UrlMonitorCapture("s1")

    def test_license_param_is_test_mode(self):
        monitor = UrlMonitor(default_region="US")
        source = monitor.observe("https://account.microsoft.com/billing/redeem?license=KEY&region=TR")
        assert isinstance(source, sources.TestMode)
        assert source.region == "TR"

    def test_same_url_processed_once(self):
        """The same URL is not processed twice in a row"""
        monitor = UrlMonitor()
        url = "https://account.microsoft.com/billing/redeem?session=s1"
        assert monitor.observe(url) is not None
        assert monitor.observe(url) is None

    def test_non_redeem_page_ignored(self):
        assert UrlMonitor().observe("https://account.microsoft.com/profile?session=s1") is None


class TestParseExternalMessage:
    """Tests for parse_external_message()"""

    def test_allowed_origin(self):
        source = parse_external_message(
            "https://exongames.co.il", {"action": "ACTIVATE_PRODUCT", "session_token": "t1"}
        )
        assert source == ExternalMessage("t1")

    def test_rejected_origin(self):
        source = parse_external_message(
            "https://evil.example", {"action": "ACTIVATE_PRODUCT", "session_token": "t1"}
        )
        assert source is None

    def test_wrong_action(self):
        assert parse_external_message("https://exongames.co.il", {"action": "OTHER", "session_token": "t"}) is None

    def test_configured_origins(self, monkeypatch):
        """Origins come from config through ActivationSettings"""
        import config

        monkeypatch.setattr(config, "ALLOWED_MESSAGE_ORIGINS", ["https://shop.example"])
        settings = ActivationSettings.from_config()
        message = {"action": "ACTIVATE_PRODUCT", "session_token": "t1"}

        assert parse_external_message("https://shop.example", message, settings.allowed_message_origins) == (
            ExternalMessage("t1")
        )
        assert parse_external_message("https://exongames.co.il", message, settings.allowed_message_origins) is None


class TestDefaultVendor:
    """Tests for the configured default vendor"""

    def test_resolve_uses_given_vendor(self):
        assert resolve(DeepLink("s1"), "IL", "Xbox").vendor == "Xbox"
        assert resolve(InApp("AAAAA-BBBBB", "US"), "IL", "Xbox").vendor == "Xbox"

    def test_vendor_read_from_config(self, monkeypatch):
        import config

        monkeypatch.setattr(config, "DEFAULT_VENDOR", "Xbox")
        settings = ActivationSettings.from_config()
        assert settings.default_vendor == "Xbox"
        assert resolve(DeepLink("s1"), settings.default_region, settings.default_vendor).vendor == "Xbox"

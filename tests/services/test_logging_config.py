"""
Unit tests for log record filters.
"""
import logging

from activator.core.logging_config import RedactionFilter, RunContextFilter, redact
from activator.utils.logging_helpers import set_correlation_id

KEY = "AAAAA-BBBBB-CCCCC-DDDDD-EEEEE"


def make_record(msg, *args):
    return logging.LogRecord("activator.test", logging.INFO, __file__, 1, msg, args, None)


class TestRedact:
    def test_product_key_masked(self):
        assert redact(f"Redeeming {KEY} in IL") == "Redeeming AAAAA-***** in IL"

    def test_bearer_tokens_dropped(self):
        assert redact("Authorization: Bearer abc.def") == "Authorization: Bearer ***"
        assert redact('WLID1.0="t0ken"') == 'WLID1.0="***"'

    def test_plain_text_untouched(self):
        assert redact("Bundle key 1/3") == "Bundle key 1/3"


class TestFilters:
    def test_redaction_applies_to_args(self):
        """Keys passed as format args are scrubbed from the final message"""
        record = make_record("key=%s market=%s", KEY, "US")
        assert RedactionFilter().filter(record) is True
        assert record.getMessage() == "key=AAAAA-***** market=US"

    def test_run_id_stamped(self):
        set_correlation_id("run-42")
        record = make_record("hello")
        RunContextFilter().filter(record)
        assert record.run_id == "run-42"

"""
Tests for logging context, metrics helpers and tracing switches.
"""

import structlog

from topup.observability.logging import REDACTED, get_logger, log_context, redact_secrets
from topup.observability.metrics import metrics
from topup.observability.tracing import add_span_attributes, trace_operation


class TestLogContext:
    def test_binds_and_unbinds(self):
        with log_context(checkout_id="abc", game="mlbb"):
            bound = structlog.contextvars.get_contextvars()
            assert bound["checkout_id"] == "abc"
            assert bound["game"] == "mlbb"

        assert "checkout_id" not in structlog.contextvars.get_contextvars()

    def test_nested_context_restores_outer_value(self):
        with log_context(checkout_id="outer"):
            with log_context(checkout_id="inner"):
                assert structlog.contextvars.get_contextvars()["checkout_id"] == "inner"
            assert structlog.contextvars.get_contextvars()["checkout_id"] == "outer"

    def test_get_logger(self):
        assert get_logger(__name__) is not None


class TestRedaction:
    def test_secrets_masked(self):
        event = redact_secrets(
            None, "info", {"event": "relay_call", "token": "tok-1", "authorization": "Bearer x"}
        )

        assert event["token"] == REDACTED
        assert event["authorization"] == REDACTED
        assert event["event"] == "relay_call"

    def test_fingerprint_shortened(self):
        event = redact_secrets(None, "info", {"fingerprint": "0123456789abcdef"})

        assert event["fingerprint"] == "01234567..."

    def test_short_fingerprint_kept(self):
        assert redact_secrets(None, "info", {"fingerprint": "md5-1"})["fingerprint"] == "md5-1"


class TestMetrics:
    def test_record_code_request(self):
        counter = metrics.codes_requested_total.labels(outcome="issued")
        before = counter._value.get()

        metrics.record_code_request("issued", 10.0)

        assert counter._value.get() == before + 1

    def test_record_checkout_finished(self):
        counter = metrics.checkouts_finished_total.labels(outcome="price_mismatch")
        before = counter._value.get()

        metrics.record_checkout_finished("price_mismatch")

        assert counter._value.get() == before + 1

    def test_record_notification(self):
        counter = metrics.notifications_total.labels(success="False")
        before = counter._value.get()

        metrics.record_notification(False)

        assert counter._value.get() == before + 1


class TestTracing:
    def test_trace_operation_without_provider(self):
        with trace_operation("khqr_verify", checkout_id="abc") as span:
            add_span_attributes(span, attempt=1)

"""
Metrics Collection with Prometheus.

Exposes checkout and system metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from topup.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    GAME = "game"
    OUTCOME = "outcome"
    ERROR_TYPE = "error_type"


class CheckoutMetrics:
    """
    Centralized metrics for the top-up checkout API.

    Covers:
    - HTTP requests (rate, duration)
    - Payment code generation (rate, cooldown rejections, failures)
    - Verification polling (attempts by status)
    - Checkout outcomes (success / error reason)
    - Completion notifications
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        self.service_info = Info(
            "topup_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "topup_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "topup_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "topup_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Payment Code Metrics
        # ====================================================================
        self.codes_requested_total = Counter(
            "topup_payment_codes_requested_total",
            "Payment code requests by outcome",
            [MetricLabels.OUTCOME],
        )

        self.code_amount = Histogram(
            "topup_payment_code_amount",
            "Payment code amounts in currency units",
            buckets=(0.5, 1, 2, 5, 10, 20, 50, 100),
        )

        # ====================================================================
        # Verification Metrics
        # ====================================================================
        self.verification_attempts_total = Counter(
            "topup_verification_attempts_total",
            "Verification calls by result status",
            ["status"],
        )

        self.verification_duration_seconds = Histogram(
            "topup_verification_duration_seconds",
            "Verification call duration in seconds",
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        # ====================================================================
        # Checkout Metrics
        # ====================================================================
        self.checkouts_finished_total = Counter(
            "topup_checkouts_finished_total",
            "Checkouts reaching a terminal state",
            [MetricLabels.OUTCOME],
        )

        self.active_checkouts = Gauge(
            "topup_active_checkouts",
            "Checkouts currently open",
        )

        self.notifications_total = Counter(
            "topup_notifications_total",
            "Completion notifications sent",
            ["success"],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "topup_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_code_request(self, outcome: str, amount: float | None = None) -> None:
        """Record a payment code request; amount only for issued codes."""
        self.codes_requested_total.labels(outcome=outcome).inc()
        if amount is not None:
            self.code_amount.observe(amount)

    def record_verification(self, status: str, duration: float) -> None:
        """Record one verification call."""
        self.verification_attempts_total.labels(status=status).inc()
        self.verification_duration_seconds.observe(duration)

    def record_checkout_finished(self, outcome: str) -> None:
        """Record a terminal checkout state."""
        self.checkouts_finished_total.labels(outcome=outcome).inc()

    def record_notification(self, success: bool) -> None:
        """Record a completion notification."""
        self.notifications_total.labels(success=str(success)).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = CheckoutMetrics()

"""
Metrics Collection with Prometheus.

Exposes access code, activity log and HTTP metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from openstream.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    OUTCOME = "outcome"
    FORMAT = "format"
    ERROR_TYPE = "error_type"


class AccessMetrics:
    """
    Centralized metrics for the OpenStream Access API.

    Covers:
    - HTTP requests (rate, duration, in-flight)
    - Access code lifecycle (generated, validated by outcome, revoked, expired)
    - Activity log exports and bulk maintenance
    - Errors by type
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "openstream_service",
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
            "openstream_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "openstream_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "openstream_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Access Code Metrics
        # ====================================================================
        self.codes_generated_total = Counter(
            "openstream_codes_generated_total",
            "Total access codes generated",
            ["reusable"],
        )

        self.code_validations_total = Counter(
            "openstream_code_validations_total",
            "Total access code validation attempts",
            [MetricLabels.OUTCOME],
        )

        self.code_validation_duration_seconds = Histogram(
            "openstream_code_validation_duration_seconds",
            "Access code validation duration in seconds",
            buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5),
        )

        self.codes_revoked_total = Counter(
            "openstream_codes_revoked_total",
            "Total access codes revoked",
        )

        self.codes_expired_total = Counter(
            "openstream_codes_expired_total",
            "Total access codes transitioned to expired",
            ["source"],
        )

        # ====================================================================
        # Activity Log Metrics
        # ====================================================================
        self.log_exports_total = Counter(
            "openstream_log_exports_total",
            "Total activity log exports",
            [MetricLabels.FORMAT],
        )

        self.log_export_rows = Histogram(
            "openstream_log_export_rows",
            "Rows per activity log export",
            buckets=(0, 10, 100, 500, 1000, 2500, 5000, 10000),
        )

        self.logs_bulk_modified_total = Counter(
            "openstream_logs_bulk_modified_total",
            "Activity log rows changed by bulk maintenance",
            [MetricLabels.OPERATION],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "openstream_errors_total",
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

    def record_generation(self, reusable: bool) -> None:
        """Record access code generation."""
        self.codes_generated_total.labels(reusable=str(reusable)).inc()

    def record_validation(self, outcome: str, duration: float) -> None:
        """Record a validation attempt."""
        self.code_validations_total.labels(outcome=outcome).inc()
        self.code_validation_duration_seconds.observe(duration)

    def record_expiry(self, source: str, count: int = 1) -> None:
        """Record ACTIVE -> EXPIRED transitions."""
        if count:
            self.codes_expired_total.labels(source=source).inc(count)

    def record_export(self, export_format: str, rows: int) -> None:
        """Record an activity log export."""
        self.log_exports_total.labels(format=export_format).inc()
        self.log_export_rows.observe(rows)

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = AccessMetrics()

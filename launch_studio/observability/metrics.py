"""
Metrics Collection with Prometheus.

Exposes pipeline, credit and HTTP metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from launch_studio.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    STAGE = "stage"
    OUTCOME = "outcome"
    ERROR_TYPE = "error_type"


class StudioMetrics:
    """
    Centralized metrics for the launch studio API.

    Covers:
    - HTTP requests (rate, duration, in flight)
    - Stage runs (rate by outcome, generation duration)
    - Credits (charged, granted)
    - Uploads and image generations
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "studio_service",
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
            "studio_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "studio_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
        )

        self.http_requests_in_progress = Gauge(
            "studio_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Pipeline Metrics
        # ====================================================================
        self.stage_runs_total = Counter(
            "studio_stage_runs_total",
            "Total stage runs by outcome",
            [MetricLabels.STAGE, MetricLabels.OUTCOME],
        )

        self.stage_duration_seconds = Histogram(
            "studio_stage_duration_seconds",
            "Stage generation duration in seconds",
            [MetricLabels.STAGE],
            buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 45.0, 60.0),
        )

        self.stages_in_progress = Gauge(
            "studio_stages_in_progress",
            "Number of stage generations currently running",
        )

        # ====================================================================
        # Credit Metrics
        # ====================================================================
        self.credits_charged_total = Counter(
            "studio_credits_charged_total",
            "Total credits charged",
            [MetricLabels.STAGE],
        )

        self.credits_granted_total = Counter(
            "studio_credits_granted_total",
            "Total credits granted",
            ["kind"],
        )

        # ====================================================================
        # Upload / Image Metrics
        # ====================================================================
        self.uploads_total = Counter(
            "studio_uploads_total",
            "Total uploads by outcome",
            [MetricLabels.OUTCOME],
        )

        self.image_generations_total = Counter(
            "studio_image_generations_total",
            "Total image generations by outcome",
            [MetricLabels.OUTCOME],
        )

        self.image_rate_limit_retries_total = Counter(
            "studio_image_rate_limit_retries_total",
            "Image generation retries caused by rate limiting",
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "studio_errors_total",
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

    def record_stage_run(self, stage: str, outcome: str, duration: float | None = None) -> None:
        """Record a stage run outcome and, when it ran, its duration."""
        self.stage_runs_total.labels(stage=stage, outcome=outcome).inc()
        if duration is not None:
            self.stage_duration_seconds.labels(stage=stage).observe(duration)

    def record_charge(self, stage: str, amount: int) -> None:
        """Record credits charged for a stage."""
        self.credits_charged_total.labels(stage=stage).inc(amount)

    def record_grant(self, kind: str, amount: int) -> None:
        """Record credits granted."""
        self.credits_granted_total.labels(kind=kind).inc(amount)

    def record_upload(self, outcome: str) -> None:
        """Record upload outcome."""
        self.uploads_total.labels(outcome=outcome).inc()

    def record_image_generation(self, outcome: str) -> None:
        """Record image generation outcome."""
        self.image_generations_total.labels(outcome=outcome).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = StudioMetrics()

"""
Prometheus metrics collection.

In-memory counters on a per-collector registry; Prometheus handles storage.
"""

from typing import Optional

import structlog
from prometheus_client import CollectorRegistry, Counter, Histogram, Info

from .. import __version__

logger = structlog.get_logger(__name__)


class MetricsCollector:
    """
    Centralized metrics collection for the relay.

    Each collector owns its registry so several app instances (tests) can
    coexist in one process.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry or CollectorRegistry()

        # Service info
        self.service_info = Info(
            "hookrelay_service",
            "Webhook relay service information",
            registry=self.registry,
        )
        self.service_info.info({
            "version": __version__,
            "service": "hookrelay",
        })

        # Request metrics
        self.requests_total = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry,
        )

        self.request_duration = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
            registry=self.registry,
        )

        # Webhook pipeline metrics
        self.webhooks_received_total = Counter(
            "webhooks_received_total",
            "Total inbound webhooks",
            registry=self.registry,
        )

        self.webhooks_forwarded_total = Counter(
            "webhooks_forwarded_total",
            "Webhooks relayed, by destination status code",
            ["status_code"],
            registry=self.registry,
        )

        self.webhooks_ignored_total = Counter(
            "webhooks_ignored_total",
            "Group/broadcast webhooks dropped",
            ["reason"],
            registry=self.registry,
        )

        self.webhooks_rejected_total = Counter(
            "webhooks_rejected_total",
            "Webhooks failed with a relay error",
            ["error_code"],
            registry=self.registry,
        )

        self.forward_duration = Histogram(
            "webhook_forward_duration_seconds",
            "Outbound relay duration in seconds",
            buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0],
            registry=self.registry,
        )

        # Resolution and conversion metrics
        self.resolutions_total = Counter(
            "tenant_resolutions_total",
            "Secret resolutions, by the source that answered",
            ["source"],
            registry=self.registry,
        )

        self.conversions_total = Counter(
            "legacy_id_conversions_total",
            "Legacy identifier conversion attempts, by outcome",
            ["outcome"],
            registry=self.registry,
        )

        logger.info("Metrics collector initialized")

    def record_request(self, method: str, endpoint: str, status_code: int, duration: float) -> None:
        self.requests_total.labels(method=method, endpoint=endpoint, status_code=str(status_code)).inc()
        self.request_duration.labels(method=method, endpoint=endpoint).observe(duration)

    def record_received(self) -> None:
        self.webhooks_received_total.inc()

    def record_forwarded(self, status_code: int) -> None:
        self.webhooks_forwarded_total.labels(status_code=str(status_code)).inc()

    def record_ignored(self, reason: str) -> None:
        self.webhooks_ignored_total.labels(reason=reason or "unknown").inc()

    def record_rejected(self, error_code: str) -> None:
        self.webhooks_rejected_total.labels(error_code=error_code).inc()

    def record_forward_duration(self, duration: float) -> None:
        self.forward_duration.observe(duration)

    def record_resolution(self, source: str) -> None:
        self.resolutions_total.labels(source=source).inc()

    def record_conversion(self, outcome: str) -> None:
        self.conversions_total.labels(outcome=outcome).inc()

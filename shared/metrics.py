"""
Shared metrics configuration for the Federated Login service.
"""

from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, Info


class MetricsCollector:
    """Centralized metrics collector for services.

    Each collector owns its registry so that several service instances
    (tests, workers) can live in one process without duplicate series.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        # HTTP metrics
        self._metrics["http_requests_total"] = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry
        )

        self._metrics["health_check_total"] = Counter(
            "health_check_total",
            "Total health check requests",
            ["status"],
            registry=self.registry
        )

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        if self.service_name == "login":
            self._setup_login_metrics()

    def _setup_login_metrics(self):
        """Set up login-specific metrics."""
        self._metrics["login_attempts_total"] = Counter(
            "login_attempts_total",
            "Total login attempts",
            ["provider", "flow"],
            registry=self.registry
        )

        self._metrics["login_errors_total"] = Counter(
            "login_errors_total",
            "Total failed logins",
            ["provider"],
            registry=self.registry
        )

        self._metrics["cert_refresh_total"] = Counter(
            "cert_refresh_total",
            "Total provider certificate refreshes",
            ["provider", "status"],
            registry=self.registry
        )

        self._metrics["cert_refresh_duration_seconds"] = Histogram(
            "cert_refresh_duration_seconds",
            "Provider certificate refresh duration in seconds",
            ["provider"],
            registry=self.registry
        )

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self._metrics["http_requests_total"].labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()

        self._metrics["http_request_duration_seconds"].labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

    def record_health_check(self, status: str):
        """Record health check metrics."""
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    def record_login_attempt(self, provider: str, flow: str):
        """Record a login attempt for a validated provider."""
        self.increment_counter("login_attempts_total", provider=provider, flow=flow)

    def record_login_error(self, provider: str):
        """Record a failed login for a validated provider."""
        self.increment_counter("login_errors_total", provider=provider)

    def record_cert_refresh(self, provider: str, status: str, duration: float):
        """Record a certificate refresh attempt."""
        self.increment_counter("cert_refresh_total", provider=provider, status=status)
        self.observe_histogram("cert_refresh_duration_seconds", duration, provider=provider)

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).inc()

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe a histogram metric."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).observe(value)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)

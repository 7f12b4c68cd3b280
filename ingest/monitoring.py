# ingest/monitoring.py
"""
Centralized monitoring: structured JSON logging, optional Sentry, Prometheus
request metrics.

The metrics live on a per-app ``CollectorRegistry`` owned by ``RequestMetrics``
so every app instance (and every test) gets its own counters.
"""

import logging
import time
from typing import Optional, Tuple

import sentry_sdk
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    GCCollector,
    Histogram,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)
from pythonjsonlogger import jsonlogger

LOGGER_NAME = "ingest"


# --- Logger setup
def setup_logger(name: str = LOGGER_NAME, level: Optional[str] = None, as_json: bool = True) -> logging.Logger:
    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(logging.getLevelName(level.upper()))
    if not logger.handlers:
        handler = logging.StreamHandler()
        if as_json:
            fmt = jsonlogger.JsonFormatter(
                "%(asctime)s %(levelname)s %(name)s %(message)s"
            )
            handler.setFormatter(fmt)
        logger.addHandler(handler)
    return logger


logger = logging.getLogger(LOGGER_NAME)


# --- Sentry (optional)
def setup_sentry(dsn: Optional[str], environment: str) -> bool:
    if not dsn:
        return False
    sentry_sdk.init(dsn=dsn, environment=environment)
    logger.info("Sentry initialized", extra={"environment": environment})
    return True


# --- Prometheus metrics
class RequestMetrics:
    """Request duration histogram and request counter, keyed by method, route and status."""

    def __init__(self, registry: Optional[CollectorRegistry] = None, process_collectors: bool = True):
        self.registry = registry if registry is not None else CollectorRegistry()
        if process_collectors:
            ProcessCollector(registry=self.registry)
            PlatformCollector(registry=self.registry)
            GCCollector(registry=self.registry)

        self.request_duration = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "route", "status_code"],
            registry=self.registry,
        )
        self.request_count = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "route", "status_code"],
            registry=self.registry,
        )

    def observe_request(self, start_ts: float, method: str, route: str, status_code: str) -> None:
        elapsed = time.perf_counter() - start_ts
        self.request_duration.labels(method=method, route=route, status_code=status_code).observe(elapsed)
        self.request_count.labels(method=method, route=route, status_code=status_code).inc()

    def render(self) -> Tuple[bytes, str]:
        """Return (body_bytes, content_type) for Prometheus scrape."""
        return generate_latest(self.registry), CONTENT_TYPE_LATEST

"""Prometheus metrics and observability helpers for the block service."""
from __future__ import annotations

import time
from contextlib import contextmanager

from prometheus_client import Counter, Gauge, Histogram

from .config import get_settings

_SETTINGS = get_settings()
_ENABLED = _SETTINGS.metrics_enabled


def configure_metrics(enabled: bool) -> None:
    """Turn recording on or off for the running application."""
    global _ENABLED
    _ENABLED = enabled


def metrics_enabled() -> bool:
    return _ENABLED


_POLLS = Counter(
    "explorer_recent_block_polls_total",
    "Recent-block poll cycles by outcome.",
    ["outcome"],
)
_BROADCASTS = Counter(
    "explorer_stream_broadcasts_total",
    "Payloads fanned out to stream subscribers.",
    ["kind"],
)
_SUBSCRIBER_ERRORS = Counter(
    "explorer_stream_subscriber_errors_total",
    "Subscriber callbacks that raised during a broadcast.",
)
_SUBSCRIBERS = Gauge(
    "explorer_stream_subscribers",
    "Currently registered stream subscribers.",
)
_PROVIDER_FAILURES = Counter(
    "explorer_provider_failures_total",
    "Block provider fetch failures.",
    ["source"],
)
_PROVIDER_LATENCY = Histogram(
    "explorer_provider_fetch_latency_seconds",
    "Latency of block provider fetches by source.",
    labelnames=("source",),
    buckets=(0.05, 0.1, 0.2, 0.3, 0.5, 0.75, 1.0, 1.5, 2.0, 3.0, 5.0),
)


def record_poll(outcome: str) -> None:
    if not _ENABLED:
        return
    _POLLS.labels(outcome=outcome).inc()


def record_broadcast(kind: str) -> None:
    if not _ENABLED:
        return
    _BROADCASTS.labels(kind=kind).inc()


def record_subscriber_error() -> None:
    if not _ENABLED:
        return
    _SUBSCRIBER_ERRORS.inc()


def set_subscriber_count(count: int) -> None:
    if not _ENABLED:
        return
    _SUBSCRIBERS.set(count)


def record_provider_failure(source: str) -> None:
    if not _ENABLED:
        return
    _PROVIDER_FAILURES.labels(source=source).inc()


@contextmanager
def record_provider_latency(source: str):
    if not _ENABLED:
        yield
        return
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        _PROVIDER_LATENCY.labels(source=source).observe(max(elapsed, 0.0))

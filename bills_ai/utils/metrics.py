"""Prometheus metrics for the analysis subsystem.

All metric objects are defined at import time; the safe_* helpers keep a
metric failure from ever reaching provider logic.
"""

from __future__ import annotations

from typing import Any

from prometheus_client import Counter, Gauge, Histogram

ai_requests_total = Counter(
    "ai_requests_total",
    "Document analysis requests",
    ["backend", "status"],
)
ai_errors_total = Counter(
    "ai_errors_total",
    "Document analysis errors by code",
    ["backend", "code"],
)
ai_analysis_duration_seconds = Histogram(
    "ai_analysis_duration_seconds",
    "End-to-end document analysis duration",
    ["backend"],
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0],
)
ai_confidence_distribution = Histogram(
    "ai_confidence_distribution",
    "Reported analysis confidence",
    ["backend"],
    buckets=[0.0, 0.4, 0.7, 0.8, 0.9, 1.0],
)
ai_fallback_triggered_total = Counter(
    "ai_fallback_triggered_total",
    "Local runtime fallback paths taken",
    ["reason"],
)
ai_runtime_starts_total = Counter(
    "ai_runtime_starts_total",
    "Local runtime server start attempts",
    ["outcome"],
)
ai_model_pull_progress_ratio = Gauge(
    "ai_model_pull_progress_ratio",
    "Progress of the current model pull (0..1)",
)


def safe_inc(counter: Any, **labels: str) -> None:
    try:
        counter.labels(**labels).inc() if labels else counter.inc()
    except Exception:
        pass


def safe_observe(hist: Any, value: float, **labels: str) -> None:
    try:
        hist.labels(**labels).observe(value) if labels else hist.observe(value)
    except Exception:
        pass


def safe_set(gauge: Any, value: float, **labels: str) -> None:
    try:
        gauge.labels(**labels).set(value) if labels else gauge.set(value)
    except Exception:
        pass

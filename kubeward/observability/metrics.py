"""Prometheus metrics for the reconciliation engine.

Counters and histograms live on a dedicated registry so the manager's
``/metrics`` route exposes only engine telemetry.
"""

from __future__ import annotations

from typing import Final

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

REGISTRY: Final[CollectorRegistry] = CollectorRegistry()

RECONCILE_TOTAL: Final[Counter] = Counter(
    "kubeward_reconcile_total",
    "Reconcile passes, labeled by kind and outcome (success, requeue, error, conflict, timeout).",
    labelnames=("kind", "outcome"),
    registry=REGISTRY,
)

RECONCILE_DURATION: Final[Histogram] = Histogram(
    "kubeward_reconcile_duration_seconds",
    "Wall time of a single reconcile pass, labeled by kind.",
    labelnames=("kind",),
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0),
    registry=REGISTRY,
)

RECONCILE_INFLIGHT: Final[Gauge] = Gauge(
    "kubeward_reconcile_inflight",
    "Reconcile passes currently running.",
    registry=REGISTRY,
)

REQUEUES_TOTAL: Final[Counter] = Counter(
    "kubeward_requeues_total",
    "Requeues scheduled, labeled by kind and reason (immediate, delayed, backoff, coalesced).",
    labelnames=("kind", "reason"),
    registry=REGISTRY,
)

PROVISIONER_CALLS: Final[Counter] = Counter(
    "kubeward_provisioner_calls_total",
    "Node provisioner calls, labeled by operation and outcome.",
    labelnames=("operation", "outcome"),
    registry=REGISTRY,
)


def render() -> bytes:
    return generate_latest(REGISTRY)

"""Prometheus metrics for the ingestion pipeline.

All metrics live in the default registry so ``/metrics`` can expose them
with ``prometheus_client.generate_latest()``.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

cycles_total = Counter(
    "kubeingest_cycles_total",
    "Completed ingestion cycles per cluster, by outcome.",
    ["cluster", "outcome"],
)

fetch_errors_total = Counter(
    "kubeingest_fetch_errors_total",
    "Kind fetches that failed and were skipped for the cycle.",
    ["cluster", "kind"],
)

validation_errors_total = Counter(
    "kubeingest_validation_errors_total",
    "Resources dropped because they failed validation.",
    ["cluster"],
)

entities_emitted_total = Counter(
    "kubeingest_entities_emitted_total",
    "Entity changes delivered to the sink.",
    ["cluster", "change"],
)

cycle_duration_seconds = Histogram(
    "kubeingest_cycle_duration_seconds",
    "Wall-clock duration of one ingestion cycle.",
    ["cluster"],
    buckets=(0.1, 0.5, 1, 2.5, 5, 10, 30, 60, 120, 300),
)

tracked_entities = Gauge(
    "kubeingest_tracked_entities",
    "Entities emitted by the last successful cycle.",
    ["cluster"],
)

"""Prometheus metrics for probes, failures and refresh cycles."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

probe_total = Counter(
    "kubepulse_probe_total",
    "Connectivity probes issued, by resulting status.",
    ["status"],
)

probe_duration_seconds = Histogram(
    "kubepulse_probe_duration_seconds",
    "Wall-clock duration of connectivity probes.",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

failures_total = Counter(
    "kubepulse_failures_total",
    "Classified failures, by kind and the operation that produced them.",
    ["kind", "operation"],
)

event_queries_total = Counter(
    "kubepulse_event_queries_total",
    "Event queries, by outcome.",
    ["status"],
)

refresh_fires_total = Counter(
    "kubepulse_refresh_fires_total",
    "Scheduled refresh timer firings that started a fetch.",
)


def failure_summary() -> dict[str, int]:
    """Return classified failure counts keyed by failure kind."""
    summary: dict[str, int] = {}
    for metric in failures_total.collect():
        for sample in metric.samples:
            if not sample.name.endswith("_total"):
                continue
            kind = sample.labels.get("kind", "")
            summary[kind] = summary.get(kind, 0) + int(sample.value)
    return summary

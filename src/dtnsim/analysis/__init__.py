"""
Analysis layer: outcome records, aggregates and parameter sweeps.

IMPORTANT: This is NOT seen by the engine. One-way derivation only.

- MetricsCollector: terminal bundle records and game outcomes
- MetricsSummary: read-only aggregates for snapshots and sweeps

Sweeps live in dtnsim.analysis.sweep (import it explicitly; it drives
whole simulations and so depends on the core).
"""

from dtnsim.analysis.metrics import (
    Delivered,
    DroppedAtCapacity,
    ExpiredUndelivered,
    Injected,
    MetricsCollector,
    MetricsSummary,
)

__all__ = [
    "Delivered",
    "DroppedAtCapacity",
    "ExpiredUndelivered",
    "Injected",
    "MetricsCollector",
    "MetricsSummary",
]

"""
Metrics collector: a pure observer of engine outcomes.

IMPORTANT: the collector is NOT seen by the engine. The scheduler hands it
immutable outcome records; nothing here reads or writes simulation state.

Terminal bundle outcomes (exactly one per bundle):
- Delivered(latency, hops)
- ExpiredUndelivered
- DroppedAtCapacity (evicted from the last node holding a copy)

Plus Injected records (the delivery-ratio denominator) and per-contact
GameOutcome records.
"""

from __future__ import annotations
from collections import Counter
from dataclasses import dataclass, asdict
from typing import TYPE_CHECKING, Union

import numpy as np

from dtnsim.errors import InvariantViolation

if TYPE_CHECKING:
    from dtnsim.core.game import GameOutcome


@dataclass(frozen=True)
class Injected:
    bundle_id: int
    time: float
    source: int
    destination: int


@dataclass(frozen=True)
class Delivered:
    bundle_id: int
    time: float
    latency: float
    hops: int


@dataclass(frozen=True)
class ExpiredUndelivered:
    bundle_id: int
    time: float


@dataclass(frozen=True)
class DroppedAtCapacity:
    bundle_id: int
    time: float
    node_id: int


TerminalRecord = Union[Delivered, ExpiredUndelivered, DroppedAtCapacity]


@dataclass(frozen=True)
class MetricsSummary:
    """Read-only aggregate view, suitable for snapshots and sweeps."""

    injected: int
    delivered: int
    expired: int
    dropped_at_capacity: int
    in_flight: int
    delivery_ratio: float
    mean_latency: float | None
    median_latency: float | None
    p95_latency: float | None
    mean_hops: float | None
    contacts: int
    capacity_rejections: int
    energy_skips: int

    def to_dict(self) -> dict:
        return asdict(self)


class MetricsCollector:
    """Accumulates outcome records and answers aggregate queries."""

    def __init__(self):
        self._injected: list[Injected] = []
        self._delivered: list[Delivered] = []
        self._expired: list[ExpiredUndelivered] = []
        self._dropped: list[DroppedAtCapacity] = []
        self._outcomes: list["GameOutcome"] = []
        self._terminal: set[int] = set()

    def record(self, record: Injected | TerminalRecord):
        """Ingest one bundle record. A second terminal record for a bundle is an engine defect."""
        if isinstance(record, Injected):
            self._injected.append(record)
            return
        if record.bundle_id in self._terminal:
            raise InvariantViolation(f"Bundle {record.bundle_id} reported terminal twice")
        self._terminal.add(record.bundle_id)
        if isinstance(record, Delivered):
            self._delivered.append(record)
        elif isinstance(record, ExpiredUndelivered):
            self._expired.append(record)
        elif isinstance(record, DroppedAtCapacity):
            self._dropped.append(record)
        else:
            raise TypeError(f"Unknown record type: {type(record).__name__}")

    def observe(self, outcome: "GameOutcome"):
        """Ingest one game round."""
        self._outcomes.append(outcome)

    # ─── Queries ──────────────────────────────────────────────────────

    @property
    def outcomes(self) -> tuple["GameOutcome", ...]:
        return tuple(self._outcomes)

    @property
    def deliveries(self) -> tuple[Delivered, ...]:
        return tuple(self._delivered)

    @property
    def injected_count(self) -> int:
        return len(self._injected)

    @property
    def delivered_count(self) -> int:
        return len(self._delivered)

    def delivery_ratio(self) -> float:
        if not self._injected:
            return 0.0
        return len(self._delivered) / len(self._injected)

    def latencies(self) -> np.ndarray:
        return np.array([d.latency for d in self._delivered], dtype=np.float64)

    def mean_latency(self) -> float | None:
        if not self._delivered:
            return None
        return float(self.latencies().mean())

    def latency_percentile(self, q: float) -> float | None:
        """q-th percentile latency (q in [0, 100]), None if nothing was delivered."""
        if not self._delivered:
            return None
        return float(np.percentile(self.latencies(), q))

    def mean_hops(self) -> float | None:
        if not self._delivered:
            return None
        return float(np.mean([d.hops for d in self._delivered]))

    def drop_counts(self) -> dict[str, int]:
        """Undelivered terminal outcomes by cause."""
        return {"expired": len(self._expired), "capacity": len(self._dropped)}

    def strategy_counts(self) -> Counter:
        """Declared strategies seen at contacts (one count per node per contact)."""
        counts: Counter = Counter()
        for outcome in self._outcomes:
            if outcome.round == 0:
                counts.update(s.value for s in outcome.strategies)
        return counts

    def action_counts(self) -> Counter:
        """Actions chosen at contacts (one count per node per contact)."""
        counts: Counter = Counter()
        for outcome in self._outcomes:
            if outcome.round == 0:
                counts.update(a.value for a in outcome.actions)
        return counts

    def capacity_rejections(self) -> int:
        return sum(o.capacity_rejections for o in self._outcomes)

    def energy_skips(self) -> int:
        return sum(o.energy_skips for o in self._outcomes)

    def summary(self) -> MetricsSummary:
        drops = self.drop_counts()
        return MetricsSummary(
            injected=self.injected_count,
            delivered=self.delivered_count,
            expired=drops["expired"],
            dropped_at_capacity=drops["capacity"],
            in_flight=self.injected_count - len(self._terminal),
            delivery_ratio=self.delivery_ratio(),
            mean_latency=self.mean_latency(),
            median_latency=self.latency_percentile(50),
            p95_latency=self.latency_percentile(95),
            mean_hops=self.mean_hops(),
            contacts=sum(1 for o in self._outcomes if o.round == 0),
            capacity_rejections=self.capacity_rejections(),
            energy_skips=self.energy_skips(),
        )

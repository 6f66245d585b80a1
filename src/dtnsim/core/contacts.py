"""
Contact model: when can two nodes talk?

A contact window is the only opportunity to move a bundle between two nodes.
Every model here produces windows lazily and in start order, and is
restartable: a fresh call to `windows()` replays the same sequence for the
same seed.

Three models are available:
- TableContactModel: scripted scenario (explicit list of windows)
- PoissonContactModel: per-pair Poisson arrivals, exponential durations
- OrbitalContactModel: windows derived from a Constellation's geometry

Malformed windows (non-positive duration, overlap with the pair's previous
window, out of start order) are dropped and recorded as anomalies. They are
never fatal.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from itertools import combinations
from typing import Iterable, Iterator, Sequence, TYPE_CHECKING
import heapq
import logging
import math

import numpy as np

from dtnsim.errors import MalformedContact

if TYPE_CHECKING:
    from dtnsim.core.constellation import Constellation

logger = logging.getLogger(__name__)

# Seed-sequence tag for the contact random stream
CONTACT_STREAM = 1


@dataclass(frozen=True)
class ContactWindow:
    """
    An interval during which two nodes can exchange data.

    The pair is unordered: it is normalised so that node_a < node_b.
    `capacity` is the total bundle size that can cross the link during the window.
    """

    node_a: int
    node_b: int
    start: float
    end: float
    capacity: float = math.inf

    def __post_init__(self):
        if self.node_a == self.node_b:
            raise MalformedContact(f"Contact of node {self.node_a} with itself")
        if not self.end > self.start:
            raise MalformedContact(
                f"Contact {self.node_a}-{self.node_b} has non-positive duration "
                f"[{self.start}, {self.end}]"
            )
        if self.capacity < 0:
            raise MalformedContact(f"Contact capacity must be >= 0, got {self.capacity}")
        if self.node_a > self.node_b:
            a, b = self.node_a, self.node_b
            object.__setattr__(self, "node_a", b)
            object.__setattr__(self, "node_b", a)

    @property
    def pair(self) -> tuple[int, int]:
        return self.node_a, self.node_b

    @property
    def duration(self) -> float:
        return self.end - self.start

    def involves(self, node_id: int) -> bool:
        return node_id in (self.node_a, self.node_b)

    def peer_of(self, node_id: int) -> int:
        if node_id == self.node_a:
            return self.node_b
        if node_id == self.node_b:
            return self.node_a
        raise KeyError(f"Node {node_id} is not part of contact {self.pair}")

    def sort_key(self) -> tuple[float, int, int]:
        return self.start, self.node_a, self.node_b


@dataclass(frozen=True)
class ContactAnomaly:
    """A window that was dropped at ingestion, and why."""

    reason: str
    node_a: int
    node_b: int
    start: float
    end: float


def _anomaly(reason: str, a, b, start, end) -> ContactAnomaly:
    logger.warning("Dropped contact %s-%s [%s, %s]: %s", a, b, start, end, reason)
    return ContactAnomaly(reason=reason, node_a=a, node_b=b, start=start, end=end)


def _as_window(raw) -> ContactWindow:
    if isinstance(raw, ContactWindow):
        return raw
    try:
        return ContactWindow(*raw)
    except MalformedContact:
        raise
    except (TypeError, ValueError) as exc:
        raise MalformedContact(f"Not a (a, b, start, end[, capacity]) row: {exc}") from None


def _raw_fields(raw) -> tuple:
    """Best-effort (a, b, start, end) of a raw row, padded with None."""
    try:
        values = tuple(raw)
    except TypeError:
        values = ()
    return (values + (None,) * 4)[:4]


def ingest_contacts(
    raw_windows: Iterable[ContactWindow | Sequence],
) -> tuple[list[ContactWindow], list[ContactAnomaly]]:
    """
    Validate a batch of windows.

    Accepts ContactWindow objects or (a, b, start, end[, capacity]) tuples.
    Returns (accepted windows in start order, anomalies).
    """
    accepted: list[ContactWindow] = []
    anomalies: list[ContactAnomaly] = []

    candidates: list[ContactWindow] = []
    for raw in raw_windows:
        try:
            candidates.append(_as_window(raw))
        except MalformedContact as exc:
            a, b, start, end = _raw_fields(raw)
            anomalies.append(_anomaly(str(exc), a, b, start, end))

    candidates.sort(key=ContactWindow.sort_key)
    last_end: dict[tuple[int, int], float] = {}
    for window in candidates:
        if window.start < last_end.get(window.pair, -math.inf):
            anomalies.append(_anomaly(
                "overlaps previous window of the same pair",
                window.node_a, window.node_b, window.start, window.end,
            ))
            continue
        last_end[window.pair] = window.end
        accepted.append(window)

    return accepted, anomalies


class ContactStream:
    """
    Guards a lazy window iterator on its way into the scheduler.

    Drops windows that are out of start order or that overlap the pair's
    previous window, appending an anomaly record for each.
    """

    def __init__(self, windows: Iterator[ContactWindow], anomalies: list[ContactAnomaly] | None = None):
        self._windows = iter(windows)
        self.anomalies = anomalies if anomalies is not None else []
        self._last_start = -math.inf
        self._last_end: dict[tuple[int, int], float] = {}

    def __iter__(self):
        return self

    def __next__(self) -> ContactWindow:
        for window in self._windows:
            if window.start < self._last_start:
                self.anomalies.append(_anomaly(
                    "out of start order",
                    window.node_a, window.node_b, window.start, window.end,
                ))
                continue
            if window.start < self._last_end.get(window.pair, -math.inf):
                self.anomalies.append(_anomaly(
                    "overlaps previous window of the same pair",
                    window.node_a, window.node_b, window.start, window.end,
                ))
                continue
            self._last_start = window.start
            self._last_end[window.pair] = window.end
            return window
        raise StopIteration


class ContactModel(ABC):
    """Base class for contact models."""

    def __init__(self):
        self.anomalies: list[ContactAnomaly] = []

    @abstractmethod
    def windows(self, from_time: float = 0.0) -> Iterator[ContactWindow]:
        """All windows with start >= from_time, in start order."""
        ...

    def next_contacts(self, node_id: int, from_time: float = 0.0) -> Iterator[ContactWindow]:
        """Windows involving node_id with start >= from_time, in start order."""
        return (w for w in self.windows(from_time) if w.involves(node_id))


class TableContactModel(ContactModel):
    """Deterministic, table-driven contacts (scripted scenario)."""

    def __init__(self, windows: Iterable[ContactWindow | Sequence]):
        super().__init__()
        self._table, self.anomalies = ingest_contacts(windows)

    def windows(self, from_time: float = 0.0) -> Iterator[ContactWindow]:
        return (w for w in self._table if w.start >= from_time)

    def __len__(self) -> int:
        return len(self._table)


class PoissonContactModel(ContactModel):
    """
    Stochastic contacts: each pair meets as a Poisson process.

    Gaps between a window's end and the next start are exponential with mean
    1/rate; durations are exponential with mean `mean_duration`. Windows
    shorter than `min_duration` are dropped as anomalies.
    """

    def __init__(
        self,
        node_ids: Sequence[int],
        rate: float,
        mean_duration: float,
        capacity_rate: float = 1.0,
        seed: int = 0,
        min_duration: float = 0.0,
    ):
        super().__init__()
        self.node_ids = sorted(node_ids)
        self.rate = rate
        self.mean_duration = mean_duration
        self.capacity_rate = capacity_rate
        self.seed = seed
        self.min_duration = min_duration

    def _pair_windows(self, a: int, b: int, from_time: float) -> Iterator[ContactWindow]:
        rng = np.random.default_rng((self.seed, CONTACT_STREAM, a, b))
        t = 0.0
        while True:
            start = t + rng.standard_exponential() / self.rate
            duration = rng.standard_exponential() * self.mean_duration
            t = start + duration
            if duration < self.min_duration:
                self.anomalies.append(_anomaly(
                    f"shorter than minimum duration {self.min_duration}",
                    a, b, start, t,
                ))
                continue
            try:
                window = ContactWindow(a, b, float(start), float(t), capacity=duration * self.capacity_rate)
            except MalformedContact as exc:
                self.anomalies.append(_anomaly(str(exc), a, b, start, t))
                continue
            if window.start >= from_time:
                yield window

    def windows(self, from_time: float = 0.0) -> Iterator[ContactWindow]:
        if self.rate <= 0:
            return iter(())
        streams = [self._pair_windows(a, b, from_time) for a, b in combinations(self.node_ids, 2)]
        return heapq.merge(*streams, key=ContactWindow.sort_key)


class OrbitalContactModel(ContactModel):
    """
    Contacts from geometry: a pair is in contact while within comm_range.

    Distances are sampled every `resolution` time units up to `horizon`.
    A window opens at the first in-range sample and closes at the first
    out-of-range sample (or at the horizon). Windows are emitted in start
    order, so a window is held back while an earlier one is still open.
    """

    def __init__(
        self,
        constellation: "Constellation",
        comm_range: float,
        resolution: float,
        horizon: float,
        capacity_rate: float = 1.0,
    ):
        super().__init__()
        self.constellation = constellation
        self.comm_range = comm_range
        self.resolution = resolution
        self.horizon = horizon
        self.capacity_rate = capacity_rate

    def _make(self, a: int, b: int, start: float, end: float) -> ContactWindow:
        return ContactWindow(int(a), int(b), start, end, capacity=(end - start) * self.capacity_rate)

    def windows(self, from_time: float = 0.0) -> Iterator[ContactWindow]:
        n = self.constellation.n_nodes
        rows, cols = np.triu_indices(n, k=1)
        open_start: dict[tuple[int, int], float] = {}
        closed: list[tuple[tuple[float, int, int], ContactWindow]] = []

        step = 0
        t = from_time
        while t <= self.horizon:
            in_range = self.constellation.distances(t)[rows, cols] <= self.comm_range
            for a, b, now_in in zip(rows, cols, in_range):
                key = (int(a), int(b))
                if now_in and key not in open_start:
                    open_start[key] = t
                elif not now_in and key in open_start:
                    window = self._make(a, b, open_start.pop(key), t)
                    heapq.heappush(closed, (window.sort_key(), window))

            earliest_open = min(((s, a, b) for (a, b), s in open_start.items()), default=None)
            while closed and (earliest_open is None or closed[0][0] < earliest_open):
                yield heapq.heappop(closed)[1]

            step += 1
            t = from_time + step * self.resolution

        for (a, b), start in open_start.items():
            if self.horizon > start:
                window = self._make(a, b, start, self.horizon)
                heapq.heappush(closed, (window.sort_key(), window))
        while closed:
            yield heapq.heappop(closed)[1]

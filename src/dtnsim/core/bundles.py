"""
Bundles and the traffic that creates them.

A bundle is the atomic unit of data carried through the network. It is
created by an injection (from the traffic generator or a scripted trace),
carried node to node by custody transfer, and destroyed either on delivery
or when its time-to-live elapses.

The expiry deadline is fixed at creation: `expires_at` is derived from the
creation time and TTL and nothing in the engine writes either of them again.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from itertools import count
from typing import Iterator, Sequence

import numpy as np

# Seed-sequence tag for the traffic random stream (kept apart from contacts)
TRAFFIC_STREAM = 2


@dataclass(frozen=True)
class Hop:
    """One custody transfer: from_node -> to_node at a given time."""

    from_node: int
    to_node: int
    time: float


@dataclass(frozen=True)
class Injection:
    """A request to create a bundle at `source` at `time`."""

    time: float
    source: int
    destination: int
    ttl: float
    size: float = 1.0

    def __post_init__(self):
        if self.ttl <= 0:
            raise ValueError(f"Injection TTL must be positive, got {self.ttl}")
        if self.size <= 0:
            raise ValueError(f"Injection size must be positive, got {self.size}")
        if self.source == self.destination:
            raise ValueError(f"Injection source and destination are both node {self.source}")


@dataclass
class Bundle:
    """
    A bundle in custody of a node.

    Under the replicate policy several Bundle objects can share one
    bundle_id; each is one custody copy.
    """

    bundle_id: int
    source: int
    destination: int
    created_at: float
    ttl: float
    size: float = 1.0
    custodian: int | None = None
    hop_count: int = 0
    path: list[Hop] = field(default_factory=list)

    @property
    def expires_at(self) -> float:
        """Absolute deadline (creation + TTL)."""
        return self.created_at + self.ttl

    def ttl_remaining(self, now: float) -> float:
        return max(0.0, self.expires_at - now)

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now

    def visited(self, node_id: int) -> bool:
        """True if this bundle was ever in custody of node_id."""
        if node_id == self.source:
            return True
        return any(hop.to_node == node_id for hop in self.path)

    def record_hop(self, to_node: int, time: float):
        """Move custody to `to_node`, extending the path."""
        from_node = self.custodian if self.custodian is not None else self.source
        self.path.append(Hop(from_node=from_node, to_node=to_node, time=time))
        self.hop_count += 1
        self.custodian = to_node

    def replicate(self) -> Bundle:
        """Custody copy sharing identity, deadline and history."""
        return replace(self, path=list(self.path))

    def sort_key(self) -> tuple[float, int]:
        """Deadline order: soonest expiry first, ties by identity."""
        return self.expires_at, self.bundle_id


class BundleFactory:
    """Allocates sequential bundle identities."""

    def __init__(self, first_id: int = 0):
        self._ids = count(first_id)

    def create(self, injection: Injection) -> Bundle:
        return Bundle(
            bundle_id=next(self._ids),
            source=injection.source,
            destination=injection.destination,
            created_at=injection.time,
            ttl=injection.ttl,
            size=injection.size,
            custodian=injection.source,
        )


class TrafficGenerator:
    """
    Poisson bundle injections between random node pairs.

    Inter-arrival gaps are standard-exponential draws divided by the current
    rate, so a staged rate change takes effect from the next draw.
    Restartable: each call to `injections` replays the stream for the seed.
    """

    def __init__(
        self,
        node_ids: Sequence[int],
        rate: float,
        ttl_range: tuple[float, float],
        size_range: tuple[float, float] = (1.0, 1.0),
        seed: int = 0,
    ):
        if len(node_ids) < 2:
            raise ValueError("Traffic needs at least two nodes")
        self.node_ids = list(node_ids)
        self.rate = rate
        self.ttl_range = ttl_range
        self.size_range = size_range
        self.seed = seed

    def injections(self, from_time: float = 0.0) -> Iterator[Injection]:
        """Lazy, time-ordered injections starting after from_time."""
        rng = np.random.default_rng((self.seed, TRAFFIC_STREAM))
        t = from_time
        n = len(self.node_ids)
        while self.rate > 0:
            t += rng.standard_exponential() / self.rate
            src_idx, dst_idx = rng.choice(n, size=2, replace=False)
            ttl = rng.uniform(*self.ttl_range)
            size = rng.uniform(*self.size_range)
            yield Injection(
                time=float(t),
                source=self.node_ids[int(src_idx)],
                destination=self.node_ids[int(dst_idx)],
                ttl=float(ttl),
                size=float(size),
            )


def scripted_injections(trace: Sequence[Injection]) -> Iterator[Injection]:
    """Yield a scripted trace in time order (stable for equal times)."""
    return iter(sorted(trace, key=lambda inj: inj.time))

"""
Nodes: satellites, relays and ground stations.

A node owns:
- A bounded bundle store
- A declared forwarding strategy (fixed at configuration)
- Per-peer memory: interaction history and a reputation score
- Per-node encounter counts (contact frequency history, used to estimate
  who is a good carrier toward a destination)
- An energy budget that transfers draw from and that recharges over time

Positions live in the Constellation, not here.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from dtnsim.core.store import NodeStore

if TYPE_CHECKING:
    from dtnsim.core.game import Strategy

ENERGY_EPS = 1e-9


@dataclass
class PeerHistory:
    """What a node remembers about one peer."""

    interactions: int = 0
    cooperations: int = 0
    last_cooperated: bool | None = None

    def record(self, cooperated: bool):
        self.interactions += 1
        self.cooperations += int(cooperated)
        self.last_cooperated = cooperated


@dataclass
class Node:
    """A network node and its local, node-autonomous state."""

    node_id: int
    store: NodeStore
    strategy: "Strategy"
    initial_reputation: float = 1.0
    energy: float = 100.0
    energy_capacity: float = 100.0
    recharge_rate: float = 0.0

    reputation: dict[int, float] = field(default_factory=dict)
    history: dict[int, PeerHistory] = field(default_factory=dict)
    encounters: dict[int, int] = field(default_factory=dict)
    _energy_time: float = field(default=0.0, init=False)

    @property
    def capacity(self) -> float:
        return self.store.capacity

    def reputation_of(self, peer_id: int) -> float:
        """This node's reputation score for a peer, in [0, 1]."""
        return self.reputation.get(peer_id, self.initial_reputation)

    def history_with(self, peer_id: int) -> PeerHistory:
        return self.history.setdefault(peer_id, PeerHistory())

    def record_encounter(self, peer_id: int):
        self.encounters[peer_id] = self.encounters.get(peer_id, 0) + 1

    def delivery_estimate(self, destination: int) -> float:
        """
        Estimated chance of carrying a bundle to `destination`.

        1.0 for the destination itself, otherwise n / (n + 1) where n is the
        number of contacts this node has had with the destination.
        """
        if destination == self.node_id:
            return 1.0
        n = self.encounters.get(destination, 0)
        return n / (n + 1.0)

    def recharge(self, now: float):
        """Bring the energy level up to date (lazy recharge)."""
        elapsed = max(0.0, now - self._energy_time)
        self.energy = min(self.energy_capacity, self.energy + self.recharge_rate * elapsed)
        self._energy_time = now

    def can_afford(self, cost: float) -> bool:
        return self.energy + ENERGY_EPS >= cost

    def spend(self, cost: float):
        self.energy = max(0.0, self.energy - cost)

    def charge(self, amount: float):
        self.energy = min(self.energy_capacity, self.energy + amount)

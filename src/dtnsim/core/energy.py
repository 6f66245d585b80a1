"""
Energy entry game over clusters.

With energy_mode="nash", every contact start is preceded by a participation
decision. Nodes are first grouped into clusters:

1. Cluster-head candidates are the nodes whose energy exceeds a threshold
2. Candidates become heads in id order unless they sit within
   `cluster_distance` of a head already chosen
3. Every other node joins its nearest head, provided that head is closer
   than the node is to the Earth (origin); otherwise it stays unclustered

Each node in the contact then enters the game with the mixed-strategy Nash
probability of a volunteer's dilemma among its cluster of n nodes:

    p = 1 - (1 - (E - c) / (E + g)) ** (1 / (n - 1))

where E is its energy, c the participation cost and g the gain. A node alone
in its cluster enters iff E > c; a node that cannot pay c never enters.

Settlement: a node that entered pays c. A node that stayed out recharges by
g if its peer entered, and gets nothing otherwise. A node that stayed out
also sits the contact out (it defects in the forwarding game).

Draws come from a per-node stream derived from the scenario seed, so the
outcome does not depend on which other nodes happened to play first.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Mapping, TYPE_CHECKING
import logging
import math

import numpy as np

if TYPE_CHECKING:
    from dtnsim.core.node import Node

logger = logging.getLogger(__name__)

# Seed-sequence tag for the energy game random streams
ENERGY_STREAM = 4


@dataclass(frozen=True)
class Cluster:
    """A cluster head and its members (the head included)."""

    head: int
    members: tuple[int, ...]

    @property
    def size(self) -> int:
        return len(self.members)


def form_clusters(
    positions: np.ndarray,
    energy: Mapping[int, float],
    energy_threshold: float,
    cluster_distance: float,
) -> list[Cluster]:
    """
    Group nodes around energetic cluster heads.

    Args:
        positions: Node positions, shape [n_nodes, 2], origin at the Earth
        energy: Current energy per node id
        energy_threshold: Minimum energy (exclusive) to become a head
        cluster_distance: Minimum distance between two heads

    Returns:
        Clusters in head order. Unclustered nodes appear in none of them.
    """
    node_ids = sorted(energy)
    heads: list[int] = []
    for node_id in node_ids:
        if energy[node_id] <= energy_threshold:
            continue
        if all(np.linalg.norm(positions[node_id] - positions[h]) >= cluster_distance for h in heads):
            heads.append(node_id)

    members: dict[int, list[int]] = {h: [h] for h in heads}
    for node_id in node_ids:
        if node_id in members:
            continue
        nearest, nearest_distance = None, float(np.linalg.norm(positions[node_id]))
        for h in heads:
            distance = float(np.linalg.norm(positions[node_id] - positions[h]))
            if distance < nearest_distance:
                nearest, nearest_distance = h, distance
        if nearest is not None:
            members[nearest].append(node_id)

    return [Cluster(head=h, members=tuple(members[h])) for h in heads]


def entry_probability(energy: float, cost: float, gain: float, cluster_size: int) -> float:
    """Probability of entering the game (0.0 when the formula is undefined)."""
    if energy < cost:
        return 0.0
    if cluster_size < 2:
        return 1.0 if energy > cost else 0.0
    if energy + gain <= 0:
        return 0.0
    p = 1.0 - (1.0 - (energy - cost) / (energy + gain)) ** (1.0 / (cluster_size - 1))
    if math.isnan(p) or not 0.0 <= p <= 1.0:
        return 0.0
    return p


@dataclass
class EnergyGame:
    """Participation decisions and energy settlement at contact start."""

    cost: float = 2.0
    gain: float = 3.0
    energy_threshold: float = 50.0
    cluster_distance: float = 10000.0
    seed: int = 0

    clusters: list[Cluster] = field(default_factory=list, init=False)
    _rngs: dict[int, np.random.Generator] = field(default_factory=dict, init=False)

    def _rng(self, node_id: int) -> np.random.Generator:
        if node_id not in self._rngs:
            self._rngs[node_id] = np.random.default_rng((self.seed, ENERGY_STREAM, node_id))
        return self._rngs[node_id]

    def cluster_sizes(self, nodes: Mapping[int, "Node"], positions: np.ndarray) -> dict[int, int]:
        """Re-form clusters and return each node's cluster size (1 if unclustered)."""
        energy = {node_id: node.energy for node_id, node in nodes.items()}
        self.clusters = form_clusters(positions, energy, self.energy_threshold, self.cluster_distance)
        sizes = {node_id: 1 for node_id in nodes}
        for cluster in self.clusters:
            for member in cluster.members:
                sizes[member] = cluster.size
        return sizes

    def decide(self, node: "Node", cluster_size: int) -> bool:
        p = entry_probability(node.energy, self.cost, self.gain, cluster_size)
        if p <= 0.0:
            return False
        if p >= 1.0:
            return True
        return bool(self._rng(node.node_id).random() < p)

    def settle(self, node: "Node", entered: bool, peer_entered: bool):
        if entered:
            node.spend(self.cost)
        elif peer_entered:
            node.charge(self.gain)

    def play(
        self, a: "Node", b: "Node", nodes: Mapping[int, "Node"], positions: np.ndarray, now: float
    ) -> tuple[bool, bool]:
        """Decide and settle both nodes' entries for a contact starting at `now`."""
        for node in nodes.values():
            node.recharge(now)
        sizes = self.cluster_sizes(nodes, positions)

        entered = (self.decide(a, sizes[a.node_id]), self.decide(b, sizes[b.node_id]))
        self.settle(a, entered[0], entered[1])
        self.settle(b, entered[1], entered[0])
        logger.debug(
            "t=%s: energy game %s-%s entered=%s (cluster sizes %d, %d)",
            now, a.node_id, b.node_id, entered, sizes[a.node_id], sizes[b.node_id],
        )
        return entered

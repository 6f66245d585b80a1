"""
Forwarding game: should I take custody of your bundle?

At every contact the two nodes play one round of a repeated two-player game.
Each node picks an action simultaneously (no negotiation) from its declared
strategy:

- COOPERATE: always accept and offer custody
- DEFECT: never accept or offer
- CONDITIONAL: defect if the expected cooperator payoff is below the expected
  defector payoff; otherwise cooperate iff my reputation score for the peer
  exceeds the threshold, else mirror the peer's last observed action
  (tit-for-tat, cooperating when there is no history)

A bundle moves only when both its sender and its receiver cooperate. Bundles
are considered in deadline order (earliest expiry first, ties by id) until
the window's transfer capacity runs out.

Payoffs:
    cooperator: benefit_weight * shape(progress) - storage cost - energy cost
    defector:   defect_baseline - reputation_penalty * (1 - peer's score of me)

The expected payoffs a CONDITIONAL node compares before the contact use the
best progress on offer over the link, the node's own buffer pressure as the
storage cost, and the peer's score of the node as it would stand after the
peer saw a defection.

Reputation: after each resolved contact, each node moves its score for the
peer toward 1.0 (peer cooperated) or 0.0 (peer defected) by an exponential
moving average, clamped to [0, 1].

This computes decisions under declared strategies. It does not search for
equilibria.
"""

from __future__ import annotations
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Literal, TYPE_CHECKING
import logging
import math

from dtnsim.core.bundles import Bundle
from dtnsim.core.store import SIZE_EPS

if TYPE_CHECKING:
    from dtnsim.core.contacts import ContactWindow
    from dtnsim.core.node import Node

logger = logging.getLogger(__name__)


class Strategy(str, Enum):
    COOPERATE = "cooperate"
    DEFECT = "defect"
    CONDITIONAL = "conditional"


class Action(str, Enum):
    COOPERATE = "cooperate"
    DEFECT = "defect"


class TransferDecision(str, Enum):
    NONE = "none"
    A_TO_B = "a->b"
    B_TO_A = "b->a"
    BIDIRECTIONAL = "bidirectional"


@dataclass
class GameConfig:
    """Game and custody-transfer parameters."""

    cooperation_threshold: float = 0.5  # CONDITIONAL cooperates above this score
    benefit_weight: float = 1.0         # Value of one unit of delivery progress
    storage_cost_weight: float = 0.5    # Cost of filling a whole buffer
    energy_cost_weight: float = 0.01    # Cost per unit of energy spent
    defect_baseline: float = 0.05       # Defector's fixed payoff
    reputation_penalty: float = 0.5     # Defector's loss per unit of lost reputation
    payoff_shape: Literal["linear", "concave"] = "linear"
    reputation_alpha: float = 0.2       # EMA step for reputation updates
    reputation_mode: Literal["fixed", "adaptive"] = "fixed"
    replication: Literal["single-copy", "replicate"] = "single-copy"
    max_replicas: int = 1               # Copies allowed under "replicate"
    transfer_energy_cost: float = 1.0   # Energy per unit size, paid by both ends


@dataclass(frozen=True)
class Transfer:
    """One completed custody transfer inside a contact."""

    bundle_id: int
    from_node: int
    to_node: int
    delivered: bool = False
    replicated: bool = False


@dataclass(frozen=True)
class GameOutcome:
    """Result of one round of the forwarding game at a contact."""

    time: float
    node_a: int
    node_b: int
    round: int
    strategies: tuple[Strategy, Strategy]
    actions: tuple[Action, Action]
    payoffs: tuple[float, float]
    decision: TransferDecision
    transfers: tuple[Transfer, ...] = ()
    capacity_rejections: int = 0
    energy_skips: int = 0
    participation: tuple[bool, bool] | None = None  # Energy game entries, when played

    def to_dict(self) -> dict:
        d = asdict(self)
        d["strategies"] = [s.value for s in self.strategies]
        d["actions"] = [a.value for a in self.actions]
        d["decision"] = self.decision.value
        return d


@dataclass
class ActiveContact:
    """A window that is currently open, and what is left of it."""

    window: "ContactWindow"
    remaining: float
    actions: tuple[Action, Action] | None = None
    rounds: int = 0
    entered: tuple[bool, bool] | None = None  # Set by the energy game, if any


@dataclass
class ExchangeResult:
    """Everything a round changed that the scheduler must follow up on."""

    outcome: GameOutcome
    delivered: list[Bundle] = field(default_factory=list)
    evicted: list[tuple[Bundle, int]] = field(default_factory=list)
    receivers: list[int] = field(default_factory=list)


def shape(progress: float, payoff_shape: str = "linear") -> float:
    if payoff_shape == "concave":
        return math.sqrt(max(0.0, progress))
    return progress


def ema_alpha(interactions: int, config: GameConfig) -> float:
    """Step size of the next reputation update after `interactions` prior ones."""
    if config.reputation_mode == "adaptive":
        return max(config.reputation_alpha, 1.0 / (interactions + 1))
    return config.reputation_alpha


def best_offer(node: "Node", peer: "Node") -> tuple[float, float]:
    """
    (progress, size) of the most useful bundle either side could hand over.

    Progress is the receiver's delivery estimate minus the holder's. Bundles
    the receiver already holds are ignored. (0.0, 0.0) when nothing helps.
    """
    best = (0.0, 0.0, 0)
    for holder, receiver in ((node, peer), (peer, node)):
        for view in holder.store.contents_visible_to(receiver.node_id):
            if receiver.store.holds(view.bundle_id):
                continue
            gain = receiver.delivery_estimate(view.destination) - holder.delivery_estimate(view.destination)
            if gain <= 0:
                continue
            best = max(best, (gain, -view.size, -view.bundle_id))
    return best[0], -best[1]


def expected_payoffs(node: "Node", peer: "Node", config: GameConfig) -> tuple[float, float]:
    """
    (cooperate, defect) payoffs `node` expects from the coming contact.

    cooperate: benefit of the best offer, minus the node's buffer pressure
               and the energy the offer would cost
    defect:    baseline, minus the penalty on the reputation the peer would
               hold after observing a defection
    """
    progress, size = best_offer(node, peer)
    cooperate = (
        config.benefit_weight * shape(progress, config.payoff_shape)
        - config.storage_cost_weight * node.store.pressure
        - config.energy_cost_weight * config.transfer_energy_cost * size
    )

    score = peer.reputation_of(node.node_id)
    seen = peer.history.get(node.node_id)
    alpha = ema_alpha(seen.interactions if seen is not None else 0, config)
    after_defection = score * (1.0 - alpha)
    defect = config.defect_baseline - config.reputation_penalty * (1.0 - after_defection)
    return cooperate, defect


def choose_action(node: "Node", peer: "Node", config: GameConfig) -> Action:
    """Action `node` takes toward `peer` under its declared strategy."""
    if node.strategy is Strategy.COOPERATE:
        return Action.COOPERATE
    if node.strategy is Strategy.DEFECT:
        return Action.DEFECT

    cooperate, defect = expected_payoffs(node, peer, config)
    if cooperate < defect:
        logger.debug(
            "node %s defects on %s: expected payoff %.3f < %.3f", node.node_id, peer.node_id, cooperate, defect
        )
        return Action.DEFECT
    if node.reputation_of(peer.node_id) > config.cooperation_threshold:
        return Action.COOPERATE
    last = node.history_with(peer.node_id).last_cooperated
    if last is None or last:
        return Action.COOPERATE
    return Action.DEFECT


def is_eligible(bundle: Bundle, holder: "Node", peer: "Node", custody: dict[int, set[int]]) -> bool:
    """
    Is `peer` a useful next custodian for `bundle` held at `holder`?

    The peer must not already hold a copy or appear on the bundle's path, and
    must be the destination or make reputation-weighted progress toward it.
    """
    if peer.node_id in custody.get(bundle.bundle_id, ()):
        return False
    if bundle.visited(peer.node_id):
        return False
    if peer.node_id == bundle.destination:
        return True
    peer_progress = peer.delivery_estimate(bundle.destination) * holder.reputation_of(peer.node_id)
    return peer_progress > holder.delivery_estimate(bundle.destination)


def update_reputation(node: "Node", peer_id: int, cooperated: bool, config: GameConfig) -> float:
    """EMA step of node's score for peer toward 1.0 or 0.0, clamped to [0, 1]."""
    history = node.history_with(peer_id)
    alpha = ema_alpha(history.interactions, config)

    score = node.reputation_of(peer_id)
    target = 1.0 if cooperated else 0.0
    score = min(1.0, max(0.0, score + alpha * (target - score)))
    node.reputation[peer_id] = score
    history.record(cooperated)
    return score


class ForwardingGameEngine:
    """Plays the forwarding game and applies the resulting custody transfers."""

    def __init__(self, config: GameConfig | None = None):
        self.config = config if config is not None else GameConfig()

    def _payoff(
        self,
        action: Action,
        progress: float,
        stored: float,
        energy: float,
        node: "Node",
        peer: "Node",
    ) -> float:
        cfg = self.config
        if action is Action.DEFECT:
            return cfg.defect_baseline - cfg.reputation_penalty * (1.0 - peer.reputation_of(node.node_id))
        storage_cost = stored / node.capacity if node.capacity > 0 else 0.0
        return (
            cfg.benefit_weight * shape(progress, cfg.payoff_shape)
            - cfg.storage_cost_weight * storage_cost
            - cfg.energy_cost_weight * energy
        )

    def _offers(
        self, a: "Node", b: "Node", custody: dict[int, set[int]]
    ) -> list[tuple[float, int, int]]:
        """Eligible (expires_at, bundle_id, direction) triples, in deadline order."""
        offers = []
        for direction, (holder, peer) in enumerate(((a, b), (b, a))):
            for view in holder.store.contents_visible_to(peer.node_id):
                bundle = holder.store.get(view.bundle_id)
                if is_eligible(bundle, holder, peer, custody):
                    offers.append((view.expires_at, view.bundle_id, direction))
        offers.sort()
        return offers

    def play(
        self,
        a: "Node",
        b: "Node",
        contact: ActiveContact,
        now: float,
        custody: dict[int, set[int]],
    ) -> ExchangeResult:
        """
        Play one round at an open contact and apply its transfers.

        Round 0 (contact start) picks both actions and updates reputations.
        Later rounds (bundles arriving mid-contact) reuse the round-0 actions.
        """
        cfg = self.config
        round_index = contact.rounds
        contact.rounds += 1
        a.recharge(now)
        b.recharge(now)

        if contact.actions is None:
            chosen = (choose_action(a, b, cfg), choose_action(b, a, cfg))
            if contact.entered is not None:
                # A node that stayed out of the energy game sits the contact out
                chosen = tuple(
                    action if joined else Action.DEFECT for action, joined in zip(chosen, contact.entered)
                )
            contact.actions = chosen
        actions = contact.actions

        nodes = (a, b)
        progress = [0.0, 0.0]
        stored = [0.0, 0.0]
        energy = [0.0, 0.0]
        transfers: list[Transfer] = []
        delivered: list[Bundle] = []
        evicted: list[tuple[Bundle, int]] = []
        receivers: list[int] = []
        rejections = 0
        energy_skips = 0

        for _, bundle_id, direction in self._offers(a, b, custody):
            s, r = direction, 1 - direction
            sender, receiver = nodes[s], nodes[r]
            if not sender.store.holds(bundle_id):
                continue
            bundle = sender.store.get(bundle_id)
            if bundle.size > contact.remaining + SIZE_EPS:
                break
            if actions[s] is Action.DEFECT or actions[r] is Action.DEFECT:
                continue

            cost = cfg.transfer_energy_cost * bundle.size
            if not (sender.can_afford(cost) and receiver.can_afford(cost)):
                energy_skips += 1
                continue

            is_delivery = receiver.node_id == bundle.destination
            holders = custody.setdefault(bundle_id, set())
            replicate = (
                cfg.replication == "replicate"
                and not is_delivery
                and len(holders) < cfg.max_replicas
            )
            gain = receiver.delivery_estimate(bundle.destination) - sender.delivery_estimate(bundle.destination)

            candidate = bundle.replicate()
            candidate.record_hop(receiver.node_id, now)
            admitted = receiver.store.admit(candidate)
            for victim in admitted.evicted:
                custody.get(victim.bundle_id, set()).discard(receiver.node_id)
                evicted.append((victim, receiver.node_id))
            if admitted.rejected:
                rejections += 1
                logger.debug("t=%s: node %s rejected bundle %s (buffer full)", now, receiver.node_id, bundle_id)
                continue

            holders.add(receiver.node_id)
            if not replicate:
                sender.store.remove(bundle_id)
                holders.discard(sender.node_id)

            sender.spend(cost)
            receiver.spend(cost)
            contact.remaining -= bundle.size
            energy[s] += cost
            energy[r] += cost
            progress[s] += gain
            progress[r] += gain

            if is_delivery:
                receiver.store.remove(bundle_id)
                holders.discard(receiver.node_id)
                delivered.append(candidate)
            else:
                stored[r] += bundle.size
                receivers.append(receiver.node_id)

            transfers.append(Transfer(
                bundle_id=bundle_id,
                from_node=sender.node_id,
                to_node=receiver.node_id,
                delivered=is_delivery,
                replicated=replicate,
            ))
            logger.debug(
                "t=%s: bundle %s %s -> %s%s", now, bundle_id, sender.node_id, receiver.node_id,
                " (delivered)" if is_delivery else "",
            )

        payoffs = (
            self._payoff(actions[0], progress[0], stored[0], energy[0], a, b),
            self._payoff(actions[1], progress[1], stored[1], energy[1], b, a),
        )

        if round_index == 0:
            update_reputation(a, b.node_id, actions[1] is Action.COOPERATE, cfg)
            update_reputation(b, a.node_id, actions[0] is Action.COOPERATE, cfg)

        outcome = GameOutcome(
            time=now,
            node_a=a.node_id,
            node_b=b.node_id,
            round=round_index,
            strategies=(a.strategy, b.strategy),
            actions=actions,
            payoffs=payoffs,
            decision=_decision(transfers, a.node_id),
            transfers=tuple(transfers),
            capacity_rejections=rejections,
            energy_skips=energy_skips,
            participation=contact.entered,
        )
        return ExchangeResult(outcome=outcome, delivered=delivered, evicted=evicted, receivers=receivers)


def _decision(transfers: list[Transfer], node_a: int) -> TransferDecision:
    a_to_b = any(t.from_node == node_a for t in transfers)
    b_to_a = any(t.from_node != node_a for t in transfers)
    if a_to_b and b_to_a:
        return TransferDecision.BIDIRECTIONAL
    if a_to_b:
        return TransferDecision.A_TO_B
    if b_to_a:
        return TransferDecision.B_TO_A
    return TransferDecision.NONE

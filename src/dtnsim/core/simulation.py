"""
Simulation: the control surface over the engine.

Lifecycle:
    sim = Simulation({"n_nodes": 6, "seed": 3})
    snapshot = sim.step(10.0)     # advance ten time units
    sim.stage(injection_rate=0.1) # applied at the next step
    sim.request_stop()            # honoured between events
    sim.reset(seed=4)             # fresh state, same options

Snapshots are immutable copies: nothing a renderer or a sweep does to
one can reach back into the engine.

An InvariantViolation halts the run. The exception carries the last
consistent snapshot, and every later step() raises it again until reset().
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Iterator, Mapping
import heapq
import logging
import threading

import numpy as np

from dtnsim.errors import ConfigError, InvariantViolation
from dtnsim.analysis.metrics import MetricsCollector, MetricsSummary
from dtnsim.core.bundles import BundleFactory, Injection, TrafficGenerator, scripted_injections
from dtnsim.core.config import TUNABLE_OPTIONS, ScenarioConfig
from dtnsim.core.constellation import Constellation, ConstellationConfig
from dtnsim.core.contacts import (
    ContactModel,
    OrbitalContactModel,
    PoissonContactModel,
    TableContactModel,
)
from dtnsim.core.events import EventQueue
from dtnsim.core.game import ForwardingGameEngine, GameOutcome
from dtnsim.core.node import Node
from dtnsim.core.scheduler import EventScheduler, SimulationState
from dtnsim.core.store import EVICTION_POLICIES, NodeStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NodeSnapshot:
    node_id: int
    kind: str
    position: tuple[float, float]
    strategy: str
    stored: tuple[int, ...]
    occupancy: float
    capacity: float
    energy: float
    reputation: tuple[tuple[int, float], ...]  # (peer, score) for peers met so far


@dataclass(frozen=True)
class Snapshot:
    """Immutable view of the simulation at one instant."""

    time: float
    nodes: tuple[NodeSnapshot, ...]
    active_contacts: tuple[tuple[int, int], ...]
    metrics: MetricsSummary
    anomalies: int
    stopped: bool = False
    finished: bool = False
    clusters: tuple[tuple[int, tuple[int, ...]], ...] = ()  # (head, members) from the energy game

    def positions(self) -> np.ndarray:
        return np.array([n.position for n in self.nodes], dtype=np.float64)

    def reputation_matrix(self, default: float = np.nan) -> np.ndarray:
        """[i, j] = node i's score for node j (`default` where i never met j)."""
        n = len(self.nodes)
        matrix = np.full((n, n), default, dtype=np.float64)
        for node in self.nodes:
            for peer, score in node.reputation:
                matrix[node.node_id, peer] = score
        return matrix


def build_contact_model(config: ScenarioConfig, constellation: Constellation) -> ContactModel:
    if config.contact_model == "table":
        return TableContactModel(config.contact_table)
    if config.contact_model == "orbital":
        return OrbitalContactModel(
            constellation,
            comm_range=config.comm_range,
            resolution=config.contact_resolution,
            horizon=config.end_time,
            capacity_rate=config.contact_capacity_rate,
        )
    return PoissonContactModel(
        range(config.n_nodes),
        rate=config.contact_rate,
        mean_duration=config.mean_contact_duration,
        capacity_rate=config.contact_capacity_rate,
        seed=config.seed,
        min_duration=config.min_contact_duration,
    )


def scripted_trace(config: ScenarioConfig) -> list[Injection]:
    """Scripted injections as Injection objects. Raises ConfigError on bad entries."""
    trace = []
    for raw in config.injections:
        try:
            injection = raw if isinstance(raw, Injection) else Injection(*raw)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Bad injection {raw!r}: {exc}") from None
        for node in (injection.source, injection.destination):
            if not 0 <= node < config.n_nodes:
                raise ConfigError(f"Injection {raw!r} refers to unknown node {node}")
        if injection.time < 0:
            raise ConfigError(f"Injection {raw!r} has negative time")
        trace.append(injection)
    return trace


def _check_table(config: ScenarioConfig):
    for raw in config.contact_table:
        try:
            a, b = (raw.node_a, raw.node_b) if hasattr(raw, "node_a") else tuple(raw)[:2]
        except (TypeError, ValueError):
            # Rows without two endpoints are dropped as anomalies at ingestion
            continue
        for node in (a, b):
            if not (isinstance(node, int) and 0 <= node < config.n_nodes):
                raise ConfigError(f"Contact {raw!r} refers to unknown node {node!r}")


class Simulation:
    """One configured scenario and its running state."""

    def __init__(self, options: Mapping[str, Any] | ScenarioConfig | None = None, **kwargs):
        self.config: ScenarioConfig | None = None
        self.configure(options, **kwargs)

    # --- configuration ---

    def configure(self, options: Mapping[str, Any] | ScenarioConfig | None = None, **kwargs) -> ScenarioConfig:
        """Validate options and build fresh state. Raises ConfigError before touching anything."""
        if isinstance(options, ScenarioConfig):
            config = options.with_changes(**kwargs)
        else:
            config = ScenarioConfig.from_options(options, **kwargs)
        scripted_trace(config)
        if config.contact_model == "table":
            _check_table(config)

        self.config = config
        self.reset()
        return config

    def reset(self, seed: int | None = None):
        """Rebuild all state from the current options, optionally with a new seed."""
        if seed is not None:
            self.config = self.config.with_changes(seed=seed)
        cfg = self.config

        self.constellation = Constellation(ConstellationConfig(
            n_satellites=cfg.n_nodes - cfg.n_ground_stations,
            n_ground_stations=cfg.n_ground_stations,
            seed=cfg.seed,
        ))
        nodes = {
            i: Node(
                node_id=i,
                store=NodeStore(cfg.capacity, EVICTION_POLICIES[cfg.eviction]()),
                strategy=cfg.strategy_for(i),
                initial_reputation=cfg.initial_reputation,
                energy=cfg.energy_capacity,
                energy_capacity=cfg.energy_capacity,
                recharge_rate=cfg.energy_recharge_rate,
            )
            for i in range(cfg.n_nodes)
        }

        self.contact_model = build_contact_model(cfg, self.constellation)
        self.traffic = TrafficGenerator(
            list(range(cfg.n_nodes)),
            rate=cfg.injection_rate,
            ttl_range=cfg.ttl_range,
            size_range=cfg.bundle_size_range,
            seed=cfg.seed,
        )
        self.state = SimulationState(
            nodes=nodes,
            queue=EventQueue(0.0),
            anomalies=self.contact_model.anomalies,
        )
        self.metrics = MetricsCollector()
        self.engine = ForwardingGameEngine(cfg.game_config())
        self.scheduler = EventScheduler(
            state=self.state,
            engine=self.engine,
            metrics=self.metrics,
            contacts=self.contact_model.windows(0.0),
            injections=self._injections(0.0),
            factory=BundleFactory(),
            check_invariants=cfg.check_invariants,
            energy_game=cfg.energy_game(),
            positions=self.constellation.positions,
        )
        self.scheduler.seed()

        self._staged: dict[str, Any] = {}
        self._stop = threading.Event()
        self._halted: InvariantViolation | None = None
        self._last_snapshot = self.snapshot()
        logger.info(
            "Simulation reset: %d nodes, contact model %s, seed=%d",
            cfg.n_nodes, cfg.contact_model, cfg.seed,
        )

    def _injections(self, from_time: float) -> Iterator[Injection]:
        scripted = scripted_injections([i for i in scripted_trace(self.config) if i.time >= from_time])
        return heapq.merge(scripted, self.traffic.injections(from_time), key=lambda inj: inj.time)

    def stage(self, **changes):
        """
        Queue option changes for the next step().

        Only tunable options may change while running; anything else needs
        reset() and raises ConfigError here. end_time may not move behind the
        clock, nor past the horizon orbital contacts were computed for.
        """
        structural = sorted(set(changes) - TUNABLE_OPTIONS)
        if structural:
            raise ConfigError(f"Option(s) {', '.join(structural)} cannot change while running; use reset()")
        staged = self.config.with_changes(**{**self._staged, **changes})
        if "end_time" in changes:
            if staged.end_time < self.time:
                raise ConfigError(f"end_time {staged.end_time} is earlier than the clock ({self.time})")
            if isinstance(self.contact_model, OrbitalContactModel) and staged.end_time > self.contact_model.horizon:
                raise ConfigError(
                    f"end_time {staged.end_time} is past the orbital contact horizon "
                    f"({self.contact_model.horizon}); use reset()"
                )
        self._staged.update(changes)

    def _apply_staged(self):
        if not self._staged:
            return
        self.config = self.config.with_changes(**self._staged)
        logger.info("t=%s: applied staged options %s", self.time, sorted(self._staged))
        self._staged.clear()

        self.engine.config = self.config.game_config()
        self.traffic.rate = self.config.injection_rate
        if self.traffic.rate > 0 and self.scheduler.injections_exhausted:
            self.scheduler.restart_injections(self.traffic.injections(self.time))

    def request_stop(self):
        """Ask a running step() to return at the next event boundary. Safe from any thread."""
        self._stop.set()

    # --- running ---

    @property
    def time(self) -> float:
        return self.state.time

    @property
    def finished(self) -> bool:
        return self.time >= self.config.end_time

    @property
    def outcomes(self) -> tuple[GameOutcome, ...]:
        return self.metrics.outcomes

    def step(self, delta: float) -> Snapshot:
        """Advance simulated time by `delta` (clamped to end_time) and return a snapshot."""
        if self._halted is not None:
            raise InvariantViolation(str(self._halted), snapshot=self._last_snapshot)
        if delta < 0:
            raise ValueError(f"step delta must be >= 0, got {delta}")
        if self._stop.is_set():
            return self.snapshot(stopped=True)

        self._apply_staged()
        target = min(self.time + delta, self.config.end_time)
        try:
            stopped = self.scheduler.run_until(target, should_stop=self._stop.is_set)
        except InvariantViolation as exc:
            exc.snapshot = self._last_snapshot
            self._halted = exc
            logger.error("Simulation halted at t=%s: %s", self.time, exc)
            raise

        self._last_snapshot = self.snapshot(stopped=stopped)
        return self._last_snapshot

    def run(self) -> Snapshot:
        """Run to end_time (or until a stop is requested)."""
        return self.step(self.config.end_time - self.time)

    # --- observation ---

    def snapshot(self, stopped: bool = False) -> Snapshot:
        positions = self.constellation.positions(self.time)
        nodes = []
        for node_id in sorted(self.state.nodes):
            node = self.state.nodes[node_id]
            nodes.append(NodeSnapshot(
                node_id=node_id,
                kind=self.constellation.kind(node_id),
                position=(float(positions[node_id, 0]), float(positions[node_id, 1])),
                strategy=node.strategy.value,
                stored=tuple(b.bundle_id for b in node.store),
                occupancy=node.store.used,
                capacity=node.capacity,
                energy=node.energy,
                reputation=tuple(sorted(node.reputation.items())),
            ))
        return Snapshot(
            time=self.time,
            nodes=tuple(nodes),
            active_contacts=tuple(sorted(self.state.active)),
            metrics=self.metrics.summary(),
            anomalies=len(self.state.anomalies),
            stopped=stopped or self._stop.is_set(),
            finished=self.finished,
            clusters=self._clusters(),
        )

    def _clusters(self) -> tuple[tuple[int, tuple[int, ...]], ...]:
        game = self.scheduler.energy_game
        if game is None:
            return ()
        return tuple((c.head, c.members) for c in game.clusters)

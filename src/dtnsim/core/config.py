"""
Scenario configuration.

Every option has a documented domain. `validate()` rejects anything outside
it with ConfigError, before any simulation state is built.

Options split in two groups:
- Structural (node count, capacity, seed, contact model, strategies, ...):
  fixed for the lifetime of a run; changing them requires reset()
- Tunable (injection rate, game weights and thresholds, end time): may be
  staged while running and are applied at the next tick boundary
"""

from __future__ import annotations
from dataclasses import dataclass, field, fields, replace
from numbers import Real
from typing import Any, Literal, Mapping

from dtnsim.errors import ConfigError
from dtnsim.core.energy import EnergyGame
from dtnsim.core.game import GameConfig, Strategy
from dtnsim.core.store import EVICTION_POLICIES

TUNABLE_OPTIONS = frozenset({
    "injection_rate",
    "cooperation_threshold",
    "benefit_weight",
    "storage_cost_weight",
    "energy_cost_weight",
    "defect_baseline",
    "reputation_penalty",
    "payoff_shape",
    "reputation_alpha",
    "reputation_mode",
    "end_time",
})


@dataclass
class ScenarioConfig:
    """All recognised scenario options, with defaults."""

    # Population and storage
    n_nodes: int = 8
    n_ground_stations: int = 0
    capacity: float = 20.0
    eviction: Literal["deadline", "reject"] = "deadline"

    # Traffic
    injection_rate: float = 0.5
    ttl_range: tuple[float, float] = (50.0, 200.0)
    bundle_size_range: tuple[float, float] = (1.0, 1.0)
    injections: list = field(default_factory=list)  # Scripted Injection trace

    # Strategies
    default_strategy: Strategy = Strategy.CONDITIONAL
    strategies: dict[int, Strategy] = field(default_factory=dict)  # Per-node overrides
    initial_reputation: float = 1.0

    # Game parameters (see GameConfig)
    cooperation_threshold: float = 0.5
    benefit_weight: float = 1.0
    storage_cost_weight: float = 0.5
    energy_cost_weight: float = 0.01
    defect_baseline: float = 0.05
    reputation_penalty: float = 0.5
    payoff_shape: Literal["linear", "concave"] = "linear"
    reputation_alpha: float = 0.2
    reputation_mode: Literal["fixed", "adaptive"] = "fixed"
    replication: Literal["single-copy", "replicate"] = "single-copy"
    max_replicas: int = 2

    # Contacts
    contact_model: Literal["poisson", "orbital", "table"] = "poisson"
    contact_rate: float = 0.02
    mean_contact_duration: float = 5.0
    min_contact_duration: float = 0.0
    contact_capacity_rate: float = 2.0
    comm_range: float = 15000.0
    contact_resolution: float = 1.0
    contact_table: list = field(default_factory=list)

    # Energy
    energy_capacity: float = 100.0
    energy_recharge_rate: float = 1.0
    transfer_energy_cost: float = 1.0
    energy_mode: Literal["budget", "nash"] = "budget"
    participation_cost: float = 2.0       # Energy game: paid on entry
    participation_gain: float = 3.0       # Energy game: recharge when the peer entered
    cluster_energy_threshold: float = 50.0
    cluster_distance: float = 10000.0     # Minimum spacing of cluster heads (km)

    # Run control
    end_time: float = 1000.0
    seed: int = 0
    check_invariants: bool = True

    @classmethod
    def from_options(cls, options: Mapping[str, Any] | None = None, **kwargs) -> ScenarioConfig:
        """Build and validate a config from a mapping of option names."""
        merged = dict(options or {})
        merged.update(kwargs)
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(merged) - known)
        if unknown:
            raise ConfigError(f"Unknown option(s): {', '.join(unknown)}")
        config = cls(**merged)
        config.validate()
        return config

    def with_changes(self, **changes) -> ScenarioConfig:
        """Validated copy with some options replaced."""
        known = {f.name for f in fields(self)}
        unknown = sorted(set(changes) - known)
        if unknown:
            raise ConfigError(f"Unknown option(s): {', '.join(unknown)}")
        config = replace(self, **changes)
        config.validate()
        return config

    def validate(self):
        """Raise ConfigError if any option lies outside its domain. Normalises enums and ranges."""
        _integer("n_nodes", self.n_nodes, minimum=2)
        _integer("n_ground_stations", self.n_ground_stations, minimum=0)
        if self.n_ground_stations >= self.n_nodes:
            raise ConfigError("n_ground_stations must leave at least one satellite")
        _number("capacity", self.capacity, positive=True)
        _choice("eviction", self.eviction, EVICTION_POLICIES)

        _number("injection_rate", self.injection_rate, minimum=0.0)
        self.ttl_range = _range("ttl_range", self.ttl_range)
        self.bundle_size_range = _range("bundle_size_range", self.bundle_size_range)

        self.default_strategy = _strategy("default_strategy", self.default_strategy)
        self.strategies = {
            node: _strategy(f"strategies[{node}]", s) for node, s in dict(self.strategies).items()
        }
        for node in self.strategies:
            if not (isinstance(node, int) and 0 <= node < self.n_nodes):
                raise ConfigError(f"strategies refers to unknown node {node!r}")
        _number("initial_reputation", self.initial_reputation, minimum=0.0, maximum=1.0)

        _number("cooperation_threshold", self.cooperation_threshold, minimum=0.0, maximum=1.0)
        for name in ("benefit_weight", "storage_cost_weight", "energy_cost_weight", "reputation_penalty"):
            _number(name, getattr(self, name), minimum=0.0)
        _number("defect_baseline", self.defect_baseline)
        _choice("payoff_shape", self.payoff_shape, ("linear", "concave"))
        _number("reputation_alpha", self.reputation_alpha, positive=True, maximum=1.0)
        _choice("reputation_mode", self.reputation_mode, ("fixed", "adaptive"))
        _choice("replication", self.replication, ("single-copy", "replicate"))
        _integer("max_replicas", self.max_replicas, minimum=1)

        _choice("contact_model", self.contact_model, ("poisson", "orbital", "table"))
        _number("contact_rate", self.contact_rate, minimum=0.0)
        _number("mean_contact_duration", self.mean_contact_duration, positive=True)
        _number("min_contact_duration", self.min_contact_duration, minimum=0.0)
        _number("contact_capacity_rate", self.contact_capacity_rate, positive=True)
        _number("comm_range", self.comm_range, positive=True)
        _number("contact_resolution", self.contact_resolution, positive=True)

        _number("energy_capacity", self.energy_capacity, positive=True)
        _number("energy_recharge_rate", self.energy_recharge_rate, minimum=0.0)
        _number("transfer_energy_cost", self.transfer_energy_cost, minimum=0.0)
        _choice("energy_mode", self.energy_mode, ("budget", "nash"))
        for name in ("participation_cost", "participation_gain", "cluster_energy_threshold"):
            _number(name, getattr(self, name), minimum=0.0)
        _number("cluster_distance", self.cluster_distance, positive=True)

        _number("end_time", self.end_time, positive=True)
        _integer("seed", self.seed, minimum=0)
        if not isinstance(self.check_invariants, bool):
            raise ConfigError("check_invariants must be a bool")

    def game_config(self) -> GameConfig:
        return GameConfig(
            cooperation_threshold=self.cooperation_threshold,
            benefit_weight=self.benefit_weight,
            storage_cost_weight=self.storage_cost_weight,
            energy_cost_weight=self.energy_cost_weight,
            defect_baseline=self.defect_baseline,
            reputation_penalty=self.reputation_penalty,
            payoff_shape=self.payoff_shape,
            reputation_alpha=self.reputation_alpha,
            reputation_mode=self.reputation_mode,
            replication=self.replication,
            max_replicas=self.max_replicas if self.replication == "replicate" else 1,
            transfer_energy_cost=self.transfer_energy_cost,
        )

    def energy_game(self) -> EnergyGame | None:
        """The entry game for energy_mode="nash", None otherwise."""
        if self.energy_mode != "nash":
            return None
        return EnergyGame(
            cost=self.participation_cost,
            gain=self.participation_gain,
            energy_threshold=self.cluster_energy_threshold,
            cluster_distance=self.cluster_distance,
            seed=self.seed,
        )

    def strategy_for(self, node_id: int) -> Strategy:
        return self.strategies.get(node_id, self.default_strategy)


def _is_real(value) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def _number(name, value, minimum=None, maximum=None, positive=False):
    if not _is_real(value) or value != value:
        raise ConfigError(f"{name} must be a number, got {value!r}")
    if positive and value <= 0:
        raise ConfigError(f"{name} must be > 0, got {value}")
    if minimum is not None and value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    if maximum is not None and value > maximum:
        raise ConfigError(f"{name} must be <= {maximum}, got {value}")


def _integer(name, value, minimum=None):
    if not isinstance(value, int) or isinstance(value, bool):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    _number(name, value, minimum=minimum)


def _choice(name, value, allowed):
    if value not in allowed:
        raise ConfigError(f"{name} must be one of {sorted(allowed)}, got {value!r}")


def _range(name, value) -> tuple[float, float]:
    try:
        low, high = value
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a (min, max) pair, got {value!r}") from None
    _number(f"{name}[0]", low, positive=True)
    _number(f"{name}[1]", high, positive=True)
    if low > high:
        raise ConfigError(f"{name} has min > max: {value!r}")
    return float(low), float(high)


def _strategy(name, value) -> Strategy:
    try:
        return Strategy(value)
    except ValueError:
        raise ConfigError(
            f"{name} must be one of {[s.value for s in Strategy]}, got {value!r}"
        ) from None

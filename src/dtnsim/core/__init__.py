"""
Core engine.

This layer knows NOTHING about metrics aggregation, sweeps or plotting.
It only knows:
- Bundles, their deadlines and their custody path
- Contact windows (the only chance to move data)
- Bounded node stores with admission, eviction and expiry
- The forwarding game played at every contact
- An optional energy entry game over node clusters
- A time-ordered event queue and the loop that drains it

The Simulation facade is the control surface: configure, step, reset,
stage, request_stop.
"""

from dtnsim.core.bundles import Bundle, BundleFactory, Hop, Injection, TrafficGenerator
from dtnsim.core.constellation import Constellation, ConstellationConfig
from dtnsim.core.contacts import (
    ContactAnomaly,
    ContactModel,
    ContactWindow,
    OrbitalContactModel,
    PoissonContactModel,
    TableContactModel,
    ingest_contacts,
)
from dtnsim.core.store import AdmitResult, BundleView, NodeStore, DeadlineEviction, RejectWhenFull
from dtnsim.core.node import Node, PeerHistory
from dtnsim.core.events import Event, EventKind, EventQueue
from dtnsim.core.energy import Cluster, EnergyGame, entry_probability, form_clusters
from dtnsim.core.game import (
    Action,
    ForwardingGameEngine,
    GameConfig,
    GameOutcome,
    Strategy,
    Transfer,
    TransferDecision,
)
from dtnsim.core.config import ScenarioConfig, TUNABLE_OPTIONS
from dtnsim.core.scheduler import EventScheduler, SimulationState
from dtnsim.core.simulation import NodeSnapshot, Simulation, Snapshot

__all__ = [
    "Bundle",
    "BundleFactory",
    "Hop",
    "Injection",
    "TrafficGenerator",
    "Constellation",
    "ConstellationConfig",
    "ContactAnomaly",
    "ContactModel",
    "ContactWindow",
    "OrbitalContactModel",
    "PoissonContactModel",
    "TableContactModel",
    "ingest_contacts",
    "AdmitResult",
    "BundleView",
    "NodeStore",
    "DeadlineEviction",
    "RejectWhenFull",
    "Node",
    "PeerHistory",
    "Event",
    "EventKind",
    "EventQueue",
    # Energy entry game
    "Cluster",
    "EnergyGame",
    "entry_probability",
    "form_clusters",
    # Forwarding game
    "Action",
    "ForwardingGameEngine",
    "GameConfig",
    "GameOutcome",
    "Strategy",
    "Transfer",
    "TransferDecision",
    # Running
    "ScenarioConfig",
    "TUNABLE_OPTIONS",
    "EventScheduler",
    "SimulationState",
    "NodeSnapshot",
    "Simulation",
    "Snapshot",
]

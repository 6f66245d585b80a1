"""
Constellation: where the nodes are.

Positions are opaque to the engine. They matter only to the orbital contact
model (who is within range of whom) and to snapshots handed to renderers.

This is a toy geometry, not orbital mechanics:
- Satellites ride circular, coplanar orbits in one of three shells (LEO/MEO/GEO)
- Angular velocity follows sqrt(mu / r^3)
- Ground stations sit on the Earth's surface and rotate with it
"""

from __future__ import annotations
from dataclasses import dataclass, field

import numpy as np

# Seed-sequence tag for the constellation random stream
CONSTELLATION_STREAM = 3

EARTH_RADIUS_KM = 6371.0
EARTH_MU_KM3_S2 = 3.986004418e5
EARTH_ROTATION_RAD_S = 2.0 * np.pi / 86164.0

# Altitude ranges (km) per orbit shell
ORBIT_SHELLS = {
    "leo": (500.0, 1200.0),
    "meo": (5000.0, 20000.0),
    "geo": (35786.0, 35786.0),
}


@dataclass
class ConstellationConfig:
    """Configuration for a constellation of satellites plus ground stations."""

    n_satellites: int
    n_ground_stations: int = 0
    shells: tuple[str, ...] = ("leo", "meo", "geo")
    time_scale: float = 60.0  # Seconds of orbit per simulated time unit
    seed: int = 0


@dataclass
class Constellation:
    """
    Circular-orbit positions for every node.

    Node ids: satellites are 0..n_satellites-1, ground stations follow.
    """

    config: ConstellationConfig

    radius: np.ndarray = field(default=None, init=False)
    angular_velocity: np.ndarray = field(default=None, init=False)
    phase: np.ndarray = field(default=None, init=False)
    kinds: list[str] = field(default=None, init=False)

    def __post_init__(self):
        cfg = self.config
        rng = np.random.default_rng((cfg.seed, CONSTELLATION_STREAM))
        n_sat, n_gs = cfg.n_satellites, cfg.n_ground_stations

        shell_idx = rng.integers(0, len(cfg.shells), size=n_sat)
        altitudes = np.array([
            rng.uniform(*ORBIT_SHELLS[cfg.shells[i]]) for i in shell_idx
        ], dtype=np.float64)
        sat_radius = EARTH_RADIUS_KM + altitudes
        sat_omega = np.sqrt(EARTH_MU_KM3_S2 / sat_radius ** 3)

        gs_radius = np.full(n_gs, EARTH_RADIUS_KM, dtype=np.float64)
        gs_omega = np.full(n_gs, EARTH_ROTATION_RAD_S, dtype=np.float64)

        self.radius = np.concatenate([sat_radius, gs_radius])
        self.angular_velocity = np.concatenate([sat_omega, gs_omega]) * cfg.time_scale
        self.phase = rng.uniform(0.0, 2.0 * np.pi, size=n_sat + n_gs)
        self.kinds = [cfg.shells[i] for i in shell_idx] + ["ground"] * n_gs

    @property
    def n_nodes(self) -> int:
        return len(self.radius)

    def positions(self, t: float) -> np.ndarray:
        """Node positions (km) at time t, shape [n_nodes, 2]."""
        angle = self.phase + self.angular_velocity * t
        return np.column_stack([self.radius * np.cos(angle), self.radius * np.sin(angle)])

    def distances(self, t: float) -> np.ndarray:
        """Pairwise distance matrix at time t, shape [n_nodes, n_nodes]."""
        pos = self.positions(t)
        delta = pos[:, None, :] - pos[None, :, :]
        return np.sqrt((delta ** 2).sum(axis=-1))

    def kind(self, node_id: int) -> str:
        return self.kinds[node_id]

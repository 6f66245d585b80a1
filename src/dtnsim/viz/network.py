"""
Network view of a snapshot.

Nodes are drawn at their Constellation positions, coloured by strategy and
sized by buffer occupancy; open contacts are drawn as links. Energy-game
clusters, when present, are drawn as dashed spokes to their head. The Earth
is a disc at the origin.
"""

from __future__ import annotations
from typing import TYPE_CHECKING

import numpy as np
import matplotlib.pyplot as plt
from matplotlib.figure import Figure
from matplotlib.axes import Axes
from matplotlib.patches import Circle

from dtnsim.core.constellation import EARTH_RADIUS_KM

if TYPE_CHECKING:
    from dtnsim.core.simulation import Snapshot


STRATEGY_COLORS = {
    "cooperate": "#2a9d8f",
    "conditional": "#e9c46a",
    "defect": "#e76f51",
}

KIND_MARKERS = {
    "leo": "o",
    "meo": "s",
    "geo": "D",
    "ground": "^",
}


def plot_snapshot(
    snapshot: "Snapshot",
    title: str | None = None,
    ax: Axes | None = None,
    figsize: tuple[float, float] = (8, 8),
    show_labels: bool = True,
    show_earth: bool = True,
) -> tuple[Figure, Axes]:
    """
    Plot node positions and active contact links.

    Args:
        snapshot: Snapshot from Simulation.step()
        title: Plot title (defaults to the snapshot time)
        ax: Existing axes (creates new if None)
        show_labels: Annotate nodes with their ids
        show_earth: Draw the Earth disc

    Returns:
        (fig, ax) tuple
    """
    if ax is None:
        fig, ax = plt.subplots(figsize=figsize)
    else:
        fig = ax.figure

    positions = snapshot.positions()

    if show_earth:
        ax.add_patch(Circle((0.0, 0.0), EARTH_RADIUS_KM, color="#a8dadc", alpha=0.4, zorder=0))

    for a, b in snapshot.active_contacts:
        ax.plot(
            [positions[a, 0], positions[b, 0]],
            [positions[a, 1], positions[b, 1]],
            color="gray", linewidth=1.5, alpha=0.7, zorder=1,
        )

    for head, members in snapshot.clusters:
        for member in members:
            if member == head:
                continue
            ax.plot(
                [positions[head, 0], positions[member, 0]],
                [positions[head, 1], positions[member, 1]],
                color="#457b9d", linestyle="--", linewidth=0.8, alpha=0.6, zorder=1,
            )

    for kind, marker in KIND_MARKERS.items():
        members = [n for n in snapshot.nodes if n.kind == kind]
        if not members:
            continue
        ax.scatter(
            [n.position[0] for n in members],
            [n.position[1] for n in members],
            c=[STRATEGY_COLORS[n.strategy] for n in members],
            s=[40 + 160 * (n.occupancy / n.capacity) for n in members],
            marker=marker,
            edgecolors="black",
            linewidths=0.8,
            zorder=2,
            label=kind,
        )

    if show_labels:
        for node in snapshot.nodes:
            ax.annotate(str(node.node_id), node.position, textcoords="offset points", xytext=(5, 5), fontsize=8)

    if title is None:
        m = snapshot.metrics
        title = f"t = {snapshot.time:.1f}  delivered {m.delivered}/{m.injected}"
    ax.set_title(title)
    ax.set_xlabel("x (km)")
    ax.set_ylabel("y (km)")
    ax.set_aspect("equal")
    if len(snapshot.nodes) > 0:
        extent = max(float(np.abs(positions).max()), EARTH_RADIUS_KM) * 1.1
        ax.set_xlim(-extent, extent)
        ax.set_ylim(-extent, extent)
    ax.legend(loc="upper right", fontsize=8)

    return fig, ax

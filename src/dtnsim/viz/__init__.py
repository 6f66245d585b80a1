"""
Visualization utilities.

- Network view (positions, strategies, open contacts)
- Latency histogram
- Reputation matrix
- Sweep curves
"""

from dtnsim.viz.network import plot_snapshot
from dtnsim.viz.metrics import (
    plot_latency_histogram,
    plot_reputation_matrix,
    plot_sweep,
    save_figure,
)

__all__ = [
    "plot_snapshot",
    "plot_latency_histogram",
    "plot_reputation_matrix",
    "plot_sweep",
    "save_figure",
]

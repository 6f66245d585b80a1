"""
Metric plots: latency distribution, reputation matrix, sweep curves.

All functions take read-only data (a MetricsCollector, a Snapshot, sweep
summaries) and return (fig, ax).
"""

from __future__ import annotations
from pathlib import Path
from typing import TYPE_CHECKING, Sequence

import numpy as np
import matplotlib.pyplot as plt
from matplotlib.figure import Figure
from matplotlib.axes import Axes

if TYPE_CHECKING:
    from dtnsim.analysis.metrics import MetricsCollector
    from dtnsim.analysis.sweep import SweepSummary
    from dtnsim.core.simulation import Snapshot


def plot_latency_histogram(
    metrics: "MetricsCollector",
    bins: int = 20,
    title: str = "Delivery Latency",
    ax: Axes | None = None,
    figsize: tuple[float, float] = (8, 5),
) -> tuple[Figure, Axes]:
    """Histogram of delivery latencies, with mean and median marked."""
    if ax is None:
        fig, ax = plt.subplots(figsize=figsize)
    else:
        fig = ax.figure

    latencies = metrics.latencies()
    if len(latencies) > 0:
        ax.hist(latencies, bins=bins, color="#457b9d", edgecolor="white")
        ax.axvline(float(np.mean(latencies)), color="#e63946", linestyle="--", label="mean")
        ax.axvline(float(np.median(latencies)), color="#1d3557", linestyle=":", label="median")
        ax.legend(loc="upper right")
    else:
        ax.text(0.5, 0.5, "no deliveries", ha="center", va="center", transform=ax.transAxes)

    ax.set_title(title)
    ax.set_xlabel("latency")
    ax.set_ylabel("bundles")
    return fig, ax


def plot_reputation_matrix(
    snapshot: "Snapshot",
    title: str = "Reputation (row's score for column)",
    ax: Axes | None = None,
    figsize: tuple[float, float] = (7, 6),
) -> tuple[Figure, Axes]:
    """Heatmap of pairwise reputation scores; pairs that never met are blank."""
    if ax is None:
        fig, ax = plt.subplots(figsize=figsize)
    else:
        fig = ax.figure

    matrix = np.ma.masked_invalid(snapshot.reputation_matrix())
    im = ax.imshow(matrix, cmap="RdYlGn", vmin=0.0, vmax=1.0, origin="upper")
    plt.colorbar(im, ax=ax, fraction=0.046, pad=0.04)

    ax.set_title(title)
    ax.set_xlabel("peer")
    ax.set_ylabel("node")
    return fig, ax


def plot_sweep(
    summaries: Sequence["SweepSummary"],
    parameter: str = "",
    metric: str = "delivery ratio",
    ax: Axes | None = None,
    figsize: tuple[float, float] = (8, 5),
) -> tuple[Figure, Axes]:
    """Mean metric per swept value with its confidence band."""
    if ax is None:
        fig, ax = plt.subplots(figsize=figsize)
    else:
        fig = ax.figure

    x = np.array([s.value for s in summaries], dtype=np.float64)
    mean = np.array([s.mean for s in summaries], dtype=np.float64)
    low = np.array([s.ci_low for s in summaries], dtype=np.float64)
    high = np.array([s.ci_high for s in summaries], dtype=np.float64)

    ax.plot(x, mean, "o-", color="#1d3557", label="mean")
    ax.fill_between(x, low, high, color="#a8dadc", alpha=0.5, label="confidence interval")

    ax.set_title(f"{metric} vs {parameter}" if parameter else metric)
    ax.set_xlabel(parameter)
    ax.set_ylabel(metric)
    ax.legend(loc="best")
    ax.grid(True, alpha=0.3)
    return fig, ax


def save_figure(fig: Figure, path: str | Path, dpi: int = 150, **kwargs) -> None:
    """Save figure to file."""
    fig.savefig(path, dpi=dpi, bbox_inches="tight", **kwargs)

"""
Parameter sweeps: many independent simulations, one varied option.

Each (value, replicate) pair is a fully private Simulation; nothing is
shared between instances, and results are merged only after every
instance has finished. Replicate r of every value runs with seed
base_seed + r, so all values see the same random streams.

Usage:
    results = run_sweep({"n_nodes": 6}, "contact_rate", [0.01, 0.02, 0.05], replicates=5)
    for row in summarize_sweep(results):
        print(row.value, row.mean, row.ci_low, row.ci_high)
"""

from __future__ import annotations
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass
from typing import Any, Mapping, Sequence
import logging

import numpy as np
from scipy import stats

from dtnsim.core.config import ScenarioConfig
from dtnsim.core.simulation import Simulation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SweepResult:
    """Final metrics of one sweep instance."""

    parameter: str
    value: Any
    replicate: int
    seed: int
    metrics: dict


@dataclass(frozen=True)
class SweepSummary:
    """Mean of one metric across replicates, with a Student-t confidence interval."""

    value: Any
    n: int
    mean: float
    std: float
    ci_low: float
    ci_high: float


def run_instance(options: dict) -> dict:
    """Run one scenario to its end time and return the metrics summary as a dict."""
    sim = Simulation(options)
    snapshot = sim.run()
    return snapshot.metrics.to_dict()


def run_sweep(
    base_options: Mapping[str, Any],
    parameter: str,
    values: Sequence[Any],
    replicates: int = 1,
    max_workers: int | None = 1,
) -> list[SweepResult]:
    """
    Run base_options with `parameter` set to each of `values`.

    Args:
        base_options: Scenario options shared by every instance
        parameter: Option to vary
        values: Values to try
        replicates: Instances per value (seeds base_seed .. base_seed + replicates - 1)
        max_workers: Worker processes; 1 runs inline in this process

    Returns:
        One SweepResult per instance, ordered by (value index, replicate)
    """
    if replicates < 1:
        raise ValueError(f"replicates must be >= 1, got {replicates}")

    base_seed = int(base_options.get("seed", 0))
    jobs = []
    for value in values:
        for r in range(replicates):
            options = {**base_options, parameter: value, "seed": base_seed + r}
            # Fail fast on bad options, before any worker starts
            ScenarioConfig.from_options(options)
            jobs.append((value, r, options))

    logger.info("Sweep over %s: %d values x %d replicates", parameter, len(values), replicates)

    if max_workers == 1:
        outputs = [run_instance(options) for _, _, options in jobs]
    else:
        with ProcessPoolExecutor(max_workers=max_workers) as ex:
            futs = [ex.submit(run_instance, options) for _, _, options in jobs]
            outputs = [fut.result() for fut in futs]

    return [
        SweepResult(parameter=parameter, value=value, replicate=r, seed=options["seed"], metrics=out)
        for (value, r, options), out in zip(jobs, outputs)
    ]


def summarize_sweep(
    results: Sequence[SweepResult],
    metric: str = "delivery_ratio",
    confidence: float = 0.95,
) -> list[SweepSummary]:
    """
    Per-value mean of `metric` with a Student-t confidence interval.

    Replicates where the metric is None (e.g. mean latency with no
    deliveries) are left out of that value's sample. With fewer than two
    samples, or no spread, the interval collapses to the mean.
    """
    grouped: dict[Any, list[float]] = {}
    order: list[Any] = []
    for result in results:
        if result.value not in grouped:
            grouped[result.value] = []
            order.append(result.value)
        sample = result.metrics.get(metric)
        if sample is not None:
            grouped[result.value].append(float(sample))

    summaries = []
    for value in order:
        samples = np.array(grouped[value], dtype=np.float64)
        n = len(samples)
        if n == 0:
            summaries.append(SweepSummary(value, 0, np.nan, np.nan, np.nan, np.nan))
            continue

        mean = float(samples.mean())
        std = float(samples.std(ddof=1)) if n > 1 else 0.0
        if n < 2 or std == 0.0:
            low, high = mean, mean
        else:
            low, high = stats.t.interval(confidence, df=n - 1, loc=mean, scale=stats.sem(samples))
        summaries.append(SweepSummary(value, n, mean, std, float(low), float(high)))
    return summaries

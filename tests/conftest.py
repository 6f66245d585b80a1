"""
Pytest configuration and shared fixtures.
"""

import pytest
import numpy as np


@pytest.fixture
def make_node():
    """Factory for a standalone node (no scheduler)."""
    from dtnsim.core import Node, NodeStore, Strategy

    def _make(node_id, strategy=Strategy.COOPERATE, capacity=10.0, energy=100.0, **kwargs):
        return Node(
            node_id=node_id,
            store=NodeStore(capacity),
            strategy=strategy,
            energy=energy,
            energy_capacity=max(energy, 100.0),
            **kwargs,
        )

    return _make


@pytest.fixture
def make_bundle():
    """Factory for a bundle in custody of its source."""
    from dtnsim.core import Bundle

    def _make(bundle_id, source=0, destination=1, created_at=0.0, ttl=100.0, size=1.0):
        return Bundle(
            bundle_id=bundle_id,
            source=source,
            destination=destination,
            created_at=created_at,
            ttl=ttl,
            size=size,
            custodian=source,
        )

    return _make


@pytest.fixture
def two_node_options():
    """Scripted two-node scenario: no random traffic, both nodes cooperate."""
    return {
        "n_nodes": 2,
        "capacity": 10.0,
        "injection_rate": 0.0,
        "default_strategy": "cooperate",
        "contact_model": "table",
        "contact_table": [(0, 1, 0.0, 10.0)],
        "injections": [(0.0, 0, 1, 20.0)],
        "end_time": 50.0,
    }


@pytest.fixture
def poisson_options():
    """Small stochastic scenario."""
    return {
        "n_nodes": 6,
        "capacity": 5.0,
        "injection_rate": 0.3,
        "ttl_range": (20.0, 80.0),
        "contact_model": "poisson",
        "contact_rate": 0.05,
        "mean_contact_duration": 4.0,
        "end_time": 200.0,
        "seed": 7,
    }


@pytest.fixture
def rng():
    """Reproducible random number generator."""
    return np.random.default_rng(seed=42)

"""Unit tests for the metrics collector."""

import pytest

from dtnsim.errors import InvariantViolation
from dtnsim.analysis.metrics import (
    Delivered,
    DroppedAtCapacity,
    ExpiredUndelivered,
    Injected,
    MetricsCollector,
)
from dtnsim.core.game import Action, GameOutcome, Strategy, TransferDecision


def _outcome(round=0, actions=(Action.COOPERATE, Action.DEFECT), rejections=0):
    return GameOutcome(
        time=0.0,
        node_a=0,
        node_b=1,
        round=round,
        strategies=(Strategy.COOPERATE, Strategy.DEFECT),
        actions=actions,
        payoffs=(0.0, 0.05),
        decision=TransferDecision.NONE,
        capacity_rejections=rejections,
    )


@pytest.fixture
def collector():
    m = MetricsCollector()
    for i in range(4):
        m.record(Injected(bundle_id=i, time=0.0, source=0, destination=1))
    m.record(Delivered(bundle_id=0, time=10.0, latency=10.0, hops=1))
    m.record(Delivered(bundle_id=1, time=30.0, latency=30.0, hops=3))
    m.record(ExpiredUndelivered(bundle_id=2, time=50.0))
    return m


class TestMetricsCollector:
    """Tests for MetricsCollector queries."""

    def test_counts(self, collector):
        assert collector.injected_count == 4
        assert collector.delivered_count == 2
        assert collector.delivery_ratio() == 0.5
        assert collector.drop_counts() == {"expired": 1, "capacity": 0}

    def test_latency(self, collector):
        assert collector.mean_latency() == 20.0
        assert collector.latency_percentile(50) == 20.0
        assert collector.mean_hops() == 2.0

    def test_empty(self):
        m = MetricsCollector()
        assert m.delivery_ratio() == 0.0
        assert m.mean_latency() is None
        assert m.latency_percentile(95) is None
        assert m.mean_hops() is None

    def test_double_terminal_is_fatal(self, collector):
        with pytest.raises(InvariantViolation):
            collector.record(DroppedAtCapacity(bundle_id=0, time=60.0, node_id=1))

    def test_summary(self, collector):
        collector.record(DroppedAtCapacity(bundle_id=3, time=5.0, node_id=1))
        s = collector.summary()
        assert s.injected == 4
        assert s.delivered == 2
        assert s.expired == 1
        assert s.dropped_at_capacity == 1
        assert s.in_flight == 0
        assert s.to_dict()["delivery_ratio"] == 0.5

    def test_outcome_counts(self):
        m = MetricsCollector()
        m.observe(_outcome(round=0, rejections=1))
        m.observe(_outcome(round=1, rejections=2))
        assert m.strategy_counts() == {"cooperate": 1, "defect": 1}
        assert m.action_counts() == {"cooperate": 1, "defect": 1}
        assert m.capacity_rejections() == 3
        assert m.summary().contacts == 1
        assert len(m.outcomes) == 2

    def test_outcome_to_dict(self):
        d = _outcome().to_dict()
        assert d["actions"] == ["cooperate", "defect"]
        assert d["decision"] == "none"

"""Unit tests for bundles, injections and the traffic generator."""

from itertools import islice

import pytest

from dtnsim.core.bundles import (
    Bundle,
    BundleFactory,
    Hop,
    Injection,
    TrafficGenerator,
    scripted_injections,
)


class TestInjection:
    """Tests for Injection validation."""

    def test_valid(self):
        inj = Injection(time=1.0, source=0, destination=2, ttl=10.0)
        assert inj.size == 1.0

    def test_rejects_non_positive_ttl(self):
        with pytest.raises(ValueError):
            Injection(time=0.0, source=0, destination=1, ttl=0.0)

    def test_rejects_non_positive_size(self):
        with pytest.raises(ValueError):
            Injection(time=0.0, source=0, destination=1, ttl=5.0, size=-1.0)

    def test_rejects_self_addressed(self):
        with pytest.raises(ValueError):
            Injection(time=0.0, source=3, destination=3, ttl=5.0)


class TestBundle:
    """Tests for Bundle."""

    def test_expiry_is_creation_plus_ttl(self, make_bundle):
        b = make_bundle(0, created_at=5.0, ttl=20.0)
        assert b.expires_at == 25.0
        assert b.ttl_remaining(10.0) == 15.0
        assert b.ttl_remaining(30.0) == 0.0

    def test_ttl_remaining_non_increasing(self, make_bundle):
        b = make_bundle(0, ttl=10.0)
        remaining = [b.ttl_remaining(t) for t in (0.0, 2.5, 5.0, 9.9, 10.0, 12.0)]
        assert remaining == sorted(remaining, reverse=True)

    def test_is_expired_at_deadline(self, make_bundle):
        b = make_bundle(0, ttl=10.0)
        assert not b.is_expired(9.999)
        assert b.is_expired(10.0)

    def test_record_hop(self, make_bundle):
        b = make_bundle(0, source=0, destination=3)
        b.record_hop(1, 4.0)
        b.record_hop(2, 6.0)
        assert b.hop_count == 2
        assert b.custodian == 2
        assert b.path == [Hop(0, 1, 4.0), Hop(1, 2, 6.0)]

    def test_visited_includes_source_and_path(self, make_bundle):
        b = make_bundle(0, source=0, destination=3)
        b.record_hop(1, 1.0)
        assert b.visited(0)
        assert b.visited(1)
        assert not b.visited(2)

    def test_replicate_has_independent_path(self, make_bundle):
        b = make_bundle(0)
        copy = b.replicate()
        copy.record_hop(5, 1.0)
        assert b.hop_count == 0
        assert b.path == []
        assert copy.bundle_id == b.bundle_id
        assert copy.expires_at == b.expires_at

    def test_sort_key_breaks_ties_by_id(self, make_bundle):
        bundles = [make_bundle(3, ttl=10.0), make_bundle(1, ttl=10.0), make_bundle(2, ttl=5.0)]
        assert [b.bundle_id for b in sorted(bundles, key=Bundle.sort_key)] == [2, 1, 3]


class TestBundleFactory:
    def test_sequential_ids(self):
        factory = BundleFactory()
        inj = Injection(time=2.0, source=0, destination=1, ttl=10.0, size=2.0)
        a, b = factory.create(inj), factory.create(inj)
        assert (a.bundle_id, b.bundle_id) == (0, 1)
        assert a.custodian == 0
        assert a.created_at == 2.0
        assert a.size == 2.0


class TestTrafficGenerator:
    """Tests for TrafficGenerator."""

    def test_deterministic_for_seed(self):
        gen = TrafficGenerator(range(5), rate=1.0, ttl_range=(10.0, 20.0), seed=3)
        first = list(islice(gen.injections(), 50))
        second = list(islice(gen.injections(), 50))
        assert first == second

    def test_different_seeds_differ(self):
        a = TrafficGenerator(range(5), rate=1.0, ttl_range=(10.0, 20.0), seed=1)
        b = TrafficGenerator(range(5), rate=1.0, ttl_range=(10.0, 20.0), seed=2)
        assert list(islice(a.injections(), 10)) != list(islice(b.injections(), 10))

    def test_time_ordered_and_in_range(self):
        gen = TrafficGenerator(range(4), rate=2.0, ttl_range=(10.0, 20.0), size_range=(1.0, 3.0))
        injections = list(islice(gen.injections(from_time=5.0), 200))
        times = [i.time for i in injections]
        assert times == sorted(times)
        assert times[0] > 5.0
        for inj in injections:
            assert inj.source != inj.destination
            assert 10.0 <= inj.ttl <= 20.0
            assert 1.0 <= inj.size <= 3.0

    def test_zero_rate_is_empty(self):
        gen = TrafficGenerator(range(3), rate=0.0, ttl_range=(1.0, 2.0))
        assert list(gen.injections()) == []

    def test_rate_read_at_each_draw(self):
        slow = TrafficGenerator(range(3), rate=1.0, ttl_range=(1.0, 2.0))
        fast = TrafficGenerator(range(3), rate=4.0, ttl_range=(1.0, 2.0))
        slow_times = [i.time for i in islice(slow.injections(), 20)]
        fast_times = [i.time for i in islice(fast.injections(), 20)]
        # Same draws, gaps scaled by the rate
        assert fast_times == pytest.approx([t / 4.0 for t in slow_times])

    def test_rate_change_stops_stream(self):
        gen = TrafficGenerator(range(3), rate=1.0, ttl_range=(1.0, 2.0))
        stream = gen.injections()
        next(stream)
        gen.rate = 0.0
        assert list(stream) == []

    def test_needs_two_nodes(self):
        with pytest.raises(ValueError):
            TrafficGenerator([0], rate=1.0, ttl_range=(1.0, 2.0))


def test_scripted_injections_sorted_and_stable():
    trace = [
        Injection(5.0, 0, 1, 10.0),
        Injection(1.0, 1, 0, 10.0),
        Injection(5.0, 2, 0, 10.0),
    ]
    ordered = list(scripted_injections(trace))
    assert [(i.time, i.source) for i in ordered] == [(1.0, 1), (5.0, 0), (5.0, 2)]

"""Tests for the Simulation facade and the event scheduler behind it."""

import dataclasses

import pytest

from dtnsim.errors import ConfigError, InvariantViolation
from dtnsim.core import Bundle, Simulation
from dtnsim.core.game import Action


def _holders(snapshot):
    holders = {}
    for node in snapshot.nodes:
        for bundle_id in node.stored:
            holders.setdefault(bundle_id, []).append(node.node_id)
    return holders


class TestScenarios:
    """Hand-checkable two- and three-node scenarios."""

    def test_delivery_within_contact(self, two_node_options):
        sim = Simulation(two_node_options)
        snapshot = sim.run()

        assert snapshot.metrics.injected == 1
        assert snapshot.metrics.delivered == 1
        (delivery,) = sim.metrics.deliveries
        assert delivery.time <= 10.0
        assert delivery.hops == 1
        assert _holders(snapshot) == {}

    def test_expiry_before_first_contact(self, two_node_options):
        options = dict(two_node_options, contact_table=[(0, 1, 10.0, 20.0)], injections=[(0.0, 0, 1, 5.0)])
        sim = Simulation(options)

        snapshot = sim.step(7.0)
        assert snapshot.metrics.expired == 1
        assert _holders(snapshot) == {}

        snapshot = sim.run()
        assert snapshot.metrics.delivered == 0
        assert snapshot.metrics.expired == 1
        assert all(not o.transfers for o in sim.outcomes)

    def test_expired_at_exact_deadline(self, two_node_options):
        options = dict(two_node_options, contact_table=[(0, 1, 5.0, 20.0)], injections=[(0.0, 0, 1, 5.0)])
        snapshot = Simulation(options).run()
        # Expiry wins over a simultaneous transfer
        assert snapshot.metrics.expired == 1
        assert snapshot.metrics.delivered == 0

    def test_defector_blocks_and_loses_reputation(self, two_node_options):
        options = dict(
            two_node_options,
            strategies={1: "defect"},
            injections=[(0.0, 0, 1, 30.0)],
        )
        sim = Simulation(options)
        snapshot = sim.step(15.0)

        assert snapshot.metrics.delivered == 0
        assert _holders(snapshot) == {0: [0]}
        assert dict(snapshot.nodes[0].reputation)[1] < 1.0
        assert sim.outcomes[0].actions == (Action.COOPERATE, Action.DEFECT)

        snapshot = sim.run()
        assert snapshot.metrics.expired == 1

    def test_full_receiver_rejects(self, two_node_options):
        options = dict(
            two_node_options,
            n_nodes=3,
            capacity=1.0,
            contact_table=[(0, 1, 5.0, 10.0)],
            injections=[(0.0, 1, 2, 100.0), (0.0, 0, 1, 60.0)],
        )
        sim = Simulation(options)
        snapshot = sim.run()

        assert snapshot.metrics.delivered == 0
        assert sim.metrics.capacity_rejections() == 1
        assert _holders(snapshot) == {0: [1], 1: [0]}

    def test_full_receiver_evicts_and_drops(self, two_node_options):
        options = dict(
            two_node_options,
            n_nodes=3,
            capacity=1.0,
            contact_table=[(0, 1, 5.0, 10.0)],
            injections=[(0.0, 1, 2, 20.0), (0.0, 0, 1, 50.0)],
        )
        snapshot = Simulation(options).run()

        assert snapshot.metrics.delivered == 1
        assert snapshot.metrics.dropped_at_capacity == 1
        assert _holders(snapshot) == {}

    def test_full_receiver_with_reject_policy(self, two_node_options):
        options = dict(
            two_node_options,
            n_nodes=3,
            capacity=1.0,
            eviction="reject",
            contact_table=[(0, 1, 5.0, 10.0)],
            injections=[(0.0, 1, 2, 20.0), (0.0, 0, 1, 50.0)],
        )
        snapshot = Simulation(options).run()
        assert snapshot.metrics.dropped_at_capacity == 0
        assert snapshot.metrics.delivered == 0

    def test_relay_through_open_contacts(self, two_node_options):
        options = dict(
            two_node_options,
            n_nodes=3,
            contact_table=[(0, 1, 0.0, 100.0), (1, 2, 0.0, 100.0)],
            injections=[(5.0, 0, 2, 50.0)],
        )
        sim = Simulation(options)
        sim.run()

        (delivery,) = sim.metrics.deliveries
        assert delivery.time == 5.0
        assert delivery.hops == 2
        assert [o.round for o in sim.outcomes] == [0, 0, 1, 1]

    def test_conditional_retaliates(self, two_node_options):
        options = dict(
            two_node_options,
            strategies={0: "conditional", 1: "defect"},
            cooperation_threshold=0.5,
            reputation_alpha=0.2,
            injections=[],
            contact_table=[(0, 1, float(t), float(t) + 1.0) for t in range(0, 50, 10)],
        )
        sim = Simulation(options)
        sim.run()

        actions = [o.actions[0] for o in sim.outcomes]
        assert actions == [Action.COOPERATE] * 4 + [Action.DEFECT]

    def test_conditional_with_full_buffer_declines_custody(self, two_node_options):
        options = dict(
            two_node_options,
            n_nodes=3,
            capacity=1.0,
            strategies={1: "conditional"},
            storage_cost_weight=5.0,
            contact_table=[(0, 1, 5.0, 10.0)],
            injections=[(0.0, 1, 2, 100.0), (0.0, 0, 1, 60.0)],
        )
        sim = Simulation(options)
        snapshot = sim.run()

        assert sim.outcomes[0].actions == (Action.COOPERATE, Action.DEFECT)
        assert sim.metrics.capacity_rejections() == 0
        assert snapshot.metrics.delivered == 0

    def test_energy_game_without_budget_sits_out(self, two_node_options):
        options = dict(
            two_node_options,
            energy_mode="nash",
            energy_capacity=1.0,
            participation_cost=2.0,
            energy_recharge_rate=0.0,
            transfer_energy_cost=0.0,
        )
        sim = Simulation(options)
        snapshot = sim.run()

        assert snapshot.metrics.delivered == 0
        assert sim.outcomes[0].participation == (False, False)
        assert sim.outcomes[0].actions == (Action.DEFECT, Action.DEFECT)

    def test_energy_game_entry_costs_energy(self, two_node_options):
        options = dict(
            two_node_options,
            energy_mode="nash",
            cluster_energy_threshold=1000.0,  # nobody heads a cluster
            participation_cost=2.0,
            energy_recharge_rate=0.0,
            transfer_energy_cost=0.0,
        )
        sim = Simulation(options)
        snapshot = sim.step(1.0)

        assert snapshot.metrics.delivered == 1
        assert sim.outcomes[0].participation == (True, True)
        assert [n.energy for n in snapshot.nodes] == [98.0, 98.0]
        assert snapshot.clusters == ()

    def test_source_rejection_is_a_drop(self, two_node_options):
        options = dict(
            two_node_options,
            capacity=1.0,
            eviction="reject",
            contact_table=[(0, 1, 50.0, 60.0)],
            injections=[(0.0, 0, 1, 40.0), (1.0, 0, 1, 40.0)],
        )
        snapshot = Simulation(options).step(5.0)
        assert snapshot.metrics.injected == 2
        assert snapshot.metrics.dropped_at_capacity == 1


class TestProperties:
    """Invariants over stochastic runs."""

    @pytest.mark.parametrize("replication", ["single-copy", "replicate"])
    def test_custody_capacity_and_expiry(self, poisson_options, replication):
        sim = Simulation(dict(poisson_options, replication=replication, max_replicas=3))
        max_copies = 3 if replication == "replicate" else 1

        while not sim.finished:
            snapshot = sim.step(10.0)
            holders = _holders(snapshot)
            for bundle_id, nodes in holders.items():
                assert 1 <= len(nodes) <= max_copies
            for node in snapshot.nodes:
                assert node.occupancy <= node.capacity + 1e-9
                for bundle_id in node.stored:
                    bundle = sim.state.nodes[node.node_id].store.get(bundle_id)
                    assert bundle.expires_at > snapshot.time
            m = snapshot.metrics
            assert m.injected == m.delivered + m.expired + m.dropped_at_capacity + m.in_flight
            assert len(holders) == m.in_flight

        assert snapshot.metrics.injected > 0

    def test_determinism(self, poisson_options):
        a, b = Simulation(poisson_options), Simulation(poisson_options)
        a.run()
        b.run()
        assert a.metrics.summary().to_dict() == b.metrics.summary().to_dict()
        assert [o.to_dict() for o in a.outcomes] == [o.to_dict() for o in b.outcomes]

    def test_stepping_granularity_does_not_matter(self, poisson_options):
        coarse, fine = Simulation(poisson_options), Simulation(poisson_options)
        coarse.run()
        while not fine.finished:
            fine.step(3.7)
        assert coarse.metrics.summary() == fine.metrics.summary()

    def test_seed_changes_outcome(self, poisson_options):
        a = Simulation(poisson_options)
        b = Simulation(dict(poisson_options, seed=poisson_options["seed"] + 1))
        a.run()
        b.run()
        assert [o.to_dict() for o in a.outcomes] != [o.to_dict() for o in b.outcomes]

    def test_energy_game_is_deterministic_and_clusters(self, poisson_options):
        options = dict(poisson_options, energy_mode="nash", cluster_energy_threshold=0.0, cluster_distance=1.0e6)
        a, b = Simulation(options), Simulation(options)
        snapshot = a.run()
        b.run()
        assert [o.to_dict() for o in a.outcomes] == [o.to_dict() for o in b.outcomes]
        assert all(o.participation is not None for o in a.outcomes)

        members = [m for _, ms in snapshot.clusters for m in ms]
        assert snapshot.clusters
        assert len(members) == len(set(members))
        assert all(head in ms for head, ms in snapshot.clusters)

    def test_more_contacts_never_hurt(self):
        base = {
            "n_nodes": 2,
            "capacity": 1000.0,
            "injection_rate": 0.2,
            "ttl_range": (5.0, 20.0),
            "default_strategy": "cooperate",
            "contact_model": "table",
            "transfer_energy_cost": 0.0,
            "end_time": 400.0,
            "seed": 11,
        }
        sparse = [(0, 1, float(t), float(t) + 1.0) for t in range(0, 400, 20)]
        dense = [(0, 1, float(t), float(t) + 1.0) for t in range(0, 400, 10)]
        assert set(sparse) <= set(dense)

        low = Simulation(dict(base, contact_table=sparse)).run().metrics
        high = Simulation(dict(base, contact_table=dense)).run().metrics
        assert low.injected == high.injected
        assert high.delivery_ratio >= low.delivery_ratio

    def test_orbital_model_runs(self):
        sim = Simulation({
            "n_nodes": 6,
            "n_ground_stations": 2,
            "contact_model": "orbital",
            "comm_range": 15000.0,
            "end_time": 100.0,
            "injection_rate": 0.2,
        })
        snapshot = sim.run()
        assert snapshot.time == 100.0
        assert {n.kind for n in snapshot.nodes} >= {"ground"}


class TestControlSurface:
    """configure / step / reset / stage / request_stop."""

    def test_configure_rejects_before_building(self):
        with pytest.raises(ConfigError):
            Simulation({"capacity": 0})

    def test_configure_rejects_bad_injection(self, two_node_options):
        with pytest.raises(ConfigError):
            Simulation(dict(two_node_options, injections=[(0.0, 0, 5, 10.0)]))
        with pytest.raises(ConfigError):
            Simulation(dict(two_node_options, injections=[(0.0, 0, 1, -1.0)]))

    def test_configure_rejects_unknown_contact_node(self, two_node_options):
        with pytest.raises(ConfigError):
            Simulation(dict(two_node_options, contact_table=[(0, 7, 0.0, 1.0)]))

    def test_short_contact_row_is_an_anomaly(self, two_node_options):
        options = dict(
            two_node_options,
            contact_table=[(0, 1, 5.0), (0, 1, 10.0, 20.0)],
            injections=[(0.0, 0, 1, 30.0)],
        )
        snapshot = Simulation(options).run()
        assert snapshot.anomalies == 1
        assert snapshot.metrics.delivered == 1

    def test_malformed_contact_is_an_anomaly(self, two_node_options):
        sim = Simulation(dict(two_node_options, contact_table=[(0, 1, 3.0, 3.0), (0, 1, 4.0, 9.0)]))
        snapshot = sim.run()
        assert snapshot.anomalies == 1
        assert snapshot.metrics.contacts == 1

    def test_step_clamps_to_end_time(self, two_node_options):
        sim = Simulation(two_node_options)
        snapshot = sim.step(1000.0)
        assert snapshot.time == two_node_options["end_time"]
        assert snapshot.finished
        assert sim.step(10.0).time == two_node_options["end_time"]

    def test_step_zero(self, two_node_options):
        sim = Simulation(two_node_options)
        snapshot = sim.step(0.0)
        assert snapshot.time == 0.0
        # Events at t=0 are processed
        assert snapshot.metrics.delivered == 1

    def test_negative_step(self, two_node_options):
        with pytest.raises(ValueError):
            Simulation(two_node_options).step(-1.0)

    def test_snapshot_is_frozen(self, two_node_options):
        snapshot = Simulation(two_node_options).step(1.0)
        with pytest.raises(dataclasses.FrozenInstanceError):
            snapshot.time = 5.0
        with pytest.raises(dataclasses.FrozenInstanceError):
            snapshot.nodes[0].energy = 0.0

    def test_snapshot_contents(self, two_node_options):
        sim = Simulation(dict(two_node_options, injections=[(2.0, 0, 1, 20.0)]))
        snapshot = sim.step(1.0)
        assert snapshot.active_contacts == ((0, 1),)
        assert snapshot.positions().shape == (2, 2)
        assert snapshot.reputation_matrix()[0, 1] == 1.0

    def test_reset(self, poisson_options):
        sim = Simulation(poisson_options)
        first = sim.run().metrics
        sim.reset()
        assert sim.time == 0.0
        assert sim.metrics.injected_count == 0
        assert sim.run().metrics == first

        sim.reset(seed=99)
        assert sim.config.seed == 99
        assert sim.time == 0.0

    def test_stage_rejects_structural(self, poisson_options):
        sim = Simulation(poisson_options)
        with pytest.raises(ConfigError):
            sim.stage(n_nodes=10)
        with pytest.raises(ConfigError):
            sim.stage(cooperation_threshold=2.0)

    def test_stage_applies_at_next_step(self, poisson_options):
        sim = Simulation(poisson_options)
        sim.step(10.0)
        sim.stage(cooperation_threshold=0.9, benefit_weight=2.0)
        assert sim.config.cooperation_threshold == 0.5
        sim.step(10.0)
        assert sim.config.cooperation_threshold == 0.9
        assert sim.engine.config.benefit_weight == 2.0

    def test_stage_restarts_traffic(self, poisson_options):
        sim = Simulation(dict(poisson_options, injection_rate=0.0))
        assert sim.step(20.0).metrics.injected == 0
        sim.stage(injection_rate=1.0)
        assert sim.step(50.0).metrics.injected > 0

    def test_stage_stops_traffic(self, poisson_options):
        sim = Simulation(dict(poisson_options, injection_rate=1.0))
        sim.step(20.0)
        sim.stage(injection_rate=0.0)
        # The injection already drawn still fires
        before = sim.step(50.0).metrics.injected
        assert sim.step(100.0).metrics.injected == before

    def test_stage_end_time(self, poisson_options):
        sim = Simulation(poisson_options)
        sim.stage(end_time=30.0)
        assert sim.run().time == 30.0

    def test_stage_end_time_behind_clock(self, poisson_options):
        sim = Simulation(poisson_options)
        sim.step(50.0)
        with pytest.raises(ConfigError):
            sim.stage(end_time=40.0)
        sim.stage(end_time=50.0)
        assert sim.run().time == 50.0

    def test_stage_end_time_past_orbital_horizon(self):
        sim = Simulation({"n_nodes": 4, "contact_model": "orbital", "end_time": 50.0, "injection_rate": 0.0})
        with pytest.raises(ConfigError):
            sim.stage(end_time=80.0)
        sim.stage(end_time=30.0)
        assert sim.run().time == 30.0

    def test_request_stop(self, poisson_options):
        sim = Simulation(poisson_options)
        sim.step(5.0)
        sim.request_stop()
        snapshot = sim.step(50.0)
        assert snapshot.stopped
        assert snapshot.time == 5.0

    def test_stop_between_events(self, poisson_options):
        sim = Simulation(poisson_options)
        calls = []

        def stop_after_three():
            calls.append(1)
            return len(calls) > 3

        stopped = sim.scheduler.run_until(100.0, should_stop=stop_after_three)
        assert stopped
        assert sim.time < 100.0

    def test_invariant_violation_halts(self, two_node_options):
        sim = Simulation(dict(two_node_options, injections=[], contact_table=[(0, 1, 10.0, 20.0)]))
        sim.step(5.0)
        # A copy no custody ledger knows about
        sim.state.nodes[1].store.admit(Bundle(99, 0, 1, 0.0, 1000.0, custodian=1))

        with pytest.raises(InvariantViolation) as excinfo:
            sim.step(10.0)
        assert excinfo.value.snapshot is not None
        assert excinfo.value.snapshot.time == 5.0

        with pytest.raises(InvariantViolation):
            sim.step(1.0)

        sim.reset()
        assert sim.run().time == two_node_options["end_time"]

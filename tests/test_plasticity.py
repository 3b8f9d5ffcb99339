"""Tests for structural plasticity: pruning, reconnection, overdose, growth."""

import math
import os
import sys

import numpy as np
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from psyche_config import BrainConfig
from psyche_foundation import InvalidInputError, Network, NodeRole, StepResult
from psyche_plasticity import (
    InactivityRule,
    OverdoseRule,
    connect_neighbors,
    neurogenesis,
)


def _pair(config, distance=1.0):
    net = Network(config=config, seed=11)
    a = net.create_node((0.0, 0.0, 0.0))
    b = net.create_node((distance, 0.0, 0.0))
    return net, a, b


class TestInactivityPruning:

    def test_idle_edge_pruned_after_timeout(self):
        net, a, b = _pair(BrainConfig(synapse_inactivity_time=2.0))
        eid = net.create_edge(a, b)
        net.process(1.0)
        net.process(1.0)
        assert eid in net.edges
        assert net.get_edge(eid).inactivity == pytest.approx(2.0)
        result = net.process(1.0)
        assert result.edges_pruned == 1
        assert eid not in net.edges
        assert not net.has_edge(a, b)

    def test_edge_with_signal_in_flight_does_not_age(self):
        net, a, b = _pair(BrainConfig(synapse_inactivity_time=2.0), distance=10.0)
        eid = net.create_edge(a, b)
        net.spawn_signal(eid, 0.1)
        for _ in range(5):
            net.process(1.0)
        assert eid in net.edges
        assert net.get_edge(eid).inactivity == 0.0

    def test_arrival_resets_clock(self):
        net, a, b = _pair(BrainConfig(synapse_inactivity_time=2.5))
        eid = net.create_edge(a, b)
        net.process(1.0)
        net.process(1.0)
        net.spawn_signal(eid, 0.1)
        net.process(1.0)
        assert net.get_edge(eid).inactivity == 0.0
        net.process(1.0)
        assert net.get_edge(eid).inactivity == pytest.approx(1.0)

    def test_rules_are_pluggable(self):
        net, a, b = _pair(BrainConfig(synapse_inactivity_time=0.5))
        eid = net.create_edge(a, b)
        net.set_plasticity_rules([])
        net.process_n(5, 1.0)
        assert eid in net.edges


class TestReconnection:

    def test_expired_edge_rewired_in_range(self):
        cfg = BrainConfig(
            synapse_inactivity_time=0.5,
            synapse_reconnection_range=5.0,
            synapse_new_connection_receptors=0.7,
            max_connecting_tries=64,
        )
        net = Network(config=cfg, seed=5)
        a = net.create_node((0.0, 0.0, 0.0))
        b = net.create_node((1.0, 0.0, 0.0))
        c = net.create_node((0.0, 1.0, 0.0))
        eid = net.create_edge(a, b, receptor=1.2)

        result = net.process(1.0)

        assert result.edges_rewired == 1
        assert result.edges_pruned == 0
        edge = net.get_edge(eid)
        assert edge.target == c
        assert edge.receptor == 0.7
        assert edge.inactivity == 0.0
        assert net.has_edge(a, c)

    def test_no_candidate_falls_back_to_removal(self):
        cfg = BrainConfig(synapse_inactivity_time=0.5, synapse_reconnection_range=1.0)
        net, a, b = _pair(cfg, distance=5.0)
        eid = net.create_edge(a, b)
        result = net.process(1.0)
        assert result.edges_pruned == 1
        assert result.edges_rewired == 0
        assert eid not in net.edges

    def test_target_selection_excludes_current_target_and_source(self):
        cfg = BrainConfig(synapse_reconnection_range=5.0)
        net, a, b = _pair(cfg)
        eid = net.create_edge(a, b)
        assert InactivityRule.select_reconnection_target(net, net.get_edge(eid)) is None

    def test_self_target_allowed_without_no_loop(self):
        cfg = BrainConfig(synapse_reconnection_range=5.0, no_loop_connections=False)
        net, a, b = _pair(cfg)
        eid = net.create_edge(a, b)
        assert InactivityRule.select_reconnection_target(net, net.get_edge(eid)) == a


class TestOverdose:

    def test_clamps_keeping_sign(self):
        net = Network(config=BrainConfig(synapse_overdose_receptors=1.0))
        a = net.create_node((0.0, 0.0, 0.0))
        others = [net.create_node((float(i + 1), 0.0, 0.0)) for i in range(3)]
        strong = net.create_edge(a, others[0], receptor=3.0)
        inhibit = net.create_edge(a, others[1], receptor=-2.0)
        weak = net.create_edge(a, others[2], receptor=0.5)

        result = net.process(0.0)

        assert result.edges_clamped == 2
        assert net.get_edge(strong).receptor == 1.0
        assert net.get_edge(inhibit).receptor == -1.0
        assert net.get_edge(weak).receptor == 0.5

    def test_disabled_without_cap(self):
        net, a, b = _pair(BrainConfig())
        eid = net.create_edge(a, b, receptor=50.0)
        result = net.process(0.0)
        assert result.edges_clamped == 0
        assert net.get_edge(eid).receptor == 50.0

    def test_rule_applies_directly(self):
        net, a, b = _pair(BrainConfig(synapse_overdose_receptors=2.0))
        eid = net.create_edge(a, b, receptor=-9.0)
        result = StepResult()
        OverdoseRule().apply(net, result)
        assert net.get_edge(eid).receptor == -2.0
        assert result.edges_clamped == 1


class TestNeurogenesis:

    def test_new_node_in_growth_shell(self):
        net = Network(radius=10.0, seed=2)
        anchor = net.create_node((0.0, 0.0, 0.0))
        for _ in range(20):
            nid, _ = neurogenesis(net, anchor, 1.0, 2.0, max_tries=10)
            distance = math.dist(net.position(nid), (0.0, 0.0, 0.0))
            assert 1.0 - 1e-9 <= distance <= 2.0 + 1e-9

    def test_connects_new_node(self):
        net = Network(radius=10.0, seed=8)
        anchor = net.create_node((0.0, 0.0, 0.0))
        nid, eid = neurogenesis(net, anchor, 0.5, 1.0, max_tries=10)
        assert eid is not None
        edge = net.get_edge(eid)
        assert nid in (edge.source, edge.target)
        assert anchor in (edge.source, edge.target)

    def test_role_assigned_at_creation(self):
        net = Network(seed=1)
        anchor = net.create_node((0.0, 0.0, 0.0))
        nid, _ = neurogenesis(net, anchor, 0.5, 1.0, max_tries=3, role=NodeRole.SENSOR)
        assert net.role(nid) == NodeRole.SENSOR
        assert net.sensors == [nid]

    def test_stays_inside_radius_and_shell(self):
        net = Network(radius=10.0, seed=3)
        anchor = net.create_node((9.9, 0.0, 0.0))
        for _ in range(10):
            nid, _ = neurogenesis(net, anchor, 5.0, 5.0, max_tries=2)
            assert np.linalg.norm(net.position(nid)) <= 10.0 + 1e-6
            assert math.dist(net.position(nid), (9.9, 0.0, 0.0)) == pytest.approx(5.0)

    def test_shell_outside_radius_rejected(self):
        net = Network(radius=1.0, seed=3)
        anchor = net.create_node((1.0, 0.0, 0.0))
        with pytest.raises(InvalidInputError):
            neurogenesis(net, anchor, 3.0, 3.0, max_tries=5)
        assert net.node_count == 1

    def test_zero_range_grows_on_anchor(self):
        net = Network(seed=3)
        anchor = net.create_node((1.0, 2.0, 3.0))
        nid, eid = neurogenesis(net, anchor, 0.0, 0.0, max_tries=3)
        assert net.position(nid) == pytest.approx((1.0, 2.0, 3.0))
        assert eid is not None

    def test_bad_range(self):
        net = Network()
        anchor = net.create_node((0.0, 0.0, 0.0))
        with pytest.raises(InvalidInputError):
            neurogenesis(net, anchor, 2.0, 1.0, max_tries=3)
        with pytest.raises(InvalidInputError):
            neurogenesis(net, anchor, 0.5, 1.0, max_tries=0)
        assert net.node_count == 1


class TestConnectNeighbors:

    def test_creates_edge_between_neighbours(self):
        net = Network(seed=0)
        a = net.create_node((0.0, 0.0, 0.0))
        b = net.create_node((0.5, 0.0, 0.0))
        eid = connect_neighbors(net, 1.0, max_tries=20)
        assert eid is not None
        edge = net.get_edge(eid)
        assert {edge.source, edge.target} == {a, b}

    def test_budget_exhausted(self):
        net = Network(seed=0)
        net.create_node((0.0, 0.0, 0.0))
        net.create_node((5.0, 0.0, 0.0))
        assert connect_neighbors(net, 1.0, max_tries=5) is None
        assert net.edges == {}

    def test_saturated_pair(self):
        net = Network(seed=0)
        a = net.create_node((0.0, 0.0, 0.0))
        b = net.create_node((0.5, 0.0, 0.0))
        net.create_edge(a, b)
        net.create_edge(b, a)
        assert connect_neighbors(net, 1.0, max_tries=10) is None
        assert len(net.edges) == 2

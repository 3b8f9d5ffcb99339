"""Tests for NetworkBuilder / build_network."""

import logging
import os
import sys

import numpy as np
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from psyche_builder import NetworkBuilder, build_network
from psyche_config import BrainConfig, BuilderParams
from psyche_foundation import InvalidInputError, NodeRole


def _assert_no_loops(net):
    pairs = [(e.source, e.target) for e in net.edges.values()]
    assert all(src != dst for src, dst in pairs)
    assert len(pairs) == len(set(pairs))


def _assert_roles(net):
    sensors, effectors = set(net.sensors), set(net.effectors)
    all_ids = set(net.node_ids)
    assert sensors.isdisjoint(effectors)
    assert sensors <= all_ids
    assert effectors <= all_ids
    for nid in net.node_ids:
        role = net.role(nid)
        assert (role == NodeRole.SENSOR) == (nid in sensors)
        assert (role == NodeRole.EFFECTOR) == (nid in effectors)


class TestBuild:

    def test_shape(self):
        net = build_network(
            neurons=40, connections=60, radius=4.0, max_neurogenesis_range=3.0,
            sensors=3, effectors=2, seed=1,
        )
        assert net.node_count == 40
        assert len(net.sensors) == 3
        assert len(net.effectors) == 2
        assert net.radius == 4.0
        assert 0 < len(net.edges) <= 60
        norms = np.linalg.norm(net.positions_array(), axis=1)
        assert np.all(norms <= 4.0 + 1e-9)

    def test_default_build(self):
        net = build_network(seed=0)
        assert net.node_count == 100
        assert len(net.edges) == 0
        assert len(net.sensors) == 1 and len(net.effectors) == 1

    def test_edges_respect_range(self):
        net = build_network(
            neurons=50, connections=80, radius=5.0, max_neurogenesis_range=1.5, seed=2
        )
        assert all(edge.length <= 1.5 + 1e-9 for edge in net.edges.values())

    def test_peripheral_boundary_nodes(self):
        net = build_network(neurons=200, sensors=4, effectors=4, radius=10.0, seed=9)
        norms = np.linalg.norm(net.positions_array(), axis=1)
        boundary = [net.node_ids.index(nid) for nid in net.sensors + net.effectors]
        # Nodes nearest to surface points sit well outside the median shell.
        assert np.mean(norms[boundary]) > np.median(norms)

    def test_seed_reproducible(self):
        kwargs = dict(neurons=30, connections=30, radius=3.0, max_neurogenesis_range=2.0)
        a = build_network(seed=42, **kwargs)
        b = build_network(seed=42, **kwargs)
        assert np.array_equal(a.positions_array(), b.positions_array())
        assert len(a.edges) == len(b.edges)

    @pytest.mark.parametrize("seed", range(20))
    def test_no_loop_invariant(self, seed):
        net = build_network(
            neurons=8, connections=60, radius=1.0, max_neurogenesis_range=2.0,
            sensors=2, effectors=2, seed=seed,
        )
        _assert_no_loops(net)
        _assert_roles(net)

    def test_params_drive_network_policy(self):
        net = build_network(
            config=BrainConfig(no_loop_connections=True),
            neurons=5, no_loop_connections=False, max_connecting_tries=4, seed=0,
        )
        assert net.config.no_loop_connections is False
        assert net.config.max_connecting_tries == 4


class TestInfeasibleDensity:

    def test_degrades_to_fewer_edges(self, caplog):
        # 5 nodes admit at most 20 ordered pairs without loops.
        builder = NetworkBuilder(
            params=BuilderParams(
                neurons=5, connections=100, radius=1.0, max_neurogenesis_range=2.0,
                sensors=0, effectors=0,
            ),
            seed=7,
        )
        with caplog.at_level(logging.WARNING, logger="psyche.builder"):
            net = builder.build()
        report = builder.last_report
        assert len(net.edges) <= 20
        assert report.requested_connections == 100
        assert report.created_connections == len(net.edges)
        assert report.shortfall >= 80
        assert not report.feasible
        assert "Requested 100 connections" in caplog.text
        _assert_no_loops(net)

    def test_sparse_geometry(self):
        builder = NetworkBuilder(
            params=BuilderParams(
                neurons=10, connections=10, radius=10.0, max_neurogenesis_range=0.01,
            ),
            seed=1,
        )
        net = builder.build()
        assert len(net.edges) == 0
        assert builder.last_report.shortfall == 10

    def test_feasible_report(self):
        builder = NetworkBuilder(params=BuilderParams(neurons=10, connections=0), seed=1)
        builder.build()
        assert builder.last_report.feasible


class TestInvalidParams:

    @pytest.mark.parametrize(
        "overrides",
        [
            {"neurons": -1},
            {"connections": -5},
            {"radius": 0.0},
            {"min_neurogenesis_range": 2.0, "max_neurogenesis_range": 1.0},
            {"neurons": 2, "sensors": 2, "effectors": 1},
            {"max_connecting_tries": 0},
        ],
    )
    def test_rejected(self, overrides):
        with pytest.raises(InvalidInputError):
            build_network(**overrides)

    def test_unknown_override(self):
        with pytest.raises(InvalidInputError):
            build_network(axons=3)

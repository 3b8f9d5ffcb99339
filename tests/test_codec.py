"""Tests for psyche_codec: binary / JSON / YAML round trips and bad input."""

import json
import os
import sys
import uuid

import msgpack
import pytest
import yaml

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from psyche_builder import build_network
from psyche_codec import (
    from_bytes,
    from_json,
    from_yaml,
    load_network,
    save_network,
    to_bytes,
    to_json,
    to_yaml,
)
from psyche_config import BrainConfig
from psyche_foundation import FormatError, Network, NodeRole

FORMATS = {
    "binary": (to_bytes, from_bytes),
    "json": (to_json, from_json),
    "json-pretty": (lambda net: to_json(net, pretty=True), from_json),
    "yaml": (to_yaml, from_yaml),
}


@pytest.fixture
def network():
    cfg = BrainConfig(synapse_reconnection_range=1.5, synapse_overdose_receptors=4.0)
    net = build_network(
        config=cfg, neurons=25, connections=40, radius=3.0, max_neurogenesis_range=2.0,
        sensors=2, effectors=2, seed=13,
    )
    net.force_random_signals(10, 0.5, 2.5)
    for i, nid in enumerate(net.node_ids[:6]):
        net.set_potential(nid, 0.1 * i - 0.2)
    net.process(0.25)
    return net


def assert_equivalent(a, b, signals=True):
    assert b.network_id == a.network_id
    assert b.time == a.time
    assert b.radius == a.radius
    assert b.config == a.config
    assert b.node_ids == a.node_ids
    for nid in a.node_ids:
        assert b.node(nid) == a.node(nid)
    assert b.sensors == a.sensors
    assert b.effectors == a.effectors
    assert b.edges == a.edges
    if signals:
        assert b.signals == a.signals
    else:
        assert b.signals == {}


class TestRoundTrip:

    @pytest.mark.parametrize("fmt", sorted(FORMATS))
    def test_round_trip(self, network, fmt):
        encode, decode = FORMATS[fmt]
        assert network.signals
        assert_equivalent(network, decode(encode(network)))

    @pytest.mark.parametrize("fmt", sorted(FORMATS))
    def test_discard_signals(self, network, fmt):
        encode, decode = FORMATS[fmt]
        restored = decode(encode(network), discard_signals=True)
        assert_equivalent(network, restored, signals=False)

    def test_empty_network(self):
        net = Network()
        for encode, decode in FORMATS.values():
            assert_equivalent(net, decode(encode(net)))

    def test_loops_preserved_when_policy_off(self):
        net = Network(config=BrainConfig(no_loop_connections=False))
        a = net.create_node((0.0, 0.0, 0.0))
        net.create_edge(a, a, receptor=0.3)
        net.create_edge(a, a, receptor=-0.3)
        for encode, decode in FORMATS.values():
            assert_equivalent(net, decode(encode(net)))

    def test_decoded_network_is_independent(self, network):
        clone = from_bytes(to_bytes(network))
        clone.process(1.0)
        nid = clone.node_ids[0]
        clone.set_potential(nid, 42.0)
        assert network.get_potential(nid) != 42.0

    def test_binary_ids_are_raw(self, network):
        packed = msgpack.unpackb(to_bytes(network), raw=False)
        assert packed[0] == b"PSYN"
        assert isinstance(packed[2], bytes) and len(packed[2]) == 16

    def test_json_pretty_is_indented(self, network):
        assert "\n  " in to_json(network, pretty=True)
        assert "\n" not in to_json(network)

    def test_text_document_is_readable(self, network):
        doc = yaml.safe_load(to_yaml(network))
        assert doc["version"] == 1
        assert {n["role"] for n in doc["nodes"]} == {r.name for r in NodeRole}
        uuid.UUID(doc["nodes"][0]["id"])


class TestMalformedInput:

    @pytest.mark.parametrize(
        "payload",
        [b"", b"garbage", msgpack.packb([1, 2, 3]), msgpack.packb({"a": 1}), "text"],
    )
    def test_bad_binary(self, payload):
        with pytest.raises(FormatError):
            from_bytes(payload)

    def test_truncated_binary(self, network):
        payload = to_bytes(network)
        with pytest.raises(FormatError):
            from_bytes(payload[: len(payload) // 2])

    def test_bad_magic(self, network):
        packed = msgpack.unpackb(to_bytes(network), raw=False)
        packed[0] = b"NOPE"
        with pytest.raises(FormatError):
            from_bytes(msgpack.packb(packed, use_bin_type=True))

    def test_bad_role_index(self, network):
        packed = msgpack.unpackb(to_bytes(network), raw=False)
        packed[6][0][4] = -1
        with pytest.raises(FormatError):
            from_bytes(msgpack.packb(packed, use_bin_type=True))

    @pytest.mark.parametrize("payload", ["", "not json", "[]", "{}", '{"version": 1}'])
    def test_bad_json(self, payload):
        with pytest.raises(FormatError):
            from_json(payload)

    @pytest.mark.parametrize("payload", ["[1, 2", "just a string", "version: 1\n"])
    def test_bad_yaml(self, payload):
        with pytest.raises(FormatError):
            from_yaml(payload)

    def _doc(self, network):
        return json.loads(to_json(network))

    def test_dangling_edge(self, network):
        doc = self._doc(network)
        doc["edges"][0]["target"] = str(uuid.uuid4())
        with pytest.raises(FormatError):
            from_json(json.dumps(doc))

    def test_dangling_signal(self, network):
        doc = self._doc(network)
        doc["signals"][0]["edge"] = str(uuid.uuid4())
        with pytest.raises(FormatError):
            from_json(json.dumps(doc))
        # Discarded signals are not resolved.
        assert from_json(json.dumps(doc), discard_signals=True).signals == {}

    def test_role_list_mismatch(self, network):
        doc = self._doc(network)
        doc["sensors"] = doc["sensors"][:1]
        with pytest.raises(FormatError):
            from_json(json.dumps(doc))

    def test_duplicate_node_id(self, network):
        doc = self._doc(network)
        doc["nodes"][1]["id"] = doc["nodes"][0]["id"]
        with pytest.raises(FormatError):
            from_json(json.dumps(doc))

    def test_node_outside_radius(self, network):
        doc = self._doc(network)
        doc["nodes"][0]["position"] = [100.0, 0.0, 0.0]
        with pytest.raises(FormatError):
            from_json(json.dumps(doc))

    def test_bad_config(self, network):
        doc = self._doc(network)
        doc["config"]["propagation_speed"] = -1.0
        with pytest.raises(FormatError):
            from_json(json.dumps(doc))

    def test_wrong_version(self, network):
        doc = self._doc(network)
        doc["version"] = 99
        with pytest.raises(FormatError, match="version"):
            from_json(json.dumps(doc))

    def test_non_finite_potential(self, network):
        doc = self._doc(network)
        doc["nodes"][0]["potential"] = float("nan")
        with pytest.raises(FormatError):
            from_json(json.dumps(doc))


class TestFiles:

    @pytest.mark.parametrize("name", ["brain.msgpack", "brain.bin", "brain.json", "brain.yaml", "brain.yml"])
    def test_save_and_load(self, network, tmp_path, name):
        path = tmp_path / name
        save_network(network, path)
        assert_equivalent(network, load_network(str(path)))

    def test_load_discarding_signals(self, network, tmp_path):
        path = tmp_path / "brain.msgpack"
        save_network(network, path)
        assert load_network(path, discard_signals=True).signals == {}

"""
Psyche Codec - binary, JSON and YAML encodings of a full network.

All three formats carry the same canonical schema:

    version, network id, simulated time, radius, config,
    nodes   (id, position, role, potential),
    edges   (id, source, target, receptor, propagation decay, inactivity),
    signals (id, edge, progress, potential),
    sensor and effector id lists.

The binary form is msgpack with a fixed positional layout and ids packed as
16-byte binaries.  The text forms use keyed documents with ids as canonical
UUID strings.

Decoding always builds into a fresh ``Network`` and either returns it
complete or raises ``FormatError``; nothing is partially constructed.  Only
same-schema round trips are supported.

Usage::

    from psyche_codec import to_bytes, from_bytes, save_network, load_network

    payload = to_bytes(net)
    clone = from_bytes(payload, discard_signals=True)

    save_network(net, "brain.yaml")
    net = load_network("brain.yaml")
"""

from __future__ import annotations

import json
import logging
import math
import uuid
from dataclasses import fields
from pathlib import Path
from typing import Any, Callable, Dict, Union

import msgpack
import yaml

from psyche_config import BrainConfig
from psyche_foundation import FormatError, Network, NodeRole, PsycheError

logger = logging.getLogger("psyche.codec")

SCHEMA_VERSION = 1
BINARY_MAGIC = b"PSYN"

_CONFIG_FIELDS = [f.name for f in fields(BrainConfig)]
_ROLES = list(NodeRole)

_DECODE_ERRORS = (
    ValueError,
    TypeError,
    KeyError,
    IndexError,
    AttributeError,
    msgpack.UnpackException,
    yaml.YAMLError,
    PsycheError,
)


# ---------------------------------------------------------------------------
# Canonical document
# ---------------------------------------------------------------------------

def _to_document(network: Network, uid: Callable[[uuid.UUID], Any]) -> Dict[str, Any]:
    """Snapshot ``network`` as a keyed document, ids rendered by ``uid``."""
    return {
        "version": SCHEMA_VERSION,
        "network_id": uid(network.network_id),
        "time": network.time,
        "radius": network.radius,
        "config": network.config.to_dict(),
        "nodes": [
            {
                "id": uid(node.node_id),
                "position": list(node.position),
                "role": node.role.name,
                "potential": node.potential,
            }
            for node in network.nodes()
        ],
        "edges": [
            {
                "id": uid(edge.edge_id),
                "source": uid(edge.source),
                "target": uid(edge.target),
                "receptor": edge.receptor,
                "propagation_decay": edge.propagation_decay,
                "inactivity": edge.inactivity,
            }
            for edge in network.edges.values()
        ],
        "signals": [
            {
                "id": uid(sig.signal_id),
                "edge": uid(sig.edge_id),
                "progress": sig.progress,
                "potential": sig.potential,
            }
            for sig in network.signals.values()
        ],
        "sensors": [uid(nid) for nid in network.sensors],
        "effectors": [uid(nid) for nid in network.effectors],
    }


def _parse_uid(value: Any) -> uuid.UUID:
    if isinstance(value, bytes):
        return uuid.UUID(bytes=value)
    if isinstance(value, str):
        return uuid.UUID(value)
    raise FormatError(f"Expected an id, got {type(value).__name__}")


def _parse_float(value: Any, what: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise FormatError(f"{what} must be a number, got {value!r}")
    if not math.isfinite(value):
        raise FormatError(f"{what} must be finite, got {value!r}")
    return float(value)


def _parse_role(value: Any) -> NodeRole:
    if isinstance(value, str):
        return NodeRole[value]
    raise FormatError(f"Unknown role {value!r}")


def _restore(doc: Any, discard_signals: bool) -> Network:
    """Build a fresh network from a canonical document."""
    if not isinstance(doc, dict):
        raise FormatError(f"Expected a document mapping, got {type(doc).__name__}")
    version = doc["version"]
    if version != SCHEMA_VERSION:
        raise FormatError(f"Unsupported schema version {version!r}")

    radius = doc["radius"]
    network = Network(
        config=BrainConfig.from_dict(dict(doc["config"])),
        radius=None if radius is None else _parse_float(radius, "radius"),
        network_id=_parse_uid(doc["network_id"]),
    )
    network.time = _parse_float(doc["time"], "time")

    for nd in doc["nodes"]:
        position = nd["position"]
        if len(position) != 3:
            raise FormatError(f"Position must have three coordinates, got {position!r}")
        network.create_node(
            [_parse_float(c, "position") for c in position],
            role=_parse_role(nd["role"]),
            node_id=_parse_uid(nd["id"]),
            potential=_parse_float(nd["potential"], "potential"),
        )

    for ed in doc["edges"]:
        # Stored structure is restored as-is; the no-loop policy only
        # governs new connections.
        network.create_edge(
            _parse_uid(ed["source"]),
            _parse_uid(ed["target"]),
            receptor=_parse_float(ed["receptor"], "receptor"),
            edge_id=_parse_uid(ed["id"]),
            propagation_decay=_parse_float(ed["propagation_decay"], "propagation_decay"),
            inactivity=_parse_float(ed["inactivity"], "inactivity"),
            enforce_policy=False,
        )

    signals = doc["signals"]
    if not isinstance(signals, list):
        raise FormatError("signals must be a list")
    if not discard_signals:
        for sd in signals:
            network.spawn_signal(
                _parse_uid(sd["edge"]),
                _parse_float(sd["potential"], "signal potential"),
                progress=_parse_float(sd["progress"], "signal progress"),
                signal_id=_parse_uid(sd["id"]),
            )

    for key, actual in (("sensors", network.sensors), ("effectors", network.effectors)):
        listed = [_parse_uid(v) for v in doc[key]]
        if len(listed) != len(set(listed)) or set(listed) != set(actual):
            raise FormatError(f"{key} list does not match node roles")

    return network


def _decode(load: Callable[[], Any], discard_signals: bool, fmt: str) -> Network:
    try:
        network = _restore(load(), discard_signals)
    except FormatError:
        raise
    except _DECODE_ERRORS as exc:
        raise FormatError(f"Malformed {fmt} payload: {exc}") from exc
    logger.info(
        "Decoded %s network %s: %d nodes, %d edges, %d signals",
        fmt, network.network_id, network.node_count, len(network.edges), len(network.signals),
    )
    return network


# ---------------------------------------------------------------------------
# Binary (msgpack, positional)
# ---------------------------------------------------------------------------

def _uid_bytes(value: uuid.UUID) -> bytes:
    return value.bytes


def to_bytes(network: Network) -> bytes:
    """Encode ``network`` as compact msgpack."""
    doc = _to_document(network, _uid_bytes)
    cfg = doc["config"]
    packed = [
        BINARY_MAGIC,
        doc["version"],
        doc["network_id"],
        doc["time"],
        doc["radius"],
        [cfg[name] for name in _CONFIG_FIELDS],
        [
            [n["id"], *n["position"], _ROLES.index(NodeRole[n["role"]]), n["potential"]]
            for n in doc["nodes"]
        ],
        [
            [e["id"], e["source"], e["target"], e["receptor"], e["propagation_decay"], e["inactivity"]]
            for e in doc["edges"]
        ],
        [[s["id"], s["edge"], s["progress"], s["potential"]] for s in doc["signals"]],
        doc["sensors"],
        doc["effectors"],
    ]
    return msgpack.packb(packed, use_bin_type=True)


def _role_name(index: Any) -> str:
    if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < len(_ROLES):
        raise FormatError(f"Unknown role index {index!r}")
    return _ROLES[index].name


def _unpack_positional(payload: bytes) -> Dict[str, Any]:
    data = msgpack.unpackb(payload, raw=False)
    if not isinstance(data, list) or len(data) != 11:
        raise FormatError("Binary payload does not have the expected layout")
    if data[0] != BINARY_MAGIC:
        raise FormatError("Binary payload has a bad magic tag")
    (_, version, network_id, time, radius, cfg, nodes, edges, signals, sensors, effectors) = data
    if len(cfg) != len(_CONFIG_FIELDS):
        raise FormatError("Config record has the wrong number of fields")
    if any(len(n) != 6 for n in nodes):
        raise FormatError("Node record has the wrong number of fields")
    return {
        "version": version,
        "network_id": network_id,
        "time": time,
        "radius": radius,
        "config": dict(zip(_CONFIG_FIELDS, cfg)),
        "nodes": [
            {"id": n[0], "position": n[1:4], "role": _role_name(n[4]), "potential": n[5]}
            for n in nodes
        ],
        "edges": [
            {
                "id": e[0],
                "source": e[1],
                "target": e[2],
                "receptor": e[3],
                "propagation_decay": e[4],
                "inactivity": e[5],
            }
            for e in edges
        ],
        "signals": [
            {"id": s[0], "edge": s[1], "progress": s[2], "potential": s[3]} for s in signals
        ],
        "sensors": sensors,
        "effectors": effectors,
    }


def from_bytes(payload: bytes, discard_signals: bool = False) -> Network:
    """Decode a msgpack payload produced by ``to_bytes``.

    Raises:
        FormatError: The payload is malformed, truncated or inconsistent.
    """
    return _decode(lambda: _unpack_positional(payload), discard_signals, "binary")


# ---------------------------------------------------------------------------
# Text formats
# ---------------------------------------------------------------------------

def _uid_str(value: uuid.UUID) -> str:
    return str(value)


def to_json(network: Network, pretty: bool = False) -> str:
    doc = _to_document(network, _uid_str)
    if pretty:
        return json.dumps(doc, indent=2)
    return json.dumps(doc, separators=(",", ":"))


def from_json(payload: Union[str, bytes], discard_signals: bool = False) -> Network:
    """Decode a JSON document produced by ``to_json``.

    Raises:
        FormatError: The payload is malformed or inconsistent.
    """
    return _decode(lambda: json.loads(payload), discard_signals, "JSON")


def to_yaml(network: Network) -> str:
    return yaml.safe_dump(_to_document(network, _uid_str), sort_keys=False)


def from_yaml(payload: Union[str, bytes], discard_signals: bool = False) -> Network:
    """Decode a YAML document produced by ``to_yaml``.

    Raises:
        FormatError: The payload is malformed or inconsistent.
    """
    return _decode(lambda: yaml.safe_load(payload), discard_signals, "YAML")


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------

_BINARY_SUFFIXES = (".msgpack", ".bin")
_YAML_SUFFIXES = (".yaml", ".yml")


def save_network(network: Network, path: Union[str, Path]) -> None:
    """Write ``network`` to ``path``; the extension picks the format.

    ``.msgpack``/``.bin`` → binary, ``.yaml``/``.yml`` → YAML, anything
    else → pretty JSON.
    """
    p = Path(path)
    if p.suffix in _BINARY_SUFFIXES:
        p.write_bytes(to_bytes(network))
    elif p.suffix in _YAML_SUFFIXES:
        p.write_text(to_yaml(network))
    else:
        p.write_text(to_json(network, pretty=True))


def load_network(path: Union[str, Path], discard_signals: bool = False) -> Network:
    """Read a network written by ``save_network``."""
    p = Path(path)
    if p.suffix in _BINARY_SUFFIXES:
        return from_bytes(p.read_bytes(), discard_signals)
    if p.suffix in _YAML_SUFFIXES:
        return from_yaml(p.read_text(), discard_signals)
    return from_json(p.read_text(), discard_signals)
"""
Psyche Stats - read-only aggregates over a network.

Everything here is recomputed on each call in O(nodes + edges + signals)
and never cached, so it always reflects the network's current state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Tuple

import numpy as np

from psyche_foundation import Network

Position = Tuple[float, float, float]


@dataclass
class PotentialSummary:
    """min / max / sum of a population of potentials (zeros when empty)."""

    min: float = 0.0
    max: float = 0.0
    sum: float = 0.0

    @classmethod
    def of(cls, values: np.ndarray) -> "PotentialSummary":
        if values.size == 0:
            return cls()
        return cls(min=float(values.min()), max=float(values.max()), sum=float(values.sum()))


@dataclass
class ActivityStats:
    """Network statistics snapshot.

    Attributes:
        node_count: Number of nodes.
        edge_count: Number of edges.
        signal_count: Number of in-flight signals.
        node_potentials: Aggregates over node potentials.
        signal_potentials: Aggregates over in-flight signal potentials.
        all_potentials: Aggregates over both populations together.
        incoming_edges_min / incoming_edges_max: Incoming fan per node.
        outgoing_edges_min / outgoing_edges_max: Outgoing fan per node.
        receptors_min / receptors_max: Edge receptor magnitudes.
    """

    node_count: int = 0
    edge_count: int = 0
    signal_count: int = 0
    node_potentials: PotentialSummary = field(default_factory=PotentialSummary)
    signal_potentials: PotentialSummary = field(default_factory=PotentialSummary)
    all_potentials: PotentialSummary = field(default_factory=PotentialSummary)
    incoming_edges_min: int = 0
    incoming_edges_max: int = 0
    outgoing_edges_min: int = 0
    outgoing_edges_max: int = 0
    receptors_min: float = 0.0
    receptors_max: float = 0.0


def activity_stats(network: Network) -> ActivityStats:
    node_values = np.array(network.potentials_array(), dtype=np.float64)
    signal_values = np.fromiter(
        (s.potential for s in network.signals.values()),
        dtype=np.float64,
        count=len(network.signals),
    )
    receptors = np.fromiter(
        (abs(e.receptor) for e in network.edges.values()),
        dtype=np.float64,
        count=len(network.edges),
    )
    incoming, outgoing = network.fan_counts()

    stats = ActivityStats(
        node_count=network.node_count,
        edge_count=len(network.edges),
        signal_count=len(network.signals),
        node_potentials=PotentialSummary.of(node_values),
        signal_potentials=PotentialSummary.of(signal_values),
        all_potentials=PotentialSummary.of(np.concatenate([node_values, signal_values])),
    )
    if incoming.size:
        stats.incoming_edges_min = int(incoming.min())
        stats.incoming_edges_max = int(incoming.max())
        stats.outgoing_edges_min = int(outgoing.min())
        stats.outgoing_edges_max = int(outgoing.max())
    if receptors.size:
        stats.receptors_min = float(receptors.min())
        stats.receptors_max = float(receptors.max())
    return stats


# ---------------------------------------------------------------------------
# Activity map
# ---------------------------------------------------------------------------

@dataclass
class ActivityMap:
    """Spatial snapshot for visualisers and other read-only consumers.

    Attributes:
        connections: (source position, target position) per edge.
        signals: (source position, target position, fraction travelled)
            per in-flight signal; fraction is clipped to [0, 1].
        sensors: Sensor node positions.
        effectors: Effector node positions.
    """

    connections: List[Tuple[Position, Position]] = field(default_factory=list)
    signals: List[Tuple[Position, Position, float]] = field(default_factory=list)
    sensors: List[Position] = field(default_factory=list)
    effectors: List[Position] = field(default_factory=list)


def build_activity_map(network: Network) -> ActivityMap:
    amap = ActivityMap()
    for edge in network.edges.values():
        amap.connections.append((network.position(edge.source), network.position(edge.target)))
    for sig in network.signals.values():
        edge = network.edges[sig.edge_id]
        fraction = 1.0 if edge.length <= 0.0 else min(1.0, sig.progress / edge.length)
        amap.signals.append(
            (network.position(edge.source), network.position(edge.target), fraction)
        )
    amap.sensors = [network.position(nid) for nid in network.sensors]
    amap.effectors = [network.position(nid) for nid in network.effectors]
    return amap

"""
Psyche Foundation - Spatial signal network (graph store and tick scheduler)

Implements the core of a spatially embedded "brain": nodes placed in 3D
space holding a decaying scalar potential, directed edges carrying signed
receptor strengths, and signals travelling along edges toward their target.

Design principles:
    - Arena storage: node positions and potentials live in numpy arrays;
      public 128-bit ids map to arena rows, so ids stay stable across
      serialization and never expose internal layout
    - Sparse topology: dict/set adjacency indices, no dense matrices
    - Deterministic ticks: four fixed phases (advance, consume, decay, fire)
      followed by structural plasticity
    - Pluggable plasticity: structural rules are swappable strategy objects
"""

from __future__ import annotations

import logging
import math
import uuid
from concurrent.futures import Executor
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import (
    TYPE_CHECKING,
    Callable,
    Dict,
    Iterator,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
    TypeVar,
)

import numpy as np

from psyche_config import BrainConfig, default_config
from psyche_errors import (
    FormatError,
    InvalidHandleError,
    InvalidInputError,
    NotFoundError,
    PsycheError,
)

if TYPE_CHECKING:
    from psyche_plasticity import PlasticityRule

__all__ = [
    "Edge",
    "FormatError",
    "InvalidHandleError",
    "InvalidInputError",
    "Network",
    "NeighborQuery",
    "Node",
    "NodeRole",
    "NotFoundError",
    "PsycheError",
    "Signal",
    "StepResult",
    "new_uid",
]

logger = logging.getLogger("psyche.foundation")

Position = Tuple[float, float, float]
T = TypeVar("T")

# Entities per chunk when a tick phase is spread over a worker pool.
PARALLEL_CHUNK_SIZE = 512


def new_uid() -> uuid.UUID:
    """Mint a fresh 128-bit identifier."""
    return uuid.uuid4()


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class NodeRole(Enum):
    """Node role, fixed at creation."""
    INTERNAL = auto()
    SENSOR = auto()
    EFFECTOR = auto()


# ---------------------------------------------------------------------------
# Core Data Structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Node:
    """Read-only snapshot of a node.

    The live state sits in the network's arena; this is what the store hands
    out to callers.

    Attributes:
        node_id: Globally unique identifier.
        position: (x, y, z) inside the network's bounding radius.
        potential: Current scalar potential.
        role: INTERNAL, SENSOR or EFFECTOR.
    """

    node_id: uuid.UUID
    position: Position
    potential: float
    role: NodeRole


@dataclass
class Edge:
    """Directed, weighted connection between two nodes.

    Attributes:
        edge_id: Unique identifier.
        source: Source node id.
        target: Target node id.
        receptor: Signed strength; negative edges are inhibitory.
        propagation_decay: Potential lost by in-flight signals per unit time.
        inactivity: Time since a signal last arrived over this edge.
        length: Euclidean distance between the endpoints.
    """

    edge_id: uuid.UUID = field(default_factory=new_uid)
    source: uuid.UUID = field(default_factory=new_uid)
    target: uuid.UUID = field(default_factory=new_uid)
    receptor: float = 1.0
    propagation_decay: float = 0.0
    inactivity: float = 0.0
    length: float = 0.0

    @property
    def is_inhibitory(self) -> bool:
        return self.receptor < 0.0


@dataclass
class Signal:
    """A travelling quantum of potential.

    Attributes:
        signal_id: Unique identifier.
        edge_id: Edge the signal travels along.
        progress: Distance travelled from the source end.
        potential: Remaining (non-negative) magnitude.
    """

    signal_id: uuid.UUID = field(default_factory=new_uid)
    edge_id: uuid.UUID = field(default_factory=new_uid)
    progress: float = 0.0
    potential: float = 0.0


# ---------------------------------------------------------------------------
# Step Result
# ---------------------------------------------------------------------------

@dataclass
class StepResult:
    """Result returned from Network.process().

    Attributes:
        time: Simulated time after this tick.
        fired_node_ids: Nodes that fired this tick.
        signals_consumed: Signals that reached their target.
        signals_spawned: Signals created by firing nodes.
        edges_pruned: Edges removed for inactivity.
        edges_rewired: Expired edges reconnected to a new target.
        edges_clamped: Edges whose receptor was capped for overdose.
    """

    time: float = 0.0
    fired_node_ids: List[uuid.UUID] = field(default_factory=list)
    signals_consumed: int = 0
    signals_spawned: int = 0
    edges_pruned: int = 0
    edges_rewired: int = 0
    edges_clamped: int = 0


# ---------------------------------------------------------------------------
# Spatial query
# ---------------------------------------------------------------------------

class NeighborQuery:
    """Node ids within ``radius`` of ``center``.

    Lazy and restartable: nothing is computed until iteration starts, and
    every new iteration re-reads the current arena.
    """

    def __init__(self, network: "Network", center: Position, radius: float):
        self._network = network
        self._center = np.asarray(center, dtype=np.float64)
        self._radius = radius

    def __iter__(self) -> Iterator[uuid.UUID]:
        net = self._network
        count = net.node_count
        if count == 0:
            return iter(())
        deltas = net._positions[:count] - self._center
        dist_sq = np.einsum("ij,ij->i", deltas, deltas)
        rows = np.flatnonzero(dist_sq <= self._radius * self._radius)
        ids = net._node_ids
        return (ids[row] for row in rows.tolist())

    def __repr__(self) -> str:
        return f"NeighborQuery(center={self._center.tolist()}, radius={self._radius})"


# ---------------------------------------------------------------------------
# Network Container
# ---------------------------------------------------------------------------

class Network:
    """Owns all nodes, edges and signals of one brain; runs its ticks.

    Args:
        config: Immutable simulation parameters (defaults if None).
        radius: Bounding radius for node positions (None = unbounded).
        seed: Seed for the network's random generator (receptor sampling,
            reconnection, random signals).
        network_id: Explicit id (fresh if None).
    """

    def __init__(
        self,
        config: Optional[BrainConfig] = None,
        radius: Optional[float] = None,
        seed: Optional[int] = None,
        network_id: Optional[uuid.UUID] = None,
    ):
        if radius is not None and not (math.isfinite(radius) and radius > 0.0):
            raise InvalidInputError(f"radius must be > 0, got {radius!r}")
        self.config = config or default_config()
        self.network_id = network_id or new_uid()
        self.radius = radius
        self.rng = np.random.default_rng(seed)

        # --- Node arena ---
        self._capacity = 16
        self._positions = np.zeros((self._capacity, 3), dtype=np.float64)
        self._potentials = np.zeros(self._capacity, dtype=np.float64)
        self._node_ids: List[uuid.UUID] = []
        self._node_index: Dict[uuid.UUID, int] = {}
        self._roles: List[NodeRole] = []
        self._sensors: List[uuid.UUID] = []
        self._effectors: List[uuid.UUID] = []

        # --- Edges and sparse adjacency ---
        self.edges: Dict[uuid.UUID, Edge] = {}
        self._outgoing: Dict[uuid.UUID, Set[uuid.UUID]] = {}
        self._incoming: Dict[uuid.UUID, Set[uuid.UUID]] = {}
        # (source, target) -> number of edges for that ordered pair
        self._pairs: Dict[Tuple[uuid.UUID, uuid.UUID], int] = {}

        # --- Signals ---
        self.signals: Dict[uuid.UUID, Signal] = {}
        self._edge_signals: Dict[uuid.UUID, Set[uuid.UUID]] = {}

        # --- Plasticity rules ---
        from psyche_plasticity import default_plasticity_rules
        self._plasticity_rules = default_plasticity_rules()

        # --- Clock ---
        self.time: float = 0.0
        self._destroyed = False

    def __repr__(self) -> str:
        return (
            f"Network(id={self.network_id}, nodes={self.node_count}, "
            f"edges={len(self.edges)}, signals={len(self.signals)})"
        )

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def destroy(self) -> None:
        """Mark the network dead; later ticks and evolution refuse it."""
        self._destroyed = True

    def set_plasticity_rules(self, rules: Sequence[PlasticityRule]) -> None:
        """Configure active structural plasticity rules."""
        self._plasticity_rules = list(rules)

    # -----------------------------------------------------------------------
    # Node access
    # -----------------------------------------------------------------------

    @property
    def node_count(self) -> int:
        return len(self._node_ids)

    @property
    def node_ids(self) -> List[uuid.UUID]:
        return list(self._node_ids)

    @property
    def sensors(self) -> List[uuid.UUID]:
        return list(self._sensors)

    @property
    def effectors(self) -> List[uuid.UUID]:
        return list(self._effectors)

    def has_node(self, node_id: uuid.UUID) -> bool:
        return node_id in self._node_index

    def _row(self, node_id: uuid.UUID) -> int:
        row = self._node_index.get(node_id)
        if row is None:
            raise NotFoundError(f"Node {node_id} not found")
        return row

    def node(self, node_id: uuid.UUID) -> Node:
        row = self._row(node_id)
        return Node(
            node_id=node_id,
            position=tuple(self._positions[row].tolist()),
            potential=float(self._potentials[row]),
            role=self._roles[row],
        )

    def nodes(self) -> Iterator[Node]:
        for node_id in self._node_ids:
            yield self.node(node_id)

    def position(self, node_id: uuid.UUID) -> Position:
        return tuple(self._positions[self._row(node_id)].tolist())

    def role(self, node_id: uuid.UUID) -> NodeRole:
        return self._roles[self._row(node_id)]

    def get_potential(self, node_id: uuid.UUID) -> float:
        return float(self._potentials[self._row(node_id)])

    def set_potential(self, node_id: uuid.UUID, potential: float) -> None:
        if not math.isfinite(potential):
            raise InvalidInputError(f"Potential must be finite, got {potential!r}")
        self._potentials[self._row(node_id)] = potential

    def positions_array(self) -> np.ndarray:
        """Read-only view of node positions, one row per node."""
        view = self._positions[: self.node_count]
        view.flags.writeable = False
        return view

    def potentials_array(self) -> np.ndarray:
        """Read-only view of node potentials, aligned with ``node_ids``."""
        view = self._potentials[: self.node_count]
        view.flags.writeable = False
        return view

    # -----------------------------------------------------------------------
    # Topology Management
    # -----------------------------------------------------------------------

    def _grow_arena(self) -> None:
        self._capacity *= 2
        positions = np.zeros((self._capacity, 3), dtype=np.float64)
        potentials = np.zeros(self._capacity, dtype=np.float64)
        count = self.node_count
        positions[:count] = self._positions[:count]
        potentials[:count] = self._potentials[:count]
        self._positions = positions
        self._potentials = potentials

    def create_node(
        self,
        position: Sequence[float],
        role: NodeRole = NodeRole.INTERNAL,
        node_id: Optional[uuid.UUID] = None,
        potential: float = 0.0,
    ) -> uuid.UUID:
        """Register a node.

        Args:
            position: (x, y, z) coordinates.
            role: INTERNAL, SENSOR or EFFECTOR (permanent).
            node_id: Optional explicit id (fresh uuid4 if None).
            potential: Initial potential.

        Returns:
            The node id.
        """
        try:
            pos = np.asarray(position, dtype=np.float64)
        except (TypeError, ValueError) as exc:
            raise InvalidInputError(f"Bad position {position!r}") from exc
        if pos.shape != (3,) or not np.all(np.isfinite(pos)):
            raise InvalidInputError(f"Position must be three finite floats, got {position!r}")
        if self.radius is not None and float(np.linalg.norm(pos)) > self.radius * (1.0 + 1e-9):
            raise InvalidInputError(
                f"Position {pos.tolist()} lies outside radius {self.radius}"
            )
        if not isinstance(role, NodeRole):
            raise InvalidInputError(f"Unknown role {role!r}")
        if not math.isfinite(potential):
            raise InvalidInputError(f"Potential must be finite, got {potential!r}")
        nid = node_id or new_uid()
        if nid in self._node_index:
            raise InvalidInputError(f"Node {nid} already exists")

        if self.node_count == self._capacity:
            self._grow_arena()
        row = self.node_count
        self._positions[row] = pos
        self._potentials[row] = potential
        self._node_ids.append(nid)
        self._node_index[nid] = row
        self._roles.append(role)
        self._outgoing[nid] = set()
        self._incoming[nid] = set()
        if role == NodeRole.SENSOR:
            self._sensors.append(nid)
        elif role == NodeRole.EFFECTOR:
            self._effectors.append(nid)
        return nid

    def has_edge(self, source: uuid.UUID, target: uuid.UUID) -> bool:
        """True if at least one edge runs source → target."""
        return self._pairs.get((source, target), 0) > 0

    def can_connect(self, source: uuid.UUID, target: uuid.UUID) -> bool:
        """Whether ``create_edge(source, target)`` would pass every check."""
        if source not in self._node_index or target not in self._node_index:
            return False
        if self.config.no_loop_connections:
            return source != target and not self.has_edge(source, target)
        return True

    def sample_receptor(self, new_connection: bool = False) -> float:
        """Receptor for an edge created without an explicit value.

        Runtime connections use ``synapse_new_connection_receptors`` when it
        is configured; everything else samples ``default_receptors``.
        """
        if new_connection and self.config.synapse_new_connection_receptors is not None:
            return float(self.config.synapse_new_connection_receptors)
        lo, hi = self.config.default_receptors
        return float(self.rng.uniform(lo, hi)) if hi > lo else float(lo)

    def create_edge(
        self,
        source: uuid.UUID,
        target: uuid.UUID,
        receptor: Optional[float] = None,
        edge_id: Optional[uuid.UUID] = None,
        propagation_decay: Optional[float] = None,
        inactivity: float = 0.0,
        enforce_policy: bool = True,
    ) -> uuid.UUID:
        """Create a directed edge between two nodes.

        Args:
            source: Source node id.
            target: Target node id.
            receptor: Signed strength (sampled from ``default_receptors``
                if None).
            edge_id: Optional explicit id.
            propagation_decay: Per-edge signal decay (config default if None).
            inactivity: Initial inactivity clock.
            enforce_policy: Apply the no-loop policy.  Only restoring an
                existing structure (copy, merge, decode) turns this off.

        Returns:
            The edge id.

        Raises:
            InvalidInputError: Missing endpoint, policy violation, bad values.
        """
        if source not in self._node_index:
            raise InvalidInputError(f"Source node {source} not found")
        if target not in self._node_index:
            raise InvalidInputError(f"Target node {target} not found")
        if enforce_policy and self.config.no_loop_connections:
            if source == target:
                raise InvalidInputError(f"Self-connection on {source} forbidden by no-loop policy")
            if self.has_edge(source, target):
                raise InvalidInputError(
                    f"Edge {source} -> {target} already exists (no-loop policy)"
                )
        if receptor is None:
            receptor = self.sample_receptor()
        if propagation_decay is None:
            propagation_decay = self.config.synapse_propagation_decay
        if not (math.isfinite(receptor) and math.isfinite(propagation_decay)):
            raise InvalidInputError("Edge receptor and decay must be finite")
        if propagation_decay < 0.0 or not math.isfinite(inactivity) or inactivity < 0.0:
            raise InvalidInputError("Edge decay and inactivity must be >= 0")
        eid = edge_id or new_uid()
        if eid in self.edges:
            raise InvalidInputError(f"Edge {eid} already exists")

        edge = Edge(
            edge_id=eid,
            source=source,
            target=target,
            receptor=float(receptor),
            propagation_decay=float(propagation_decay),
            inactivity=float(inactivity),
            length=self._distance(source, target),
        )
        self.edges[eid] = edge
        self._outgoing[source].add(eid)
        self._incoming[target].add(eid)
        self._pairs[(source, target)] = self._pairs.get((source, target), 0) + 1
        self._edge_signals[eid] = set()
        return eid

    def _distance(self, a: uuid.UUID, b: uuid.UUID) -> float:
        pa = self._positions[self._node_index[a]]
        pb = self._positions[self._node_index[b]]
        return float(np.linalg.norm(pa - pb))

    def _unlink_pair(self, edge: Edge) -> None:
        key = (edge.source, edge.target)
        remaining = self._pairs.get(key, 0) - 1
        if remaining > 0:
            self._pairs[key] = remaining
        else:
            self._pairs.pop(key, None)

    def remove_edge(self, edge_id: uuid.UUID) -> None:
        """Remove an edge together with any signal travelling on it."""
        edge = self.edges.pop(edge_id, None)
        if edge is None:
            raise NotFoundError(f"Edge {edge_id} not found")
        for sid in self._edge_signals.pop(edge_id, set()):
            self.signals.pop(sid, None)
        self._outgoing[edge.source].discard(edge_id)
        self._incoming[edge.target].discard(edge_id)
        self._unlink_pair(edge)

    def rewire_edge(
        self,
        edge_id: uuid.UUID,
        new_target: uuid.UUID,
        receptor: Optional[float] = None,
    ) -> None:
        """Point an existing edge at a new target, keeping its id.

        The inactivity clock restarts and in-flight signals are dropped.
        """
        edge = self.edges.get(edge_id)
        if edge is None:
            raise NotFoundError(f"Edge {edge_id} not found")
        if new_target not in self._node_index:
            raise InvalidInputError(f"Target node {new_target} not found")
        if self.config.no_loop_connections and new_target != edge.target:
            if new_target == edge.source or self.has_edge(edge.source, new_target):
                raise InvalidInputError(
                    f"Rewiring {edge_id} to {new_target} violates the no-loop policy"
                )
        if receptor is not None and not math.isfinite(receptor):
            raise InvalidInputError("Receptor must be finite")

        for sid in self._edge_signals[edge_id]:
            self.signals.pop(sid, None)
        self._edge_signals[edge_id] = set()
        self._incoming[edge.target].discard(edge_id)
        self._unlink_pair(edge)
        edge.target = new_target
        edge.length = self._distance(edge.source, new_target)
        edge.inactivity = 0.0
        if receptor is not None:
            edge.receptor = float(receptor)
        self._incoming[new_target].add(edge_id)
        self._pairs[(edge.source, new_target)] = self._pairs.get((edge.source, new_target), 0) + 1

    def get_edge(self, edge_id: uuid.UUID) -> Edge:
        edge = self.edges.get(edge_id)
        if edge is None:
            raise NotFoundError(f"Edge {edge_id} not found")
        return edge

    def outgoing_edges(self, node_id: uuid.UUID) -> List[Edge]:
        if node_id not in self._node_index:
            raise NotFoundError(f"Node {node_id} not found")
        return [self.edges[eid] for eid in self._outgoing[node_id]]

    def incoming_edges(self, node_id: uuid.UUID) -> List[Edge]:
        if node_id not in self._node_index:
            raise NotFoundError(f"Node {node_id} not found")
        return [self.edges[eid] for eid in self._incoming[node_id]]

    def fan_counts(self) -> Tuple[np.ndarray, np.ndarray]:
        """(incoming, outgoing) edge counts per node, aligned with ``node_ids``."""
        incoming = np.fromiter(
            (len(self._incoming[nid]) for nid in self._node_ids), dtype=np.int64, count=self.node_count
        )
        outgoing = np.fromiter(
            (len(self._outgoing[nid]) for nid in self._node_ids), dtype=np.int64, count=self.node_count
        )
        return incoming, outgoing

    def neighbors(self, position: Sequence[float], radius: float) -> NeighborQuery:
        """Node ids within Euclidean ``radius`` of ``position``."""
        if not (math.isfinite(radius) and radius >= 0.0):
            raise InvalidInputError(f"Neighbor radius must be >= 0, got {radius!r}")
        return NeighborQuery(self, tuple(position), radius)

    # -----------------------------------------------------------------------
    # Signals
    # -----------------------------------------------------------------------

    def spawn_signal(
        self,
        edge_id: uuid.UUID,
        potential: float,
        progress: float = 0.0,
        signal_id: Optional[uuid.UUID] = None,
    ) -> uuid.UUID:
        """Put a signal on an edge."""
        if edge_id not in self.edges:
            raise InvalidInputError(f"Edge {edge_id} not found")
        if not (math.isfinite(potential) and math.isfinite(progress)):
            raise InvalidInputError("Signal potential and progress must be finite")
        if potential < 0.0 or progress < 0.0:
            raise InvalidInputError("Signal potential and progress must be >= 0")
        sid = signal_id or new_uid()
        if sid in self.signals:
            raise InvalidInputError(f"Signal {sid} already exists")
        self.signals[sid] = Signal(
            signal_id=sid, edge_id=edge_id, progress=float(progress), potential=float(potential)
        )
        self._edge_signals[edge_id].add(sid)
        return sid

    def edge_signals(self, edge_id: uuid.UUID) -> List[Signal]:
        if edge_id not in self.edges:
            raise NotFoundError(f"Edge {edge_id} not found")
        return [self.signals[sid] for sid in self._edge_signals[edge_id]]

    def clear_signals(self) -> None:
        self.signals.clear()
        for sids in self._edge_signals.values():
            sids.clear()

    # -----------------------------------------------------------------------
    # Boundary operations
    # -----------------------------------------------------------------------

    def inject_sensor_signal(self, sensor_id: uuid.UUID, potential: float) -> None:
        """Add potential directly to a Sensor node."""
        row = self._node_index.get(sensor_id)
        if row is None or self._roles[row] != NodeRole.SENSOR:
            raise NotFoundError(f"Sensor {sensor_id} not found")
        if not math.isfinite(potential):
            raise InvalidInputError(f"Potential must be finite, got {potential!r}")
        self._potentials[row] += potential

    def release_effector_potential(self, effector_id: uuid.UUID) -> float:
        """Read and clear an Effector node's accumulated potential."""
        row = self._node_index.get(effector_id)
        if row is None or self._roles[row] != NodeRole.EFFECTOR:
            raise NotFoundError(f"Effector {effector_id} not found")
        potential = float(self._potentials[row])
        self._potentials[row] = 0.0
        return potential

    def force_random_signals(self, count: int, min_potential: float, max_potential: float) -> int:
        """Spawn one signal on each of up to ``count`` distinct random edges.

        Returns:
            Number of signals spawned (``min(count, edge count)``).
        """
        if count < 0:
            raise InvalidInputError(f"count must be >= 0, got {count}")
        if not (math.isfinite(min_potential) and math.isfinite(max_potential)):
            raise InvalidInputError("Potential bounds must be finite")
        if min_potential < 0.0 or min_potential > max_potential:
            raise InvalidInputError(
                f"Bad potential range [{min_potential}, {max_potential}]"
            )
        edge_ids = list(self.edges)
        n = min(count, len(edge_ids))
        if n == 0:
            return 0
        picks = self.rng.choice(len(edge_ids), size=n, replace=False)
        potentials = self.rng.uniform(min_potential, max_potential, size=n)
        for index, potential in zip(picks.tolist(), potentials.tolist()):
            self.spawn_signal(edge_ids[index], potential)
        return n

    # -----------------------------------------------------------------------
    # Simulation Loop
    # -----------------------------------------------------------------------

    def process(self, delta_time: float, executor: Optional[Executor] = None) -> StepResult:
        """Advance one tick.

        Pipeline:
            1. Advance signals along their edges; decay their potential
            2. Consume arrived signals into target potentials
            3. Decay node potentials toward zero
            4. Fire nodes at/above threshold, spawning one signal per
               outgoing edge
            5. Age idle edges; apply structural plasticity rules

        Args:
            delta_time: Simulated time covered by the tick (>= 0).
            executor: Optional worker pool.  Phases 1, 3 and the edge ageing
                of phase 5 are split into chunks of disjoint entities; each
                phase waits for all of its chunks before the next starts.

        Returns:
            StepResult with fired nodes and structural change counts.

        Raises:
            NotFoundError: The network has been destroyed.
            InvalidInputError: ``delta_time`` is negative or not finite.
        """
        if self._destroyed:
            raise NotFoundError(f"Network {self.network_id} has been destroyed")
        if not (math.isfinite(delta_time) and delta_time >= 0.0):
            raise InvalidInputError(f"delta_time must be >= 0, got {delta_time!r}")

        cfg = self.config
        result = StepResult(time=self.time + delta_time)

        # 1. Advance signals
        step = cfg.propagation_speed * delta_time
        arrivals = self._run_phase(
            lambda chunk: self._advance_signals(chunk, step, delta_time),
            _chunked(list(self.signals.values())),
            executor,
        )

        # 2. Consume arrivals
        touched = self._consume_arrivals(arrivals)
        result.signals_consumed = len(arrivals)

        # 3. Decay node potentials (double-buffered)
        count = self.node_count
        decayed = self._potentials[:count].copy()
        decay = cfg.neuron_potential_decay * delta_time
        self._run_phase(
            lambda bounds: self._decay_slice(decayed, decay, bounds),
            _slices(count),
            executor,
        )
        self._potentials[:count] = decayed

        # 4. Fire
        result.fired_node_ids, result.signals_spawned = self._fire()

        # 5. Structural plasticity
        idle = [e for e in self.edges.values() if e.edge_id not in touched]
        self._run_phase(
            lambda chunk: self._age_edges(chunk, delta_time),
            _chunked(idle),
            executor,
        )
        for rule in self._plasticity_rules:
            rule.apply(self, result)

        self.time = result.time
        if result.fired_node_ids or result.edges_pruned or result.edges_rewired:
            logger.debug(
                "tick t=%.4f fired=%d consumed=%d spawned=%d pruned=%d rewired=%d",
                self.time,
                len(result.fired_node_ids),
                result.signals_consumed,
                result.signals_spawned,
                result.edges_pruned,
                result.edges_rewired,
            )
        return result

    def process_n(self, n: int, delta_time: float) -> List[StepResult]:
        """Run n ticks; returns all StepResults."""
        return [self.process(delta_time) for _ in range(n)]

    # -- phase helpers ------------------------------------------------------

    @staticmethod
    def _run_phase(
        work: Callable[[T], Optional[List]],
        chunks: List[T],
        executor: Optional[Executor],
    ) -> List:
        """Run ``work`` once per chunk, on ``executor`` if given.

        Chunks touch disjoint entities.  Results (lists) are concatenated;
        collecting every chunk is the barrier between phases.
        """
        if executor is None or len(chunks) < 2:
            parts = [work(chunk) for chunk in chunks]
        else:
            parts = list(executor.map(work, chunks))
        collected: List = []
        for part in parts:
            if part:
                collected.extend(part)
        return collected

    def _advance_signals(
        self, signals: Sequence[Signal], step: float, delta_time: float
    ) -> List[Signal]:
        arrived = []
        edges = self.edges
        for signal in signals:
            edge = edges[signal.edge_id]
            signal.progress += step
            signal.potential = max(0.0, signal.potential - edge.propagation_decay * delta_time)
            if signal.progress >= edge.length:
                arrived.append(signal)
        return arrived

    def _consume_arrivals(self, arrivals: List[Signal]) -> Set[uuid.UUID]:
        touched: Set[uuid.UUID] = set()
        if not arrivals:
            return touched
        rows = np.empty(len(arrivals), dtype=np.intp)
        values = np.empty(len(arrivals), dtype=np.float64)
        for i, signal in enumerate(arrivals):
            edge = self.edges[signal.edge_id]
            rows[i] = self._node_index[edge.target]
            values[i] = -signal.potential if edge.receptor < 0.0 else signal.potential
            edge.inactivity = 0.0
            touched.add(edge.edge_id)
            self._edge_signals[edge.edge_id].discard(signal.signal_id)
            del self.signals[signal.signal_id]
        delta = np.zeros(self.node_count, dtype=np.float64)
        np.add.at(delta, rows, values)
        self._potentials[: self.node_count] += delta
        return touched

    @staticmethod
    def _decay_slice(buffer: np.ndarray, decay: float, bounds: Tuple[int, int]) -> None:
        lo, hi = bounds
        part = buffer[lo:hi]
        buffer[lo:hi] = np.sign(part) * np.maximum(np.abs(part) - decay, 0.0)

    def _fire(self) -> Tuple[List[uuid.UUID], int]:
        cfg = self.config
        count = self.node_count
        potentials = self._potentials[:count]
        firing = potentials >= cfg.action_potential_threshold
        rows = np.flatnonzero(firing).tolist()
        fired: List[uuid.UUID] = []
        spawned = 0
        retain = max(0.0, 1.0 - cfg.receptors_excitation)
        for row in rows:
            nid = self._node_ids[row]
            p = float(potentials[row])
            for eid in self._outgoing[nid]:
                edge = self.edges[eid]
                magnitude = p * abs(edge.receptor)
                if edge.receptor < 0.0:
                    magnitude *= cfg.receptors_inhibition
                self.spawn_signal(eid, magnitude)
                spawned += 1
            potentials[row] = p * retain
            fired.append(nid)
        return fired, spawned

    def _age_edges(self, edges: Sequence[Edge], delta_time: float) -> None:
        for edge in edges:
            if not self._edge_signals[edge.edge_id]:
                edge.inactivity += delta_time


def _chunked(items: List[T]) -> List[List[T]]:
    return [items[i:i + PARALLEL_CHUNK_SIZE] for i in range(0, len(items), PARALLEL_CHUNK_SIZE)]


def _slices(count: int) -> List[Tuple[int, int]]:
    return [(lo, min(lo + PARALLEL_CHUNK_SIZE, count)) for lo in range(0, count, PARALLEL_CHUNK_SIZE)]

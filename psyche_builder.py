"""
Psyche Builder - construct initial networks and evolve offspring.

Construction scatters nodes uniformly inside a sphere, marks the nodes
closest to random points on its surface as Sensors / Effectors, then spends
a per-edge attempt budget connecting spatial neighbours.  A density the
geometry cannot satisfy degrades to fewer edges (logged, and reported in
``NetworkBuilder.last_report``) rather than failing.

Evolution is purely additive:

    evolve_mutated(parent)        copy with the same ids, then grow
    evolve_merged(a, b)           union under freshly minted ids, then grow

Usage::

    from psyche_builder import build_network, evolve_mutated

    net = build_network(neurons=50, connections=120, seed=7)
    child = evolve_mutated(net, seed=8)
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional

import numpy as np

from psyche_config import (
    BrainConfig,
    BuilderParams,
    OffspringParams,
    default_builder_params,
    default_config,
    default_offspring_params,
)
from psyche_foundation import InvalidHandleError, InvalidInputError, Network, NodeRole
from psyche_plasticity import connect_neighbors, neurogenesis, random_direction

logger = logging.getLogger("psyche.builder")


@dataclass
class BuildReport:
    """Outcome of a construction run.

    Attributes:
        requested_connections: Edges asked for.
        created_connections: Edges actually created.
    """

    requested_connections: int = 0
    created_connections: int = 0

    @property
    def shortfall(self) -> int:
        return max(0, self.requested_connections - self.created_connections)

    @property
    def feasible(self) -> bool:
        return self.shortfall == 0


def _peripheral_point(rng: np.random.Generator, radius: float) -> np.ndarray:
    return random_direction(rng) * radius


def _nearest_row(positions: np.ndarray, point: np.ndarray, taken: np.ndarray) -> int:
    deltas = positions - point
    dist_sq = np.einsum("ij,ij->i", deltas, deltas)
    dist_sq[taken] = np.inf
    return int(np.argmin(dist_sq))


def _policy_config(config: BrainConfig, params: Any) -> BrainConfig:
    return config.with_overrides(
        no_loop_connections=params.no_loop_connections,
        max_connecting_tries=params.max_connecting_tries,
    )


def _connect(network: Network, count: int, max_range: float, max_tries: int) -> int:
    """Create up to ``count`` edges; stop at the first exhausted budget."""
    created = 0
    for _ in range(count):
        if connect_neighbors(network, max_range, max_tries) is None:
            break
        created += 1
    return created


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

class NetworkBuilder:
    """Build a fresh network from ``BuilderParams``.

    Args:
        config: Network config (defaults if None).  Its no-loop flag and
            try budget are replaced by the values in ``params``.
        params: Shape of the network (defaults if None).
        seed: Seed for the network's random generator.
    """

    def __init__(
        self,
        config: Optional[BrainConfig] = None,
        params: Optional[BuilderParams] = None,
        seed: Optional[int] = None,
    ):
        self.config = config or default_config()
        self.params = params or default_builder_params()
        self.seed = seed
        self.last_report: Optional[BuildReport] = None

    def build(self) -> Network:
        params = self.params
        params.validate()
        network = Network(
            config=_policy_config(self.config, params),
            radius=params.radius,
            seed=self.seed,
        )
        rng = network.rng

        # Uniform in the ball: radial CDF is r^3.
        n = params.neurons
        directions = rng.normal(size=(n, 3))
        norms = np.linalg.norm(directions, axis=1)
        norms[norms == 0.0] = 1.0
        radii = params.radius * np.cbrt(rng.random(n))
        positions = directions / norms[:, None] * radii[:, None]

        roles = [NodeRole.INTERNAL] * n
        taken = np.zeros(n, dtype=bool)
        for role, wanted in ((NodeRole.SENSOR, params.sensors), (NodeRole.EFFECTOR, params.effectors)):
            for _ in range(wanted):
                row = _nearest_row(positions, _peripheral_point(rng, params.radius), taken)
                taken[row] = True
                roles[row] = role

        for row in range(n):
            network.create_node(positions[row], role=roles[row])

        created = _connect(
            network, params.connections, params.max_neurogenesis_range, params.max_connecting_tries
        )
        self.last_report = BuildReport(
            requested_connections=params.connections, created_connections=created
        )
        if not self.last_report.feasible:
            logger.warning(
                "Requested %d connections, created %d (range %.3f too small for density)",
                params.connections, created, params.max_neurogenesis_range,
            )
        logger.info(
            "Built network %s: %d nodes, %d edges, %d sensors, %d effectors",
            network.network_id, network.node_count, len(network.edges),
            len(network.sensors), len(network.effectors),
        )
        return network


def build_network(
    config: Optional[BrainConfig] = None,
    params: Optional[BuilderParams] = None,
    seed: Optional[int] = None,
    **overrides: Any,
) -> Network:
    """Build a network; keyword overrides patch ``params`` field by field."""
    params = params or default_builder_params()
    if overrides:
        try:
            params = replace(params, **overrides)
        except TypeError as exc:
            raise InvalidInputError(str(exc)) from exc
    return NetworkBuilder(config, params, seed).build()


# ---------------------------------------------------------------------------
# Evolution
# ---------------------------------------------------------------------------

def _check_parent(parent: Network) -> None:
    if parent.destroyed:
        raise InvalidHandleError(f"Network {parent.network_id} has been destroyed")


def _child_radius(params: OffspringParams, *parents: Network) -> Optional[float]:
    radii = [p.radius for p in parents]
    if any(r is None for r in radii):
        return None
    return max([params.radius] + radii)


def _copy_structure(
    source: Network,
    target: Network,
    node_map: Optional[Dict[uuid.UUID, uuid.UUID]] = None,
) -> int:
    """Copy nodes and edges of ``source`` into ``target``.

    With ``node_map`` every node and edge gets a fresh id and the map is
    filled old → new; without it ids are kept.  Potentials, clocks and
    in-flight signals are not carried over.  Under the target's no-loop
    policy, self-edges and repeated ordered pairs are left behind.

    Returns:
        Number of edges dropped by the no-loop policy.
    """
    fresh = node_map is not None
    for node in source.nodes():
        new_id = target.create_node(
            node.position, role=node.role, node_id=None if fresh else node.node_id
        )
        if fresh:
            node_map[node.node_id] = new_id
    dropped = 0
    for edge in source.edges.values():
        src = node_map[edge.source] if fresh else edge.source
        dst = node_map[edge.target] if fresh else edge.target
        if not target.can_connect(src, dst):
            dropped += 1
            continue
        target.create_edge(
            src,
            dst,
            receptor=edge.receptor,
            edge_id=None if fresh else edge.edge_id,
            propagation_decay=edge.propagation_decay,
        )
    if dropped:
        logger.warning(
            "Dropped %d edges of %s forbidden by the no-loop policy",
            dropped, source.network_id,
        )
    return dropped


def _grow(network: Network, params: OffspringParams) -> Dict[str, int]:
    """Additive growth step shared by both evolution operators."""
    rng = network.rng
    lo, hi = params.min_neurogenesis_range, params.max_neurogenesis_range
    tries = params.max_connecting_tries
    radius = network.radius if network.radius is not None else params.radius
    grown = {"neurons": 0, "connections": 0, "sensors": 0, "effectors": 0}
    seeded = 0

    def anchor() -> uuid.UUID:
        ids = network.node_ids
        return ids[int(rng.integers(len(ids)))]

    def peripheral_anchor() -> uuid.UUID:
        positions = np.asarray(network.positions_array())
        taken = np.zeros(len(positions), dtype=bool)
        return network.node_ids[_nearest_row(positions, _peripheral_point(rng, radius), taken)]

    if network.node_count == 0 and (params.new_neurons or params.new_sensors or params.new_effectors):
        # Nothing to anchor on; seed growth with one node at the centre.
        network.create_node((0.0, 0.0, 0.0))
        seeded = 1
        grown["neurons"] += seeded

    def sprout(origin: uuid.UUID, role: NodeRole = NodeRole.INTERNAL) -> int:
        try:
            neurogenesis(network, origin, lo, hi, tries, role=role)
        except InvalidInputError as exc:
            logger.debug("Neurogenesis skipped: %s", exc)
            return 0
        return 1

    for _ in range(params.new_neurons):
        grown["neurons"] += sprout(anchor())
    grown["connections"] = _connect(network, params.new_connections, hi, tries)
    for role, key, count in (
        (NodeRole.SENSOR, "sensors", params.new_sensors),
        (NodeRole.EFFECTOR, "effectors", params.new_effectors),
    ):
        for _ in range(count):
            grown[key] += sprout(peripheral_anchor(), role)
    wanted = params.new_neurons + params.new_sensors + params.new_effectors
    placed = grown["neurons"] + grown["sensors"] + grown["effectors"] - seeded
    if placed < wanted:
        logger.warning(
            "Grew %d of %d requested nodes; the growth shell does not fit radius %s",
            placed, wanted, network.radius,
        )
    return grown


def evolve_mutated(
    parent: Network,
    config: Optional[BrainConfig] = None,
    params: Optional[OffspringParams] = None,
    seed: Optional[int] = None,
) -> Network:
    """Copy ``parent`` (same ids) and grow it additively.

    Raises:
        InvalidHandleError: ``parent`` has been destroyed.
        InvalidInputError: ``params`` are out of range.
    """
    _check_parent(parent)
    params = params or default_offspring_params()
    params.validate()
    child = Network(
        config=_policy_config(config or parent.config, params),
        radius=_child_radius(params, parent),
        seed=seed,
    )
    _copy_structure(parent, child)
    grown = _grow(child, params)
    logger.info("Mutated %s into %s: grew %s", parent.network_id, child.network_id, grown)
    return child


def evolve_merged(
    parent_a: Network,
    parent_b: Network,
    config: Optional[BrainConfig] = None,
    params: Optional[OffspringParams] = None,
    seed: Optional[int] = None,
) -> Network:
    """Union both parents under fresh ids and grow the result additively.

    The config defaults to the blend of both parents' configs.

    Raises:
        InvalidHandleError: Either parent has been destroyed.
        InvalidInputError: ``params`` are out of range.
    """
    _check_parent(parent_a)
    _check_parent(parent_b)
    params = params or default_offspring_params()
    params.validate()
    child = Network(
        config=_policy_config(config or parent_a.config.merge(parent_b.config), params),
        radius=_child_radius(params, parent_a, parent_b),
        seed=seed,
    )
    for parent in (parent_a, parent_b):
        _copy_structure(parent, child, node_map={})
    grown = _grow(child, params)
    logger.info(
        "Merged %s and %s into %s: grew %s",
        parent_a.network_id, parent_b.network_id, child.network_id, grown,
    )
    return child
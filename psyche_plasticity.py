"""
Psyche Plasticity - structural rules and growth primitives.

Rules run at the end of every tick (pluggable strategy objects, swapped via
``Network.set_plasticity_rules``):

    InactivityRule:
        An edge idle for longer than ``synapse_inactivity_time`` is rewired
        to another node within ``synapse_reconnection_range`` of its source
        when a range is configured and a valid candidate is found within
        ``max_connecting_tries`` samples; otherwise it is removed.
    OverdoseRule:
        Receptor magnitudes above ``synapse_overdose_receptors`` are clamped
        to the cap, keeping their sign.

Growth primitives (used by the builder and the evolution operators, never
by the tick itself):

    neurogenesis():       new node in a [min, max] shell around an anchor,
                          plus one connecting edge to or from a neighbour
    connect_neighbors():  one edge between spatial neighbours
"""

from __future__ import annotations

import logging
import math
import uuid
from typing import TYPE_CHECKING, List, Optional, Sequence, Tuple

import numpy as np

from psyche_foundation import Edge, InvalidInputError, NodeRole, StepResult

if TYPE_CHECKING:
    from psyche_foundation import Network

logger = logging.getLogger("psyche.plasticity")


# ---------------------------------------------------------------------------
# Plasticity Rules
# ---------------------------------------------------------------------------

class PlasticityRule:
    """Base class for pluggable structural plasticity rules.

    Subclass and override ``apply`` to create custom rules.
    """

    def apply(self, network: "Network", result: StepResult) -> None:
        raise NotImplementedError


class InactivityRule(PlasticityRule):
    """Prune or reconnect edges whose inactivity clock ran out."""

    def apply(self, network: "Network", result: StepResult) -> None:
        cfg = network.config
        timeout = cfg.synapse_inactivity_time
        expired = [e for e in network.edges.values() if e.inactivity > timeout]
        if not expired:
            return

        for edge in expired:
            if cfg.synapse_reconnection_range is not None:
                target = self.select_reconnection_target(network, edge)
                if target is not None:
                    receptor = cfg.synapse_new_connection_receptors
                    network.rewire_edge(edge.edge_id, target, receptor=receptor)
                    result.edges_rewired += 1
                    continue
            network.remove_edge(edge.edge_id)
            result.edges_pruned += 1

        logger.debug(
            "inactivity: %d expired, %d rewired, %d pruned",
            len(expired), result.edges_rewired, result.edges_pruned,
        )

    @staticmethod
    def select_reconnection_target(network: "Network", edge: Edge) -> Optional[uuid.UUID]:
        """Sample a new target near the edge's source, or None.

        Candidates exclude the current target, and under the no-loop policy
        also the source itself and nodes the source already points at.
        """
        cfg = network.config
        source_pos = network.position(edge.source)
        candidates = [
            nid for nid in network.neighbors(source_pos, cfg.synapse_reconnection_range)
            if nid != edge.target
        ]
        if not candidates:
            return None
        for _ in range(cfg.max_connecting_tries):
            candidate = candidates[int(network.rng.integers(len(candidates)))]
            if cfg.no_loop_connections and (
                candidate == edge.source or network.has_edge(edge.source, candidate)
            ):
                continue
            return candidate
        return None


class OverdoseRule(PlasticityRule):
    """Clamp receptor magnitudes to ``synapse_overdose_receptors``."""

    def apply(self, network: "Network", result: StepResult) -> None:
        cap = network.config.synapse_overdose_receptors
        if cap is None:
            return
        for edge in network.edges.values():
            if abs(edge.receptor) > cap:
                edge.receptor = math.copysign(cap, edge.receptor)
                result.edges_clamped += 1


def default_plasticity_rules() -> List[PlasticityRule]:
    return [InactivityRule(), OverdoseRule()]


# ---------------------------------------------------------------------------
# Growth primitives
# ---------------------------------------------------------------------------

def random_direction(rng: np.random.Generator) -> np.ndarray:
    """Unit vector uniformly distributed on the sphere."""
    while True:
        v = rng.normal(size=3)
        norm = float(np.linalg.norm(v))
        if norm > 1e-12:
            return v / norm


def _shell_point_inside(
    rng: np.random.Generator,
    origin: np.ndarray,
    min_range: float,
    max_range: float,
    radius: float,
) -> Optional[np.ndarray]:
    """Point in the [min_range, max_range] shell around ``origin`` that also
    lies inside the ball of ``radius``; None if the two do not intersect."""
    norm = float(np.linalg.norm(origin))
    lo = max(min_range, norm - radius)
    hi = min(max_range, norm + radius)
    if lo > hi:
        return None
    # Heading for the centre keeps |origin + d * u| == |norm - d| <= radius.
    direction = -origin / norm if norm > 1e-12 else random_direction(rng)
    return origin + direction * lo


def _pick(rng: np.random.Generator, items: Sequence):
    return items[int(rng.integers(len(items)))]


def try_connect(
    network: "Network",
    source: uuid.UUID,
    target: uuid.UUID,
    new_connection: bool = False,
) -> Optional[uuid.UUID]:
    """Create source → target if the network's policy allows it."""
    if not network.can_connect(source, target):
        return None
    return network.create_edge(
        source, target, receptor=network.sample_receptor(new_connection=new_connection)
    )


def neurogenesis(
    network: "Network",
    anchor: uuid.UUID,
    min_range: float,
    max_range: float,
    max_tries: int,
    role: NodeRole = NodeRole.INTERNAL,
    rng: Optional[np.random.Generator] = None,
) -> Tuple[uuid.UUID, Optional[uuid.UUID]]:
    """Grow a new node near ``anchor`` and try to wire it in.

    The new node sits at a random direction from the anchor, at a distance
    drawn from [min_range, max_range].  Placements outside the network
    radius are re-drawn up to ``max_tries`` times, then fall back to a
    point of the shell on the line from the anchor toward the centre.  Up
    to ``max_tries`` attempts are made to connect the new node to or from a
    node within ``max_range`` of it.

    Returns:
        (new node id, new edge id or None if no connection was possible).

    Raises:
        InvalidInputError: Bad range or budget, or no part of the shell lies
            inside the network radius.
    """
    if min_range < 0.0 or max_range < min_range:
        raise InvalidInputError(f"Bad neurogenesis range [{min_range}, {max_range}]")
    if max_tries < 1:
        raise InvalidInputError(f"max_tries must be >= 1, got {max_tries}")
    rng = rng if rng is not None else network.rng
    origin = np.asarray(network.position(anchor))

    for _ in range(max_tries):
        distance = float(rng.uniform(min_range, max_range)) if max_range > min_range else min_range
        pos = origin + random_direction(rng) * distance
        if network.radius is None or float(np.linalg.norm(pos)) <= network.radius:
            break
    else:
        pos = _shell_point_inside(rng, origin, min_range, max_range, network.radius)
        if pos is None:
            raise InvalidInputError(
                f"No point within [{min_range}, {max_range}] of anchor {anchor} "
                f"lies inside radius {network.radius}"
            )

    node_id = network.create_node(pos.tolist(), role=role)
    candidates = [nid for nid in network.neighbors(pos.tolist(), max_range) if nid != node_id]
    edge_id: Optional[uuid.UUID] = None
    if candidates:
        for _ in range(max_tries):
            other = _pick(rng, candidates)
            if rng.random() < 0.5:
                edge_id = try_connect(network, other, node_id, new_connection=True)
            else:
                edge_id = try_connect(network, node_id, other, new_connection=True)
            if edge_id is not None:
                break
    return node_id, edge_id


def connect_neighbors(
    network: "Network",
    max_range: float,
    max_tries: int,
    rng: Optional[np.random.Generator] = None,
    candidates: Optional[Sequence[uuid.UUID]] = None,
) -> Optional[uuid.UUID]:
    """Spend up to ``max_tries`` attempts creating one edge between neighbours.

    Each attempt picks a random origin (from ``candidates`` or all nodes)
    and a random node within ``max_range`` of it, and connects origin →
    target if the no-loop policy allows.

    Returns:
        The new edge id, or None if the budget ran out.
    """
    rng = rng if rng is not None else network.rng
    pool = list(candidates) if candidates is not None else network.node_ids
    if not pool:
        return None
    for _ in range(max_tries):
        origin = _pick(rng, pool)
        near = list(network.neighbors(network.position(origin), max_range))
        if network.config.no_loop_connections:
            near = [nid for nid in near if nid != origin]
        if not near:
            continue
        target = _pick(rng, near)
        edge_id = try_connect(network, origin, target)
        if edge_id is not None:
            return edge_id
    return None

"""
Psyche Registry - process-wide table of live networks and the external API.

``BrainRegistry`` owns every network created through this module, keyed by
an opaque handle (a UUID unrelated to the network's own id, so decoding the
same payload twice yields two independent entries).  A single re-entrant
lock serialises create / destroy / lookup against ticks and ``process_all``.

The module-level functions are the surface collaborators (driving loops,
exporters, language bridges) call.  None of them raises on caller error:
each returns an explicit failure value (``False``, ``None`` or a
``(False, ...)`` pair) and logs a warning instead.

Usage::

    import psyche_registry as psyche

    handle = psyche.build(neurons=10, connections=0, sensors=2, effectors=0, seed=1)
    sensor = psyche.get_sensors(handle)[0]
    psyche.inject_sensor_signal(handle, sensor, 10.0)
    psyche.process(handle, 1.0)
    ok, stats = psyche.activity_stats(handle)
    psyche.destroy(handle)
"""

from __future__ import annotations

import functools
import logging
import math
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple, TypeVar

from psyche_builder import build_network
from psyche_builder import evolve_merged as _evolve_merged
from psyche_builder import evolve_mutated as _evolve_mutated
from psyche_codec import from_bytes, from_json, from_yaml, to_bytes, to_json, to_yaml
from psyche_config import (
    BrainConfig,
    BuilderParams,
    OffspringParams,
    default_builder_params,
    default_config,
    default_offspring_params,
)
from psyche_foundation import (
    InvalidHandleError,
    InvalidInputError,
    Network,
    NotFoundError,
    PsycheError,
    StepResult,
)
from psyche_stats import ActivityMap, ActivityStats, build_activity_map
from psyche_stats import activity_stats as _activity_stats

logger = logging.getLogger("psyche.registry")

T = TypeVar("T")

__all__ = [
    "BrainRegistry",
    "activity_map",
    "activity_stats",
    "build",
    "default_builder_params",
    "default_config",
    "default_offspring_params",
    "deserialize_bytes",
    "deserialize_json",
    "deserialize_yaml",
    "destroy",
    "edge_count",
    "evolve_merged",
    "evolve_mutated",
    "exists",
    "force_random_signals",
    "get_effectors",
    "get_registry",
    "get_sensors",
    "inject_sensor_signal",
    "process",
    "process_all",
    "release_effector_potential",
    "serialize_bytes",
    "serialize_json",
    "serialize_yaml",
]


class BrainRegistry:
    """Handle → Network table.

    Args:
        max_workers: Pool size for ``process_all(parallel=True)``
            (``ThreadPoolExecutor`` default if None).
    """

    _instance: Optional[BrainRegistry] = None
    _instance_lock = threading.Lock()

    def __init__(self, max_workers: Optional[int] = None) -> None:
        self._lock = threading.RLock()
        self._networks: Dict[uuid.UUID, Network] = {}
        # Handles of destroyed networks, kept so reuse reports a stale handle.
        self._destroyed: Set[uuid.UUID] = set()
        self.max_workers = max_workers

    @classmethod
    def get_instance(cls) -> BrainRegistry:
        """Return the process-wide registry, creating it if needed."""
        with cls._instance_lock:
            if cls._instance is None:
                cls._instance = cls()
            return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Drop the process-wide registry (useful for testing)."""
        with cls._instance_lock:
            cls._instance = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._networks)

    def handles(self) -> List[uuid.UUID]:
        with self._lock:
            return list(self._networks)

    # -- lifecycle ------------------------------------------------------

    def create(self, network: Network) -> uuid.UUID:
        """Take ownership of ``network`` and return its new handle."""
        handle = uuid.uuid4()
        with self._lock:
            self._networks[handle] = network
        logger.info("Registered network %s as %s", network.network_id, handle)
        return handle

    def destroy(self, handle: uuid.UUID) -> None:
        with self._lock:
            network = self._networks.pop(handle, None)
            if network is None:
                raise self._missing(handle)
            self._destroyed.add(handle)
            network.destroy()
        logger.info("Destroyed network %s", handle)

    def exists(self, handle: uuid.UUID) -> bool:
        with self._lock:
            return handle in self._networks

    def get(self, handle: uuid.UUID) -> Network:
        with self._lock:
            network = self._networks.get(handle)
            if network is None:
                raise self._missing(handle)
        return network

    def _missing(self, handle: uuid.UUID) -> NotFoundError:
        if handle in self._destroyed:
            return InvalidHandleError(f"Handle {handle} has been destroyed")
        return NotFoundError(f"Unknown handle {handle}")

    def apply(self, handle: uuid.UUID, fn: Callable[[Network], T]) -> T:
        """Run ``fn`` on the network under the registry lock."""
        with self._lock:
            return fn(self.get(handle))

    def apply_many(self, handles: Sequence[uuid.UUID], fn: Callable[..., T]) -> T:
        """Run ``fn`` on several networks at once under the registry lock."""
        with self._lock:
            return fn(*[self.get(h) for h in handles])

    # -- ticks ----------------------------------------------------------

    def process(self, handle: uuid.UUID, delta_time: float) -> StepResult:
        return self.apply(handle, lambda net: net.process(delta_time))

    def process_all(self, delta_time: float, parallel: bool = False) -> Dict[uuid.UUID, StepResult]:
        """Advance every registered network by ``delta_time``.

        Networks share no state, so with ``parallel`` each network's whole
        tick runs on its own pool worker.  The registry lock is held
        throughout, so no network is created or destroyed mid-sweep.
        """
        if not (math.isfinite(delta_time) and delta_time >= 0.0):
            raise InvalidInputError(f"delta_time must be >= 0, got {delta_time!r}")
        with self._lock:
            items = list(self._networks.items())
            if parallel and len(items) > 1:
                with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                    results = list(pool.map(lambda item: item[1].process(delta_time), items))
            else:
                results = [net.process(delta_time) for _, net in items]
        return {handle: result for (handle, _), result in zip(items, results)}


def get_registry() -> BrainRegistry:
    return BrainRegistry.get_instance()


# ---------------------------------------------------------------------------
# External operations
# ---------------------------------------------------------------------------

def _surface(failure: Any) -> Callable:
    """Turn caller errors into ``failure`` and log them."""

    def decorate(fn: Callable) -> Callable:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return fn(*args, **kwargs)
            except (PsycheError, TypeError, ValueError) as exc:
                logger.warning("%s failed: %s", fn.__name__, exc)
                return failure

        return wrapper

    return decorate


@_surface(None)
def build(
    config: Optional[BrainConfig] = None,
    params: Optional[BuilderParams] = None,
    seed: Optional[int] = None,
    **overrides: Any,
) -> Optional[uuid.UUID]:
    """Build and register a network; returns its handle or None."""
    return get_registry().create(build_network(config, params, seed, **overrides))


@_surface(False)
def exists(handle: uuid.UUID) -> bool:
    return get_registry().exists(handle)


@_surface(False)
def destroy(handle: uuid.UUID) -> bool:
    get_registry().destroy(handle)
    return True


@_surface(False)
def process(handle: uuid.UUID, delta_time: float) -> bool:
    get_registry().process(handle, delta_time)
    return True


@_surface(False)
def process_all(delta_time: float, parallel: bool = False) -> bool:
    get_registry().process_all(delta_time, parallel=parallel)
    return True


# -- codec ------------------------------------------------------------------

@_surface(None)
def serialize_bytes(handle: uuid.UUID) -> Optional[bytes]:
    return get_registry().apply(handle, to_bytes)


@_surface(None)
def serialize_json(handle: uuid.UUID, pretty: bool = False) -> Optional[str]:
    return get_registry().apply(handle, lambda net: to_json(net, pretty=pretty))


@_surface(None)
def serialize_yaml(handle: uuid.UUID) -> Optional[str]:
    return get_registry().apply(handle, to_yaml)


@_surface(None)
def deserialize_bytes(payload: bytes, discard_signals: bool = False) -> Optional[uuid.UUID]:
    return get_registry().create(from_bytes(payload, discard_signals))


@_surface(None)
def deserialize_json(payload: str, discard_signals: bool = False) -> Optional[uuid.UUID]:
    return get_registry().create(from_json(payload, discard_signals))


@_surface(None)
def deserialize_yaml(payload: str, discard_signals: bool = False) -> Optional[uuid.UUID]:
    return get_registry().create(from_yaml(payload, discard_signals))


# -- boundary nodes -----------------------------------------------------------

@_surface(None)
def get_sensors(handle: uuid.UUID) -> Optional[List[uuid.UUID]]:
    return get_registry().apply(handle, lambda net: net.sensors)


@_surface(None)
def get_effectors(handle: uuid.UUID) -> Optional[List[uuid.UUID]]:
    return get_registry().apply(handle, lambda net: net.effectors)


@_surface(False)
def inject_sensor_signal(handle: uuid.UUID, sensor_id: uuid.UUID, potential: float) -> bool:
    get_registry().apply(handle, lambda net: net.inject_sensor_signal(sensor_id, potential))
    return True


@_surface((False, 0.0))
def release_effector_potential(handle: uuid.UUID, effector_id: uuid.UUID) -> Tuple[bool, float]:
    return True, get_registry().apply(
        handle, lambda net: net.release_effector_potential(effector_id)
    )


# -- inspection ---------------------------------------------------------------

@_surface((False, 0))
def edge_count(handle: uuid.UUID) -> Tuple[bool, int]:
    return True, get_registry().apply(handle, lambda net: len(net.edges))


@_surface(False)
def force_random_signals(
    handle: uuid.UUID, count: int, min_potential: float, max_potential: float
) -> bool:
    get_registry().apply(
        handle, lambda net: net.force_random_signals(count, min_potential, max_potential)
    )
    return True


@_surface((False, None))
def activity_stats(handle: uuid.UUID) -> Tuple[bool, Optional[ActivityStats]]:
    return True, get_registry().apply(handle, _activity_stats)


@_surface((False, None))
def activity_map(handle: uuid.UUID) -> Tuple[bool, Optional[ActivityMap]]:
    return True, get_registry().apply(handle, build_activity_map)


# -- evolution ----------------------------------------------------------------

@_surface(None)
def evolve_mutated(
    config: Optional[BrainConfig],
    handle: uuid.UUID,
    params: Optional[OffspringParams] = None,
    seed: Optional[int] = None,
) -> Optional[uuid.UUID]:
    """Register a mutated offspring of ``handle``; None on failure."""
    registry = get_registry()
    child = registry.apply(handle, lambda parent: _evolve_mutated(parent, config, params, seed))
    return registry.create(child)


@_surface(None)
def evolve_merged(
    config: Optional[BrainConfig],
    handle_a: uuid.UUID,
    handle_b: uuid.UUID,
    params: Optional[OffspringParams] = None,
    seed: Optional[int] = None,
) -> Optional[uuid.UUID]:
    """Register the merged offspring of two networks; None on failure.

    ``config`` None blends both parents' configs.
    """
    registry = get_registry()
    child = registry.apply_many(
        (handle_a, handle_b), lambda a, b: _evolve_merged(a, b, config, params, seed)
    )
    return registry.create(child)

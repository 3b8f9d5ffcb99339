"""
Psyche Configuration - per-network parameters and construction parameter sets.

Provides the immutable ``BrainConfig`` that every network owns, plus the
``BuilderParams`` and ``OffspringParams`` sets consumed by the network
builder and the evolution operators.  Configuration can be loaded from a
dict of overrides, a JSON or YAML file, or left at sensible defaults.

Usage::

    from psyche_config import default_config, load_brain_config

    # Defaults
    cfg = default_config()

    # With overrides
    cfg = load_brain_config({"propagation_speed": 2.0})

    # From a file (JSON or YAML, chosen by extension)
    cfg = load_brain_config(config_path="~/.psyche/brain.yaml")
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from psyche_errors import InvalidInputError

logger = logging.getLogger("psyche.config")


def _check(condition: bool, message: str) -> None:
    if not condition:
        raise InvalidInputError(message)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


# ── Network config ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class BrainConfig:
    """Immutable per-network simulation parameters.

    Attributes:
        propagation_speed: Distance a signal travels per unit of time.
        neuron_potential_decay: Linear decay of node potential toward zero
            per unit of time.
        action_potential_threshold: Potential at or above which a node fires.
        receptors_excitation: Fraction of its potential a firing node
            discharges (1.0 resets the node to zero).
        receptors_inhibition: Scale applied to signals leaving over
            inhibitory (negative receptor) edges.
        default_receptors: (min, max) bounds for receptors sampled when an
            edge is created without an explicit value.
        synapse_inactivity_time: Idle time after which an edge is pruned or
            reconnected.
        synapse_reconnection_range: Optional search radius for rewiring an
            expired edge instead of removing it.
        synapse_overdose_receptors: Optional cap on receptor magnitude.
        synapse_propagation_decay: Linear decay of in-flight signal
            potential per unit of time, copied onto new edges.
        synapse_new_connection_receptors: Optional receptor value given to
            edges created or rewired at runtime.
        no_loop_connections: Forbid self-edges and duplicate ordered pairs.
        max_connecting_tries: Attempt budget for connection searches.
    """

    propagation_speed: float = 1.0
    neuron_potential_decay: float = 1.0
    action_potential_threshold: float = 1.0
    receptors_excitation: float = 1.0
    receptors_inhibition: float = 0.05
    default_receptors: Tuple[float, float] = (0.5, 1.5)
    synapse_inactivity_time: float = 10.0
    synapse_reconnection_range: Optional[float] = None
    synapse_overdose_receptors: Optional[float] = None
    synapse_propagation_decay: float = 0.0
    synapse_new_connection_receptors: Optional[float] = None
    no_loop_connections: bool = True
    max_connecting_tries: int = 10

    def __post_init__(self) -> None:
        # Normalise sequences coming from JSON/YAML into a tuple.
        object.__setattr__(self, "default_receptors", tuple(self.default_receptors))
        self.validate()

    def validate(self) -> None:
        """Raise ``InvalidInputError`` if any value is out of range."""
        for name in (
            "propagation_speed",
            "neuron_potential_decay",
            "receptors_excitation",
            "receptors_inhibition",
            "synapse_inactivity_time",
            "synapse_propagation_decay",
        ):
            value = getattr(self, name)
            _check(_is_number(value), f"{name} must be a finite number, got {value!r}")
            _check(value >= 0.0, f"{name} must be >= 0, got {value!r}")

        _check(
            _is_number(self.action_potential_threshold)
            and self.action_potential_threshold > 0.0,
            f"action_potential_threshold must be > 0, got {self.action_potential_threshold!r}",
        )

        _check(len(self.default_receptors) == 2, "default_receptors must be a (min, max) pair")
        lo, hi = self.default_receptors
        _check(_is_number(lo) and _is_number(hi), "default_receptors must be finite numbers")
        _check(lo <= hi, f"default_receptors min {lo} exceeds max {hi}")

        for name in ("synapse_reconnection_range", "synapse_overdose_receptors"):
            value = getattr(self, name)
            if value is not None:
                _check(_is_number(value) and value > 0.0, f"{name} must be > 0, got {value!r}")

        if self.synapse_new_connection_receptors is not None:
            _check(
                _is_number(self.synapse_new_connection_receptors),
                "synapse_new_connection_receptors must be a finite number",
            )

        _check(isinstance(self.no_loop_connections, bool), "no_loop_connections must be a bool")
        _check(
            isinstance(self.max_connecting_tries, int)
            and not isinstance(self.max_connecting_tries, bool)
            and self.max_connecting_tries >= 1,
            f"max_connecting_tries must be an int >= 1, got {self.max_connecting_tries!r}",
        )

    # -- conversion ----------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["default_receptors"] = list(self.default_receptors)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BrainConfig":
        if not isinstance(data, dict):
            raise InvalidInputError(f"config must be a mapping, got {type(data).__name__}")
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise InvalidInputError(f"Unknown config keys: {sorted(unknown)}")
        try:
            return cls(**data)
        except TypeError as exc:
            raise InvalidInputError(str(exc)) from exc

    def with_overrides(self, **changes: Any) -> "BrainConfig":
        try:
            return replace(self, **changes)
        except TypeError as exc:
            raise InvalidInputError(str(exc)) from exc

    def merge(self, other: "BrainConfig") -> "BrainConfig":
        """Blend two configs for a merged offspring.

        Scalars are averaged, optional values are averaged when both sides
        set them (otherwise the set one wins), the no-loop flag is kept if
        either parent used it, and the larger try budget is kept.
        """

        def avg(a: float, b: float) -> float:
            return (a + b) * 0.5

        def avg_opt(a: Optional[float], b: Optional[float]) -> Optional[float]:
            if a is None:
                return b
            if b is None:
                return a
            return avg(a, b)

        return BrainConfig(
            propagation_speed=avg(self.propagation_speed, other.propagation_speed),
            neuron_potential_decay=avg(self.neuron_potential_decay, other.neuron_potential_decay),
            action_potential_threshold=avg(
                self.action_potential_threshold, other.action_potential_threshold
            ),
            receptors_excitation=avg(self.receptors_excitation, other.receptors_excitation),
            receptors_inhibition=avg(self.receptors_inhibition, other.receptors_inhibition),
            default_receptors=(
                avg(self.default_receptors[0], other.default_receptors[0]),
                avg(self.default_receptors[1], other.default_receptors[1]),
            ),
            synapse_inactivity_time=avg(
                self.synapse_inactivity_time, other.synapse_inactivity_time
            ),
            synapse_reconnection_range=avg_opt(
                self.synapse_reconnection_range, other.synapse_reconnection_range
            ),
            synapse_overdose_receptors=avg_opt(
                self.synapse_overdose_receptors, other.synapse_overdose_receptors
            ),
            synapse_propagation_decay=avg(
                self.synapse_propagation_decay, other.synapse_propagation_decay
            ),
            synapse_new_connection_receptors=avg_opt(
                self.synapse_new_connection_receptors, other.synapse_new_connection_receptors
            ),
            no_loop_connections=self.no_loop_connections or other.no_loop_connections,
            max_connecting_tries=max(self.max_connecting_tries, other.max_connecting_tries),
        )


def default_config() -> BrainConfig:
    """Return the default network configuration."""
    return BrainConfig()


# ── Construction parameter sets ────────────────────────────────────────


@dataclass
class BuilderParams:
    """Shape of a freshly built network."""

    neurons: int = 100
    connections: int = 0
    radius: float = 10.0
    min_neurogenesis_range: float = 0.1
    max_neurogenesis_range: float = 1.0
    sensors: int = 1
    effectors: int = 1
    no_loop_connections: bool = True
    max_connecting_tries: int = 10

    def validate(self) -> None:
        for name in ("neurons", "connections", "sensors", "effectors"):
            value = getattr(self, name)
            _check(
                isinstance(value, int) and not isinstance(value, bool) and value >= 0,
                f"{name} must be a non-negative int, got {value!r}",
            )
        _validate_geometry(self)
        _check(
            self.sensors + self.effectors <= self.neurons,
            f"{self.sensors} sensors + {self.effectors} effectors exceed {self.neurons} neurons",
        )


@dataclass
class OffspringParams:
    """Additive growth applied by the evolution operators."""

    new_neurons: int = 1
    new_connections: int = 1
    radius: float = 10.0
    min_neurogenesis_range: float = 0.1
    max_neurogenesis_range: float = 1.0
    new_sensors: int = 1
    new_effectors: int = 1
    no_loop_connections: bool = True
    max_connecting_tries: int = 10

    def validate(self) -> None:
        for name in ("new_neurons", "new_connections", "new_sensors", "new_effectors"):
            value = getattr(self, name)
            _check(
                isinstance(value, int) and not isinstance(value, bool) and value >= 0,
                f"{name} must be a non-negative int, got {value!r}",
            )
        _validate_geometry(self)


def _validate_geometry(params: Any) -> None:
    _check(
        _is_number(params.radius) and params.radius > 0.0,
        f"radius must be > 0, got {params.radius!r}",
    )
    lo, hi = params.min_neurogenesis_range, params.max_neurogenesis_range
    _check(_is_number(lo) and lo >= 0.0, f"min_neurogenesis_range must be >= 0, got {lo!r}")
    _check(_is_number(hi) and hi > 0.0, f"max_neurogenesis_range must be > 0, got {hi!r}")
    _check(lo <= hi, f"min_neurogenesis_range {lo} exceeds max {hi}")
    _check(
        isinstance(params.max_connecting_tries, int) and params.max_connecting_tries >= 1,
        f"max_connecting_tries must be >= 1, got {params.max_connecting_tries!r}",
    )


def default_builder_params() -> BuilderParams:
    return BuilderParams()


def default_offspring_params() -> OffspringParams:
    return OffspringParams()


# ── Factory ────────────────────────────────────────────────────────────


def _read_config_file(path: Path) -> Dict[str, Any]:
    with open(path) as f:
        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(f)
        else:
            data = json.load(f)
    return data or {}


def load_brain_config(
    overrides: Optional[Dict[str, Any]] = None,
    config_path: Optional[str] = None,
) -> BrainConfig:
    """Create a ``BrainConfig`` with defaults, optionally overridden.

    Override precedence (highest wins):
        1. ``overrides`` dict argument
        2. ``config_path`` JSON or YAML file
        3. Built-in defaults

    Args:
        overrides: Dict of field→value pairs.
        config_path: Path to a ``.json``, ``.yaml`` or ``.yml`` file with the
            same structure as ``overrides``.

    Returns:
        Fully populated, validated ``BrainConfig``.

    Raises:
        InvalidInputError: If ``overrides`` names unknown fields or bad values.
    """
    values: Dict[str, Any] = default_config().to_dict()

    # Layer 1: file
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.exists():
            try:
                file_data = _read_config_file(p)
                BrainConfig.from_dict({**values, **file_data})
                values.update(file_data)
            except (OSError, ValueError, TypeError, yaml.YAMLError) as exc:
                logger.warning("Failed to load brain config from %s: %s", p, exc)

    # Layer 2: dict overrides (win over file)
    if overrides is not None:
        values.update(overrides)

    return BrainConfig.from_dict(values)

"""
sonicstate - Parameter Interpolator
Maps state transitions onto a continuously evaluable visual parameter vector.

A transition opens a window [start_time, start_time + duration_ms]. Inside
it every field named by the target table entry is lerped from its value at
the moment the transition began; fields the entry omits are held. Frequency
response mappings then nudge individual fields by the current band energy.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

from channels import LatestValue
from energy_bands import EnergyBands
from errors import ConfigurationError
from logging_utils import log_event
from semantic_state import SemanticState, StateTransition, lookup_state_config

MIN_SPEED = 0.01


class PatternKind(Enum):
    GEOMETRIC = "geometric"
    ORGANIC = "organic"
    NOISE = "noise"


@dataclass(frozen=True)
class ParameterVector:
    """Complete visual parameter set handed to renderers"""
    primary_color: tuple = (0.2, 0.4, 1.0)     # RGB, 0-1 each
    secondary_color: tuple = (0.1, 0.1, 0.3)
    accent_color: tuple = (1.0, 0.3, 0.6)
    intensity: float = 0.5                     # 0-1
    complexity: float = 0.5                    # 0-1
    speed: float = 1.0                         # Animation speed multiplier (> 0)
    pattern_kind: PatternKind = PatternKind.GEOMETRIC


COLOR_FIELDS = ("primary_color", "secondary_color", "accent_color")
UNIT_FIELDS = ("intensity", "complexity")
SCALAR_FIELDS = UNIT_FIELDS + ("speed",)
DISCRETE_FIELDS = ("pattern_kind",)
PARAMETER_FIELDS = COLOR_FIELDS + SCALAR_FIELDS + DISCRETE_FIELDS

# camelCase field names accepted from environment templates
FIELD_ALIASES = {
    "primaryColor": "primary_color",
    "secondaryColor": "secondary_color",
    "accentColor": "accent_color",
    "patternType": "pattern_kind",
    "patternKind": "pattern_kind",
}

BANDS = ("low", "mid", "high", "total")

DEFAULT_PARAMETERS = ParameterVector()


def _clamp(value: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return min(hi, max(lo, value))


def _normalize_field(name: str) -> str:
    name = FIELD_ALIASES.get(name, name)
    if name not in PARAMETER_FIELDS:
        raise ConfigurationError(f"Unknown parameter field '{name}'")
    return name


def _coerce_value(name: str, value: Any) -> Any:
    try:
        if name in COLOR_FIELDS:
            channels = tuple(float(c) for c in value)
            if len(channels) != 3:
                raise ConfigurationError(f"{name} must have 3 channels, got {len(channels)}")
            return tuple(_clamp(c) for c in channels)
        if name in UNIT_FIELDS:
            return _clamp(float(value))
        if name == "speed":
            return max(MIN_SPEED, float(value))
        if isinstance(value, PatternKind):
            return value
        return PatternKind(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid value for {name}: {value!r}") from e


def normalize_params(params: Optional[Mapping[str, Any]]) -> dict:
    """Validate a partial ParameterVector mapping and coerce it to field domains."""
    if not params:
        return {}
    if not isinstance(params, Mapping):
        raise ConfigurationError(f"params must be a mapping, got {type(params).__name__}")
    normalized = {}
    for key, value in params.items():
        name = _normalize_field(key)
        normalized[name] = _coerce_value(name, value)
    return normalized


@dataclass(frozen=True)
class StateVisualConfig:
    """Transition table entry: how long to blend and what to blend toward."""
    duration_ms: float
    params: Mapping = field(default_factory=dict)

    def __post_init__(self):
        if self.duration_ms is None or self.duration_ms < 0:
            raise ConfigurationError("duration_ms must be >= 0")
        object.__setattr__(self, "params", normalize_params(self.params))


@dataclass(frozen=True)
class FrequencyMapping:
    """Continuous per-tick adjustment: field += band_energy * scale + offset."""
    band: str
    target: str
    scale: float = 1.0
    offset: float = 0.0

    def __post_init__(self):
        if self.band not in BANDS:
            raise ConfigurationError(f"Unknown band '{self.band}'")
        target = FIELD_ALIASES.get(self.target, self.target)
        if target not in COLOR_FIELDS + SCALAR_FIELDS:
            raise ConfigurationError(f"Frequency mapping cannot target '{self.target}'")
        object.__setattr__(self, "target", target)


def lerp(a: float, b: float, t: float) -> float:
    return a + (b - a) * t


def lerp_color(a: tuple, b: tuple, t: float) -> tuple:
    return tuple(lerp(ca, cb, t) for ca, cb in zip(a, b))


def resolve_target(start: ParameterVector, params: Mapping[str, Any]) -> ParameterVector:
    """Target vector: ``start`` with the entry's fields overlaid."""
    return replace(start, **params) if params else start


def interpolate(
    start: ParameterVector,
    params: Mapping[str, Any],
    elapsed_ms: float,
    duration_ms: float,
) -> ParameterVector:
    """Vector ``elapsed_ms`` into a blend from ``start`` toward ``params``.

    Exact endpoints: ``start`` at elapsed <= 0, the resolved target once
    elapsed >= duration (or for a zero-length window). Discrete fields switch
    when the window completes.
    """
    if duration_ms <= 0 or elapsed_ms >= duration_ms:
        return resolve_target(start, params)
    if elapsed_ms <= 0 or not params:
        return start

    t = elapsed_ms / duration_ms
    values = {}
    for name, target in params.items():
        if name in COLOR_FIELDS:
            values[name] = lerp_color(getattr(start, name), target, t)
        elif name in SCALAR_FIELDS:
            values[name] = lerp(getattr(start, name), target, t)
    return replace(start, **values)


def apply_frequency_mappings(
    vector: ParameterVector,
    energy: Optional[EnergyBands],
    mappings: Iterable[FrequencyMapping],
) -> ParameterVector:
    """Apply band-driven adjustments after interpolation, clamped to field domains."""
    if energy is None:
        return vector
    updates: dict = {}
    for mapping in mappings:
        amount = energy.band(mapping.band) * mapping.scale + mapping.offset
        current = updates.get(mapping.target, getattr(vector, mapping.target))
        if mapping.target in COLOR_FIELDS:
            updates[mapping.target] = tuple(_clamp(c + amount) for c in current)
        elif mapping.target == "speed":
            updates[mapping.target] = max(MIN_SPEED, current + amount)
        else:
            updates[mapping.target] = _clamp(current + amount)
    return replace(vector, **updates) if updates else vector


def _entry_params(entry: Any) -> dict:
    params = getattr(entry, "params", None)
    if params is None and isinstance(entry, Mapping):
        params = entry.get("params")
    return normalize_params(params)


@dataclass(frozen=True)
class _Window:
    start: ParameterVector
    params: Mapping
    start_time: float
    duration_ms: float
    transition: Optional[StateTransition] = None


class ParameterInterpolator:
    """
    Holds the active blend window and evaluates it on demand.

    ``begin`` runs inside a tick; ``value_at`` may be called from a render
    context at any time. The window is swapped as one immutable value, so a
    reader sees either the old blend or the new one, never a mix.
    """

    def __init__(
        self,
        transitions: Mapping,
        mappings: Iterable[FrequencyMapping] = (),
        initial: ParameterVector = DEFAULT_PARAMETERS,
    ):
        self._transitions = transitions
        self._mappings: tuple = tuple(mappings)
        self._window: LatestValue[_Window] = LatestValue(
            _Window(start=initial, params={}, start_time=0.0, duration_ms=0.0)
        )

    @property
    def mappings(self) -> tuple:
        return self._mappings

    @property
    def current_transition(self) -> Optional[StateTransition]:
        return self._window.get().transition

    def set_mappings(self, mappings: Iterable[FrequencyMapping]) -> None:
        mappings = tuple(mappings)
        for m in mappings:
            if not isinstance(m, FrequencyMapping):
                raise ConfigurationError(f"Expected FrequencyMapping, got {type(m).__name__}")
        self._mappings = mappings

    def set_transitions(self, transitions: Mapping) -> None:
        self._transitions = transitions

    @staticmethod
    def validate_entry(state: SemanticState, entry: Any) -> dict:
        """Normalized params of a table entry; ConfigurationError if any field is unusable."""
        try:
            return _entry_params(entry)
        except ConfigurationError as e:
            raise ConfigurationError(f"Transition entry for '{state.value}': {e.message}") from e

    def begin(self, transition: StateTransition) -> ParameterVector:
        """Open a blend window for ``transition``; returns the resolved target.

        The start vector is whatever the previous window yields at the
        transition timestamp, so interrupting a blend does not snap.
        """
        entry = lookup_state_config(self._transitions, transition.to_state)
        params = _entry_params(entry)
        start = self.base_at(transition.timestamp)
        self._window.publish(_Window(
            start=start,
            params=params,
            start_time=transition.timestamp,
            duration_ms=float(transition.duration_ms),
            transition=transition,
        ))
        log_event("DEBUG", "Params", "Blend started",
                  state=transition.to_state.value, duration_ms=transition.duration_ms,
                  fields=",".join(params) or "none")
        return resolve_target(start, params)

    def base_at(self, now_ms: float) -> ParameterVector:
        """Interpolated vector without frequency response."""
        w = self._window.get()
        return interpolate(w.start, w.params, now_ms - w.start_time, w.duration_ms)

    def value_at(self, now_ms: float, energy: Optional[EnergyBands] = None) -> ParameterVector:
        """Interpolated vector with frequency response from ``energy`` applied."""
        return apply_frequency_mappings(self.base_at(now_ms), energy, self._mappings)

    def progress(self, now_ms: float) -> float:
        w = self._window.get()
        if w.duration_ms <= 0:
            return 1.0
        return _clamp((now_ms - w.start_time) / w.duration_ms)

    def reset(self, initial: ParameterVector = DEFAULT_PARAMETERS) -> None:
        self._window.publish(_Window(start=initial, params={}, start_time=0.0, duration_ms=0.0))


def default_transition_table() -> dict:
    """Reference table covering every SemanticState."""
    return {
        SemanticState.LOOP: StateVisualConfig(2000.0, {
            "intensity": 0.4, "complexity": 0.3, "speed": 0.8,
            "pattern_kind": PatternKind.ORGANIC,
        }),
        SemanticState.TENSION: StateVisualConfig(1500.0, {
            "accent_color": (1.0, 0.5, 0.0), "intensity": 0.7, "complexity": 0.6, "speed": 1.3,
        }),
        SemanticState.PEAK: StateVisualConfig(300.0, {
            "primary_color": (1.0, 1.0, 1.0), "intensity": 1.0, "complexity": 0.9, "speed": 2.0,
            "pattern_kind": PatternKind.GEOMETRIC,
        }),
        SemanticState.COLLAPSE: StateVisualConfig(800.0, {
            "intensity": 0.2, "complexity": 0.1, "speed": 0.5,
            "pattern_kind": PatternKind.NOISE,
        }),
    }


DEFAULT_FREQUENCY_MAPPINGS = (
    FrequencyMapping(band="low", target="intensity", scale=0.3, offset=0.0),
    FrequencyMapping(band="mid", target="complexity", scale=0.2, offset=0.0),
    FrequencyMapping(band="high", target="speed", scale=0.5, offset=0.0),
)

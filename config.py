# sonicstate Configuration
# All default values and constants

import math
from dataclasses import dataclass, field, fields, is_dataclass, replace
from enum import Enum
from typing import Any, Mapping, Optional

from errors import ConfigurationError
from logging_utils import log_event


CURRENT_CONFIG_VERSION = 1

@dataclass
class AnalysisConfig:
    """Spectral frontend, band extraction and onset detection parameters"""
    sample_rate: int = 44100
    fft_size: int = 2048                    # 1024 frequency bins
    min_db: float = -100.0                  # Normalization floor (maps to 0.0)
    max_db: float = 0.0                     # Normalization ceiling (maps to 1.0)
    smoothing_time_constant: float = 0.8    # Spectral averaging between ticks (0 = none)

    # Frequency bands (Hz), half-open [low, high)
    low_band: tuple = (20.0, 250.0)
    mid_band: tuple = (250.0, 4000.0)
    high_band: tuple = (4000.0, 20000.0)
    band_weights: tuple = (0.5, 0.3, 0.2)   # low, mid, high -> total (sums to 1)

    # Onset / tempo
    onset_threshold: float = 0.15           # Min total-energy rise between ticks
    min_onset_interval_ms: float = 300.0    # 200 BPM
    max_onset_interval_ms: float = 1000.0   # 60 BPM
    onset_history_size: int = 16
    default_bpm: float = 120.0
    min_bpm: float = 60.0
    max_bpm: float = 200.0

    @property
    def bin_count(self) -> int:
        return self.fft_size // 2

@dataclass
class StateThresholds:
    """Semantic state detection thresholds (beat counts are in detected beats)"""
    loop_variance: float = 0.1        # Max relative variance (std/mean) for Loop
    loop_beats: int = 4               # Beats of stable energy to confirm Loop
    tension_rise_beats: int = 2       # Beats of rising energy for Tension
    pico_threshold: float = 0.9       # Fraction of the 1.0 ceiling for Peak
    colapso_drop_ratio: float = 0.5   # Fractional drop from the peak reference for Collapse
    rise_tolerance: float = 0.02      # Per-beat dip still counted as "rising"
    tension_min_rise: float = 0.1     # Net rise across the tension window

    @property
    def window_beats(self) -> int:
        return max(self.loop_beats, self.tension_rise_beats, 2)

    def validate(self) -> "StateThresholds":
        """Reject values that would leave a detection rule undefined."""
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                raise ConfigurationError(f"StateThresholds.{f.name} is required")
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigurationError(f"StateThresholds.{f.name} must be numeric, got {value!r}")
            if not math.isfinite(value):
                raise ConfigurationError(f"StateThresholds.{f.name} must be finite")

        for name in ("loop_beats", "tension_rise_beats"):
            value = getattr(self, name)
            if int(value) != value:
                raise ConfigurationError(f"StateThresholds.{name} must be a whole number of beats")
        if self.loop_beats < 2:
            raise ConfigurationError("StateThresholds.loop_beats must be >= 2")
        if self.tension_rise_beats < 2:
            raise ConfigurationError("StateThresholds.tension_rise_beats must be >= 2")
        if self.loop_variance < 0:
            raise ConfigurationError("StateThresholds.loop_variance must be >= 0")
        if not 0.0 < self.pico_threshold <= 1.0:
            raise ConfigurationError("StateThresholds.pico_threshold must be in (0, 1]")
        if not 0.0 < self.colapso_drop_ratio < 1.0:
            raise ConfigurationError("StateThresholds.colapso_drop_ratio must be in (0, 1)")
        if self.rise_tolerance < 0 or self.tension_min_rise < 0:
            raise ConfigurationError("StateThresholds rise tolerances must be >= 0")
        return self

@dataclass
class EngineConfig:
    """Tick pipeline settings"""
    history_size: int = 32            # Retained StateTransition records
    subscriber_queue_size: int = 16   # Default bounded queue size for subscribers
    metrics_window_s: float = 60.0    # Window for state-changes-per-minute

@dataclass
class Config:
    """Master configuration"""
    version: int = CURRENT_CONFIG_VERSION
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    thresholds: StateThresholds = field(default_factory=StateThresholds)
    engine: EngineConfig = field(default_factory=EngineConfig)
    log_level: str = "INFO"


# camelCase keys accepted from JSON environment templates
THRESHOLD_ALIASES = {
    'loopVariance': 'loop_variance',
    'loopBeats': 'loop_beats',
    'tensionRiseBeats': 'tension_rise_beats',
    'picoThreshold': 'pico_threshold',
    'colapsoDropRatio': 'colapso_drop_ratio',
    'riseTolerance': 'rise_tolerance',
    'tensionMinRise': 'tension_min_rise',
}


def apply_dict_to_dataclass(target, data) -> None:
    """Recursively apply values from a dict onto a dataclass instance.
    Unknown keys are ignored; Enum fields are coerced, lists become tuples
    where the default is a tuple."""
    if not isinstance(data, Mapping):
        return

    for key, value in data.items():
        if not hasattr(target, key):
            log_event("WARNING", "Config", "Ignoring unknown key", key=key,
                      target=type(target).__name__)
            continue

        current = getattr(target, key)

        if is_dataclass(current) and isinstance(value, Mapping):
            apply_dict_to_dataclass(current, value)
            continue

        if isinstance(current, Enum):
            try:
                setattr(target, key, current.__class__(value))
            except ValueError as e:
                raise ConfigurationError(
                    f"Invalid value for {key}: {value!r} ({current.__class__.__name__})"
                ) from e
            continue

        if isinstance(current, tuple) and isinstance(value, list):
            value = tuple(value)

        setattr(target, key, value)


def merge_thresholds(
    overrides: Optional[Mapping[str, Any] | StateThresholds] = None,
    base: Optional[StateThresholds] = None,
) -> StateThresholds:
    """Merge a partial threshold override over ``base`` (or the defaults).

    Accepts snake_case or camelCase keys. The result is validated, so a
    structurally unusable set is rejected here rather than mid-tick.
    """
    if isinstance(overrides, StateThresholds):
        return replace(overrides).validate()

    merged = replace(base) if base is not None else StateThresholds()
    if overrides:
        normalized = {THRESHOLD_ALIASES.get(k, k): v for k, v in overrides.items()}
        apply_dict_to_dataclass(merged, normalized)
    return merged.validate()


# Default config instance
DEFAULT_CONFIG = Config()

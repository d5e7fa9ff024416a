"""
sonicstate - Semantic State Machine
Classifies the analysis stream into one of four regimes:

  LOOP      - energy stable across the last few beats
  TENSION   - energy climbing beat over beat
  PEAK      - energy above the pico threshold
  COLLAPSE  - sudden drop out of a peak

Rules are checked in priority order COLLAPSE > PEAK > TENSION > LOOP and the
first one that matches decides the target. Matching the current state
re-confirms it silently; only real changes become StateTransition events.
"""

import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional

import numpy as np

from channels import Broadcast
from config import StateThresholds, merge_thresholds
from errors import ConfigurationError
from logging_utils import log_event
from ring_buffer import RingBuffer

if TYPE_CHECKING:
    from analysis_engine import AnalysisSample

_EPS = 1e-9
_MIN_BPM = 60.0


class SemanticState(Enum):
    LOOP = "loop"
    TENSION = "tension"
    PEAK = "peak"
    COLLAPSE = "collapse"


class TransitionTrigger(Enum):
    ENERGY_DROP = "energy_drop"
    THRESHOLD_EXCEEDED = "threshold_exceeded"
    ENERGY_RISE = "energy_rise"
    STABLE_VARIANCE = "stable_variance"


@dataclass(frozen=True)
class StateTransition:
    """One detected change of semantic state"""
    from_state: Optional[SemanticState]   # None only for the first transition of a session
    to_state: SemanticState
    timestamp: float                      # ms, from the triggering AnalysisSample
    duration_ms: float                    # From the transition table entry of to_state
    trigger: TransitionTrigger


def lookup_state_config(transitions: Mapping, state: SemanticState) -> Any:
    """Fetch the transition-table entry for ``state`` (enum or string key).

    Raises ConfigurationError when the table has no entry for a state that
    has just become reachable.
    """
    if transitions is not None:
        entry = transitions.get(state)
        if entry is None:
            entry = transitions.get(state.value)
        if entry is not None:
            return entry
    raise ConfigurationError(f"Transition table has no entry for state '{state.value}'")


class SemanticStateMachine:
    """
    Per-tick state classifier over AnalysisSample values.

    The session starts provisionally in LOOP with nothing emitted; the first
    rule to fire (even a LOOP confirmation) emits a transition whose
    ``from_state`` is None.

    Beat-window rules (TENSION, LOOP) look at the total energy recorded on
    beat ticks only and are evaluated on beat ticks. COLLAPSE and PEAK are
    evaluated every tick.
    """

    def __init__(
        self,
        transitions: Mapping,
        thresholds: Optional[Mapping[str, Any] | StateThresholds] = None,
        history_size: int = 32,
        initial_state: SemanticState = SemanticState.LOOP,
        queue_size: int = 16,
        entry_validator: Optional[Callable[[SemanticState, Any], Any]] = None,
    ):
        if transitions is None:
            raise ConfigurationError("A transition table is required")
        self._transitions = transitions
        # Extra checks on a table entry, run before the state is committed
        self._entry_validator = entry_validator
        self._thresholds = merge_thresholds(thresholds)
        self._pending: Optional[StateThresholds] = None
        self._lock = threading.Lock()

        self._initial_state = initial_state
        self._state = initial_state
        self._confirmed = False

        self._beat_energies = RingBuffer(self._thresholds.window_beats)
        # (timestamp, total) readings taken in PEAK, values strictly decreasing;
        # the head is the highest reading of the last beat interval
        self._peak_window: deque = deque()

        self._history: deque = deque(maxlen=max(1, int(history_size)))
        self._broadcast: Broadcast = Broadcast(default_maxsize=queue_size)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def current_state(self) -> SemanticState:
        return self._state

    @property
    def thresholds(self) -> StateThresholds:
        return self._thresholds

    @property
    def last_transition(self) -> Optional[StateTransition]:
        return self._history[-1] if self._history else None

    def history(self) -> list[StateTransition]:
        return list(self._history)

    def beat_energies(self) -> np.ndarray:
        return self._beat_energies.values()

    def subscribe(self, maxsize: Optional[int] = None):
        """Bounded queue receiving every emitted StateTransition."""
        return self._broadcast.subscribe(maxsize)

    def unsubscribe(self, q) -> None:
        self._broadcast.unsubscribe(q)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    def set_thresholds(self, thresholds: Optional[Mapping[str, Any] | StateThresholds]) -> StateThresholds:
        """Validate and stage a new threshold set; it takes effect at the next tick."""
        validated = merge_thresholds(thresholds)
        with self._lock:
            self._pending = validated
        log_event("INFO", "State", "Thresholds staged",
                  loop_variance=validated.loop_variance, loop_beats=validated.loop_beats,
                  tension_rise_beats=validated.tension_rise_beats,
                  pico_threshold=validated.pico_threshold,
                  colapso_drop_ratio=validated.colapso_drop_ratio)
        return validated

    def set_transitions(self, transitions: Mapping) -> None:
        if transitions is None:
            raise ConfigurationError("A transition table is required")
        self._transitions = transitions

    def _apply_pending(self) -> None:
        with self._lock:
            pending, self._pending = self._pending, None
        if pending is None:
            return
        self._thresholds = pending
        self._beat_energies.resize(pending.window_beats)

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------
    def process(self, sample: "AnalysisSample") -> Optional[StateTransition]:
        """Classify one sample. Returns the emitted transition, if any.

        Raises ConfigurationError when the target state has no usable
        transition table entry; the current state is left unchanged in that case.
        """
        self._apply_pending()
        th = self._thresholds
        total = float(sample.energy.total)

        if sample.beat:
            self._beat_energies.append(total)

        target, trigger = self._evaluate(sample, th)

        transition = None
        if target is not None and (not self._confirmed or target is not self._state):
            entry = lookup_state_config(self._transitions, target)
            duration_ms = self._entry_duration(entry, target)
            if self._entry_validator is not None:
                self._entry_validator(target, entry)
            transition = StateTransition(
                from_state=self._state if self._confirmed else None,
                to_state=target,
                timestamp=sample.timestamp,
                duration_ms=duration_ms,
                trigger=trigger,
            )
            self._state = target
            self._confirmed = True
            self._history.append(transition)
            log_event(
                "INFO",
                "State",
                "Transition",
                from_state=transition.from_state.value if transition.from_state else "none",
                to_state=target.value,
                trigger=trigger.value,
                energy=total,
                duration_ms=duration_ms,
            )

        self._track_peak(total, sample, entered=transition is not None)

        if transition is not None:
            self._broadcast.publish(transition)
        return transition

    def _evaluate(self, sample: "AnalysisSample", th: StateThresholds):
        total = float(sample.energy.total)

        if self._state is SemanticState.PEAK and self._drop_detected(total, sample, th):
            return SemanticState.COLLAPSE, TransitionTrigger.ENERGY_DROP

        # Reference is the absolute normalized ceiling (1.0), not a session maximum
        if total > th.pico_threshold:
            return SemanticState.PEAK, TransitionTrigger.THRESHOLD_EXCEEDED

        if sample.beat:
            if self._is_rising(th):
                return SemanticState.TENSION, TransitionTrigger.ENERGY_RISE
            if self._is_stable(th):
                return SemanticState.LOOP, TransitionTrigger.STABLE_VARIANCE

        return None, None

    def _beat_interval_ms(self, bpm: float) -> float:
        return 60000.0 / max(float(bpm), _MIN_BPM)

    def _prune_peak_window(self, sample: "AnalysisSample") -> None:
        horizon = sample.timestamp - self._beat_interval_ms(sample.bpm)
        while self._peak_window and self._peak_window[0][0] < horizon:
            self._peak_window.popleft()

    def peak_reference(self) -> float:
        """Highest total seen in PEAK within the last beat interval (0.0 if none)."""
        return self._peak_window[0][1] if self._peak_window else 0.0

    def _drop_detected(self, total: float, sample: "AnalysisSample", th: StateThresholds) -> bool:
        self._prune_peak_window(sample)
        reference = self.peak_reference()
        if reference <= _EPS:
            return False
        drop = (reference - total) / reference
        return drop > th.colapso_drop_ratio

    def _track_peak(self, total: float, sample: "AnalysisSample", entered: bool) -> None:
        if self._state is not SemanticState.PEAK:
            self._peak_window.clear()
            return
        if entered:
            self._peak_window.clear()

        self._prune_peak_window(sample)
        while self._peak_window and self._peak_window[-1][1] <= total:
            self._peak_window.pop()
        self._peak_window.append((sample.timestamp, total))

    def _is_rising(self, th: StateThresholds) -> bool:
        n = int(th.tension_rise_beats)
        if len(self._beat_energies) < n:
            return False
        window = self._beat_energies.last(n)
        steps = np.diff(window)
        return bool(np.all(steps >= -th.rise_tolerance) and (window[-1] - window[0]) > th.tension_min_rise)

    def _is_stable(self, th: StateThresholds) -> bool:
        n = int(th.loop_beats)
        if len(self._beat_energies) < n:
            return False
        window = self._beat_energies.last(n)
        mean = float(np.mean(window))
        # Degenerate (silent) window counts as zero variance
        relative_variance = float(np.std(window)) / mean if mean > _EPS else 0.0
        return relative_variance <= th.loop_variance

    @staticmethod
    def _entry_duration(entry: Any, state: SemanticState) -> float:
        duration = getattr(entry, "duration_ms", None)
        if duration is None and isinstance(entry, Mapping):
            duration = entry.get("duration_ms", entry.get("duration"))
        if duration is None:
            raise ConfigurationError(f"Transition entry for '{state.value}' has no duration")
        try:
            duration = float(duration)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Transition duration for '{state.value}' is not numeric") from e
        if not np.isfinite(duration) or duration < 0:
            raise ConfigurationError(f"Transition duration for '{state.value}' must be >= 0")
        return duration

    def reset(self) -> None:
        """Return to the provisional initial state (new session, not a reconnect)."""
        self._apply_pending()
        self._state = self._initial_state
        self._confirmed = False
        self._beat_energies.clear()
        self._peak_window.clear()

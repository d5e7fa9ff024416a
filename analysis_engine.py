"""
sonicstate - Analysis Engine
Runs one full tick: samples -> spectrum -> bands/BPM -> semantic state ->
parameter vector, and publishes the results for renderers and telemetry.

The engine never starts threads of its own; an external tick source calls
``tick`` at 60 Hz or faster.
"""

import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Iterable, Mapping, Optional, Protocol

import numpy as np

from bpm_detector import BpmDetector
from channels import Broadcast, LatestValue
from config import Config, StateThresholds
from energy_bands import SILENT_BANDS, BandLayout, EnergyBands
from errors import EngineFault, SonicStateError
from logging_utils import log_event, set_log_level
from parameter_interpolator import (
    DEFAULT_PARAMETERS,
    FrequencyMapping,
    ParameterInterpolator,
    ParameterVector,
    default_transition_table,
)
from semantic_state import SemanticState, SemanticStateMachine, StateTransition
from spectral_frontend import SpectralFrontend


@dataclass(frozen=True)
class AnalysisSample:
    """One tick of analysis, handed from the analysis stages to state logic"""
    timestamp: float          # ms
    spectrum: np.ndarray      # SpectrumFrame, bin_count values in 0-1
    energy: EnergyBands
    bpm: float                # 60-200
    beat: bool                # True when this tick is an onset


class AudioSource(Protocol):
    """Capture collaborator. ``read`` returns the latest sample window or None."""
    sample_rate: int

    def read(self) -> Optional[np.ndarray]: ...


@dataclass(frozen=True)
class EngineSnapshot:
    """Latest completed tick, published as a single value"""
    sample: AnalysisSample
    state: SemanticState
    transition: Optional[StateTransition]
    parameters: ParameterVector


@dataclass(frozen=True)
class EngineMetrics:
    ticks_per_second: float
    processing_ms: float
    state_changes_per_minute: float


def _perf_ms() -> float:
    return time.perf_counter() * 1000.0


class AnalysisEngine:
    """
    Tick pipeline over the analysis components.

    Capture loss is absorbed with a silent tick. Configuration faults from
    the state machine or interpolator are logged, recorded in ``last_fault``
    and published on the fault channel while the previous state and vector
    keep being served.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        transitions: Optional[Mapping] = None,
        mappings: Iterable[FrequencyMapping] = (),
        clock: Optional[Callable[[], float]] = None,
    ):
        self.config = config if config is not None else Config()
        set_log_level(self.config.log_level)
        self._clock = clock if clock is not None else _perf_ms

        if transitions is None:
            transitions = default_transition_table()
        analysis = self.config.analysis
        queue_size = self.config.engine.subscriber_queue_size

        self.frontend = SpectralFrontend(analysis)
        self.band_layout = BandLayout.for_session(
            analysis.fft_size, analysis.sample_rate, analysis.bin_count, analysis
        )
        self.bpm_detector = BpmDetector(analysis)
        self.interpolator = ParameterInterpolator(transitions, mappings)
        # The whole table entry (duration and params) is checked before a state commits
        self.state_machine = SemanticStateMachine(
            transitions,
            self.config.thresholds,
            history_size=self.config.engine.history_size,
            queue_size=queue_size,
            entry_validator=self.interpolator.validate_entry,
        )

        self._source: Optional[AudioSource] = None
        self._capture_missing_logged = False

        initial_sample = AnalysisSample(
            timestamp=0.0,
            spectrum=self.frontend.silent_frame(),
            energy=SILENT_BANDS,
            bpm=self.bpm_detector.bpm,
            beat=False,
        )
        self._latest: LatestValue[EngineSnapshot] = LatestValue(EngineSnapshot(
            sample=initial_sample,
            state=self.state_machine.current_state,
            transition=None,
            parameters=DEFAULT_PARAMETERS,
        ))
        self._analysis_channel: Broadcast = Broadcast(default_maxsize=queue_size)
        self._fault_channel: Broadcast = Broadcast(default_maxsize=queue_size)
        self.last_fault: Optional[EngineFault] = None

        # Metrics
        self._tick_times: deque = deque(maxlen=240)
        self._transition_times: deque = deque(maxlen=1024)
        self._processing_ms: float = 0.0

        self._reset_session_stats()

    # ------------------------------------------------------------------
    # Capture boundary
    # ------------------------------------------------------------------
    @property
    def connected(self) -> bool:
        return self._source is not None

    @property
    def state(self) -> SemanticState:
        return self.state_machine.current_state

    def connect(self, source: AudioSource) -> None:
        """Attach a capture source. Tempo history starts fresh; state is kept."""
        if self._source is not None:
            self.disconnect()

        sample_rate = int(getattr(source, 'sample_rate', self.config.analysis.sample_rate))
        if sample_rate != self.frontend.sample_rate:
            self.frontend.sample_rate = sample_rate
            analysis = self.config.analysis
            self.band_layout = BandLayout.for_session(
                analysis.fft_size, sample_rate, analysis.bin_count, analysis
            )

        self.bpm_detector.reset()
        self.frontend.reset()
        self._reset_session_stats()
        self._source = source
        self._capture_missing_logged = False
        log_event("INFO", "Capture", "Source connected", sample_rate=sample_rate,
                  state=self.state.value)

    def disconnect(self) -> None:
        """Detach the capture source. Stale onset intervals are dropped."""
        had_source = self._source is not None
        self._source = None
        if had_source:
            self._log_session_summary()
        self.bpm_detector.reset()
        self.frontend.reset()
        if had_source:
            log_event("INFO", "Capture", "Source disconnected", state=self.state.value)

    def _read_source(self) -> Optional[np.ndarray]:
        try:
            return self._source.read()
        except Exception as e:
            log_event("WARNING", "Capture", "Read failed, substituting silence", error=e)
            return None

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------
    def tick(self, samples=None, timestamp_ms: Optional[float] = None) -> AnalysisSample:
        """Run one full analysis tick and publish its results."""
        started = time.perf_counter()
        now = float(timestamp_ms) if timestamp_ms is not None else float(self._clock())

        if samples is None and self._source is not None:
            samples = self._read_source()

        capture_available = samples is not None
        if not capture_available:
            if not self._capture_missing_logged:
                log_event("DEBUG", "Capture", "No input, emitting silent ticks")
                self._capture_missing_logged = True
            spectrum = self.frontend.silent_frame()
            energy = SILENT_BANDS
            beat = False
        else:
            self._capture_missing_logged = False
            spectrum = self.frontend.process(samples)
            energy = self.band_layout.extract(spectrum)
            beat = self.bpm_detector.process_energy(energy.total, now)

        sample = AnalysisSample(
            timestamp=now,
            spectrum=spectrum,
            energy=energy,
            bpm=self.bpm_detector.bpm,
            beat=beat,
        )

        # Silent frames stand in for missing capture; they never drive state changes
        if capture_available:
            try:
                transition = self.state_machine.process(sample)
                if transition is not None:
                    self._transition_times.append(now)
                    self.interpolator.begin(transition)
            except SonicStateError as e:
                self._report_fault(e, now)

        snapshot = EngineSnapshot(
            sample=sample,
            state=self.state_machine.current_state,
            transition=self.state_machine.last_transition,
            parameters=self.interpolator.value_at(now, energy),
        )
        self._latest.publish(snapshot)
        self._analysis_channel.publish(sample)

        self._update_session_stats(energy.total, beat)
        self._tick_times.append(now)
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        self._processing_ms = elapsed_ms if self._processing_ms == 0.0 else (
            0.9 * self._processing_ms + 0.1 * elapsed_ms
        )
        return sample

    def _report_fault(self, error: SonicStateError, timestamp: float) -> None:
        fault = EngineFault.from_exception(error, timestamp)
        self.last_fault = fault
        log_event("ERROR", "Engine", "Configuration fault, holding previous state",
                  kind=fault.kind.value, error=fault.message, state=self.state.value)
        self._fault_channel.publish(fault)

    # ------------------------------------------------------------------
    # Consumer accessors
    # ------------------------------------------------------------------
    def latest(self) -> EngineSnapshot:
        return self._latest.get()

    def parameters_at(self, now_ms: Optional[float] = None) -> ParameterVector:
        """Parameter vector for ``now_ms`` with the latest band energies applied."""
        snapshot = self._latest.get()
        now = float(now_ms) if now_ms is not None else float(self._clock())
        return self.interpolator.value_at(now, snapshot.sample.energy)

    def subscribe_transitions(self, maxsize: Optional[int] = None):
        return self.state_machine.subscribe(maxsize)

    def subscribe_analysis(self, maxsize: Optional[int] = None):
        return self._analysis_channel.subscribe(maxsize)

    def subscribe_faults(self, maxsize: Optional[int] = None):
        return self._fault_channel.subscribe(maxsize)

    # ------------------------------------------------------------------
    # Configuration pass-through
    # ------------------------------------------------------------------
    def set_thresholds(self, thresholds) -> StateThresholds:
        return self.state_machine.set_thresholds(thresholds)

    def set_frequency_mappings(self, mappings: Iterable[FrequencyMapping]) -> None:
        self.interpolator.set_mappings(mappings)

    def set_transitions(self, transitions: Mapping) -> None:
        self.state_machine.set_transitions(transitions)
        self.interpolator.set_transitions(transitions)

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------
    def metrics(self) -> EngineMetrics:
        tps = 0.0
        if len(self._tick_times) >= 2:
            span_ms = self._tick_times[-1] - self._tick_times[0]
            if span_ms > 0:
                tps = (len(self._tick_times) - 1) * 1000.0 / span_ms

        changes_per_minute = 0.0
        if self._tick_times:
            window_ms = self.config.engine.metrics_window_s * 1000.0
            cutoff = self._tick_times[-1] - window_ms
            recent = sum(1 for t in self._transition_times if t >= cutoff)
            changes_per_minute = recent * 60000.0 / window_ms

        return EngineMetrics(
            ticks_per_second=tps,
            processing_ms=self._processing_ms,
            state_changes_per_minute=changes_per_minute,
        )

    # ------------------------------------------------------------------
    # Session stats
    # ------------------------------------------------------------------
    def _reset_session_stats(self) -> None:
        self._session_started_at = time.time()
        self._session_frame_count = 0
        self._session_onset_count = 0
        self._session_energy_min: float | None = None
        self._session_energy_max: float | None = None
        self._session_energy_sum = 0.0

    def _update_session_stats(self, total_energy: float, beat: bool) -> None:
        self._session_frame_count += 1
        self._session_energy_sum += total_energy
        if beat:
            self._session_onset_count += 1
        if self._session_energy_min is None or total_energy < self._session_energy_min:
            self._session_energy_min = total_energy
        if self._session_energy_max is None or total_energy > self._session_energy_max:
            self._session_energy_max = total_energy

    def _log_session_summary(self) -> None:
        if self._session_frame_count <= 0:
            return

        elapsed_s = max(0.0, time.time() - self._session_started_at)
        energy_min = float(self._session_energy_min or 0.0)
        energy_max = float(self._session_energy_max or 0.0)
        energy_mean = self._session_energy_sum / float(self._session_frame_count)

        log_event(
            "INFO",
            "Engine",
            "Session levels summary",
            frames=self._session_frame_count,
            seconds=f"{elapsed_s:.1f}",
            onsets=self._session_onset_count,
            bpm=f"{self.bpm_detector.bpm:.1f}",
            energy_min=f"{energy_min:.6f}",
            energy_max=f"{energy_max:.6f}",
            energy_mean=f"{energy_mean:.6f}",
            energy_span=f"{(energy_max - energy_min):.6f}",
            transitions=len(self.state_machine.history()),
        )

    def close(self) -> None:
        """Detach capture and emit the session summary."""
        if self._source is not None:
            self.disconnect()
        else:
            self._log_session_summary()
        log_event("INFO", "Engine", "Stopped",
                  last_fault=self.last_fault.kind.value if self.last_fault else "none")

"""
sonicstate - Onset/BPM Estimator
Detects onsets as sharp rises in total energy and derives tempo from the
spacing of recent onsets.
"""

from typing import Optional

import numpy as np

from config import AnalysisConfig
from logging_utils import log_event
from ring_buffer import RingBuffer

MIN_BPM = 60.0
MAX_BPM = 200.0
DEFAULT_BPM = 120.0


def constrain_bpm(bpm: float, min_bpm: float = MIN_BPM, max_bpm: float = MAX_BPM) -> float:
    """Clamp a tempo estimate to the valid musical range."""
    return min(max_bpm, max(min_bpm, bpm))


class BpmDetector:
    """
    Onset detector + inter-onset-interval tempo estimator.

    An onset fires when total energy rises by more than ``onset_threshold``
    since the previous tick and more than ``min_onset_interval_ms`` has passed
    since the last onset. Tempo is 60000 / mean of the onset intervals that
    fall inside the [60, 200] BPM window; outliers are excluded, and with no
    valid interval the previous tempo is held.
    """

    def __init__(self, config: Optional[AnalysisConfig] = None):
        self.config = config if config is not None else AnalysisConfig()
        self.onset_threshold = self.config.onset_threshold
        self.min_interval_ms = self.config.min_onset_interval_ms
        self.max_interval_ms = self.config.max_onset_interval_ms
        self.default_bpm = constrain_bpm(self.config.default_bpm,
                                         self.config.min_bpm, self.config.max_bpm)

        self._onset_times = RingBuffer(self.config.onset_history_size)
        self._last_energy: float = 0.0
        self._last_onset_time: Optional[float] = None
        self._bpm: float = self.default_bpm

    @property
    def bpm(self) -> float:
        return self._bpm

    def onset_times(self) -> np.ndarray:
        """Recent onset timestamps (ms), oldest first."""
        return self._onset_times.values()

    def process_energy(self, energy: float, timestamp: float) -> bool:
        """Feed one tick's total energy. Returns True when this tick is an onset."""
        delta = energy - self._last_energy
        self._last_energy = energy

        if delta <= self.onset_threshold:
            return False
        if self._last_onset_time is not None and (timestamp - self._last_onset_time) <= self.min_interval_ms:
            return False

        self._last_onset_time = timestamp
        self._onset_times.append(timestamp)

        if len(self._onset_times) >= 2:
            self._update_bpm()
        return True

    def _update_bpm(self) -> None:
        intervals = np.diff(self._onset_times.values())
        valid = intervals[(intervals >= self.min_interval_ms) & (intervals <= self.max_interval_ms)]
        if len(valid) == 0:
            return

        bpm = 60000.0 / float(np.mean(valid))
        self._bpm = constrain_bpm(bpm, self.config.min_bpm, self.config.max_bpm)
        log_event("DEBUG", "Tempo", "BPM updated", bpm=self._bpm, intervals=len(valid))

    def reset(self) -> None:
        """Drop onset history and restore the default tempo (capture reconnect)."""
        self._onset_times.clear()
        self._last_energy = 0.0
        self._last_onset_time = None
        self._bpm = self.default_bpm

"""
sonicstate - Spectral Frontend
Turns a raw sample window into a normalized magnitude spectrum.

Mirrors a browser analyser node: Blackman window, FFT magnitude scaled by
1/N, exponential smoothing across ticks, dB conversion, then a clamped map
of [min_db, max_db] onto [0, 1].
"""

import numpy as np
from scipy.signal import get_window

from config import AnalysisConfig
from errors import ConfigurationError
from logging_utils import log_event

# Magnitude floor before log10 so silence lands on min_db instead of -inf
_MAG_FLOOR = 1e-12


class SpectralFrontend:
    """
    Stage 1: samples -> SpectrumFrame.

    All working arrays are allocated once; ``process`` only fills them.
    The returned frame is a copy so it stays immutable downstream.
    """

    def __init__(self, config: AnalysisConfig):
        if config.fft_size < 32 or config.fft_size % 2:
            raise ConfigurationError(f"fft_size must be an even number >= 32, got {config.fft_size}")
        if config.min_db >= config.max_db:
            raise ConfigurationError("min_db must be below max_db")
        if not 0.0 <= config.smoothing_time_constant < 1.0:
            raise ConfigurationError("smoothing_time_constant must be in [0, 1)")

        self.config = config
        self.fft_size = config.fft_size
        self.bin_count = config.bin_count
        self.sample_rate = config.sample_rate

        self._window = get_window('blackman', self.fft_size).astype(np.float64)
        self._frame = np.zeros(self.fft_size, dtype=np.float64)
        self._smoothed = np.zeros(self.bin_count, dtype=np.float64)  # Linear magnitudes carried between ticks
        self._db = np.zeros(self.bin_count, dtype=np.float64)
        self._out = np.zeros(self.bin_count, dtype=np.float32)
        self._silent = np.zeros(self.bin_count, dtype=np.float32)

        self._db_range = config.max_db - config.min_db

        log_event("DEBUG", "Spectrum", "Frontend ready",
                  fft_size=self.fft_size, bins=self.bin_count, sample_rate=self.sample_rate)

    def process(self, samples) -> np.ndarray:
        """Compute one SpectrumFrame from the most recent ``fft_size`` samples.

        ``samples`` may be mono ``(n,)`` or interleaved-channel ``(n, channels)``.
        Shorter windows are zero-padded at the front. The sample rate is fixed
        per capture session (see ``AnalysisEngine.connect``).
        """
        data = np.asarray(samples, dtype=np.float64)
        if data.ndim == 2:
            data = data.mean(axis=1) if data.shape[1] > 1 else data[:, 0]
        elif data.ndim != 1:
            data = data.reshape(-1)

        n = min(len(data), self.fft_size)
        if n == 0:
            return self.silent_frame()

        self._frame.fill(0.0)
        self._frame[self.fft_size - n:] = data[-n:]
        # Non-finite input contributes nothing
        np.nan_to_num(self._frame, copy=False, nan=0.0, posinf=0.0, neginf=0.0)
        np.multiply(self._frame, self._window, out=self._frame)

        spectrum = np.fft.rfft(self._frame)
        magnitude = np.abs(spectrum[:self.bin_count]) / self.fft_size

        tau = self.config.smoothing_time_constant
        self._smoothed *= tau
        self._smoothed += (1.0 - tau) * magnitude

        np.maximum(self._smoothed, _MAG_FLOOR, out=self._db)
        np.log10(self._db, out=self._db)
        self._db *= 20.0

        self._db -= self.config.min_db
        self._db /= self._db_range
        np.clip(self._db, 0.0, 1.0, out=self._db)
        self._out[:] = self._db
        return self._out.copy()

    def silent_frame(self) -> np.ndarray:
        """All-zero frame emitted while capture is unavailable."""
        return self._silent.copy()

    def reset(self) -> None:
        """Forget spectral smoothing (capture disconnected)."""
        self._smoothed.fill(0.0)

"""Energy band extraction: SpectrumFrame -> low/mid/high/total energies.

Each band is the arithmetic mean of its bins' normalized magnitudes; the
total is a fixed convex combination of the three, clamped to [0, 1].
"""
from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from config import AnalysisConfig
from frequency_utils import band_bin_range

LOW_BAND = (20.0, 250.0)
MID_BAND = (250.0, 4000.0)
HIGH_BAND = (4000.0, 20000.0)
BAND_WEIGHTS = (0.5, 0.3, 0.2)


@dataclass(frozen=True)
class EnergyBands:
    """Per-band energy snapshot (all values 0..1)."""
    low: float = 0.0
    mid: float = 0.0
    high: float = 0.0
    total: float = 0.0

    def band(self, name: str) -> float:
        if name not in ("low", "mid", "high", "total"):
            raise KeyError(name)
        return getattr(self, name)


SILENT_BANDS = EnergyBands()


def calculate_band_energy(spectrum: np.ndarray, start_bin: int, end_bin: int) -> float:
    """Mean magnitude over ``spectrum[start_bin:end_bin]``; 0.0 for an empty window."""
    if start_bin >= end_bin or start_bin < 0 or end_bin > len(spectrum):
        return 0.0
    return float(np.mean(spectrum[start_bin:end_bin]))


def weighted_total(low: float, mid: float, high: float, weights=BAND_WEIGHTS) -> float:
    w_low, w_mid, w_high = weights
    return min(1.0, max(0.0, low * w_low + mid * w_mid + high * w_high))


@dataclass(frozen=True)
class BandLayout:
    """Bin ranges for one session (fixed fft size and sample rate)."""
    low: tuple
    mid: tuple
    high: tuple
    weights: tuple = BAND_WEIGHTS

    @classmethod
    def for_session(
        cls,
        fft_size: int,
        sample_rate: float,
        bin_count: int | None = None,
        config: AnalysisConfig | None = None,
    ) -> "BandLayout":
        if bin_count is None:
            bin_count = fft_size // 2
        low_hz = config.low_band if config else LOW_BAND
        mid_hz = config.mid_band if config else MID_BAND
        high_hz = config.high_band if config else HIGH_BAND
        weights = tuple(config.band_weights) if config else BAND_WEIGHTS
        return cls(
            low=band_bin_range(low_hz[0], low_hz[1], fft_size, sample_rate, bin_count),
            mid=band_bin_range(mid_hz[0], mid_hz[1], fft_size, sample_rate, bin_count),
            high=band_bin_range(high_hz[0], high_hz[1], fft_size, sample_rate, bin_count),
            weights=weights,
        )

    def extract(self, spectrum: np.ndarray) -> EnergyBands:
        low = calculate_band_energy(spectrum, *self.low)
        mid = calculate_band_energy(spectrum, *self.mid)
        high = calculate_band_energy(spectrum, *self.high)
        return EnergyBands(
            low=low,
            mid=mid,
            high=high,
            total=weighted_total(low, mid, high, self.weights),
        )


def calculate_energy_bands(spectrum: np.ndarray, fft_size: int, sample_rate: float) -> EnergyBands:
    """Reduce a SpectrumFrame to EnergyBands using the default band edges."""
    return BandLayout.for_session(fft_size, sample_rate, len(spectrum)).extract(spectrum)

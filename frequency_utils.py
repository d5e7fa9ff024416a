import numpy as np


def bin_width_hz(fft_size: int, sample_rate: float) -> float:
    """Frequency spacing between adjacent FFT bins."""
    if fft_size <= 0:
        return 0.0
    return sample_rate / fft_size


def frequency_to_bin(frequency: float, fft_size: int, sample_rate: float) -> int:
    """Map a frequency in Hz to the nearest FFT bin index."""
    width = bin_width_hz(fft_size, sample_rate)
    if width <= 0:
        return 0
    return int(round(frequency / width))


def bin_to_frequency(bin_index: int, fft_size: int, sample_rate: float) -> float:
    return bin_index * bin_width_hz(fft_size, sample_rate)


def band_bin_range(
    freq_low: float,
    freq_high: float,
    fft_size: int,
    sample_rate: float,
    bin_count: int,
) -> tuple[int, int]:
    """Half-open bin range [start, end) covering [freq_low, freq_high) Hz.

    The end is clamped to ``bin_count``; an empty or inverted band yields
    ``start >= end`` which band averaging treats as a zero contribution.
    """
    start = max(0, frequency_to_bin(freq_low, fft_size, sample_rate))
    end = min(bin_count, frequency_to_bin(freq_high, fft_size, sample_rate))
    return start, end


def frequency_axis(fft_size: int, sample_rate: float, bin_count: int) -> np.ndarray:
    """Centre frequency of every spectrum bin (for consumers plotting a frame)."""
    return np.arange(bin_count, dtype=np.float64) * bin_width_hz(fft_size, sample_rate)

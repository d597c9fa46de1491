"""
Spectral - Tapered Spectra and Cross-Spectral Density Primitives
================================================================

Building blocks for the connectivity estimators:

- Taper generation for single windows (boxcar, Hann, Hamming, Blackman)
  and Slepian multitapers (DPSS)
- One-sided tapered spectra with implicit zero padding up to the FFT length
- Taper-weighted cross-spectral density from two sets of tapered spectra
"""

from enum import Enum
from typing import Optional, Tuple

import numpy as np
from scipy.fft import rfft
from scipy.signal import windows

from .errors import ShapeMismatch, UnrecognizedWindowType


class WindowType(Enum):
    """Supported taper families."""

    BOXCAR = "boxcar"
    HANN = "hann"
    HAMMING = "hamming"
    BLACKMAN = "blackman"
    DPSS = "dpss"

    @classmethod
    def parse(cls, value) -> "WindowType":
        """
        Resolve a window selector to a WindowType.

        Parameters
        ----------
        value : WindowType, str or None
            Enum member, its name/value (case-insensitive) or one of the
            aliases ``"ones"`` and ``"hanning"``. None selects the default
            (boxcar).

        Raises
        ------
        UnrecognizedWindowType
            If the selector is not known.
        """
        if value is None:
            return DEFAULT_WINDOW
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower()
            key = _WINDOW_ALIASES.get(key, key)
            for member in cls:
                if member.value == key:
                    return member
        raise UnrecognizedWindowType(
            f"Unknown window type {value!r}; expected one of "
            f"{[member.value for member in cls]}"
        )


DEFAULT_WINDOW = WindowType.BOXCAR

_WINDOW_ALIASES = {
    "ones": "boxcar",
    "rectangular": "boxcar",
    "hanning": "hann",
    "slepian": "dpss",
}


def _single_taper(window_fn):
    def strategy(signal_length, half_bandwidth, n_tapers):
        taper = window_fn(signal_length, sym=True).astype(np.float64)
        taper /= np.linalg.norm(taper)
        return taper[np.newaxis, :], np.ones(1)
    return strategy


def _dpss_tapers(signal_length, half_bandwidth, n_tapers):
    if n_tapers is None:
        n_tapers = int(2 * half_bandwidth) - 1
    n_tapers = int(min(max(n_tapers, 1), signal_length))
    if signal_length == 1:
        return np.ones((1, 1)), np.ones(1)
    if half_bandwidth >= signal_length / 2.0:
        raise ValueError(
            f"half_bandwidth must be less than signal_length / 2 "
            f"({signal_length / 2.0}), got {half_bandwidth}"
        )
    tapers, ratios = windows.dpss(signal_length, half_bandwidth, Kmax=n_tapers,
                                  norm=2, return_ratios=True)
    # Slepian tapers are weighted by the square root of their concentration
    return np.atleast_2d(tapers), np.sqrt(np.atleast_1d(ratios))


_TAPER_STRATEGIES = {
    WindowType.BOXCAR: _single_taper(windows.boxcar),
    WindowType.HANN: _single_taper(windows.hann),
    WindowType.HAMMING: _single_taper(windows.hamming),
    WindowType.BLACKMAN: _single_taper(windows.blackman),
    WindowType.DPSS: _dpss_tapers,
}


def n_frequency_bins(n_fft: int) -> int:
    """Number of bins of a one-sided spectrum of length ``n_fft``."""
    return int(n_fft) // 2 + 1


def generate_tapers(signal_length: int, window_type=DEFAULT_WINDOW,
                    half_bandwidth: float = 4.0,
                    n_tapers: Optional[int] = None) -> Tuple[np.ndarray, np.ndarray]:
    """
    Generate the taper set for a signal of the given length.

    Parameters
    ----------
    signal_length : int
        Number of samples of the signal to be tapered.
    window_type : WindowType or str, default='boxcar'
        Taper family. Single-window families produce one taper normalised
        to unit energy; ``'dpss'`` produces Slepian multitapers.
    half_bandwidth : float, default=4.0
        Time-half-bandwidth product (NW) for DPSS tapers.
    n_tapers : int, optional
        Number of DPSS tapers. Defaults to ``2 * NW - 1``.

    Returns
    -------
    tapers : np.ndarray
        Array with shape (n_tapers, signal_length).
    weights : np.ndarray
        Per-taper weights with shape (n_tapers,).

    Raises
    ------
    ValueError
        If signal_length is smaller than 1.
    UnrecognizedWindowType
        If window_type is not a known selector.
    """
    window_type = WindowType.parse(window_type)
    signal_length = int(signal_length)
    if signal_length < 1:
        raise ValueError(f"signal_length must be at least 1, got {signal_length}")

    tapers, weights = _TAPER_STRATEGIES[window_type](signal_length, half_bandwidth, n_tapers)
    return tapers, weights


def compute_tapered_spectra(data: np.ndarray, tapers: np.ndarray, n_fft: Optional[int] = None,
                            remove_mean: bool = False) -> np.ndarray:
    """
    Compute the one-sided spectra of a tapered time series.

    Parameters
    ----------
    data : np.ndarray
        Real series with shape (..., n_samples); leading axes (e.g. channels)
        are kept in the output.
    tapers : np.ndarray
        Tapers with shape (n_tapers, n_samples).
    n_fft : int, optional
        FFT length. Raised to n_samples when missing or too small, larger
        values zero-pad the tapered series.
    remove_mean : bool, default=False
        Subtract the mean of each series before tapering.

    Returns
    -------
    np.ndarray
        Complex array with shape (..., n_tapers, n_fft // 2 + 1).
    """
    data = np.asarray(data, dtype=np.float64)
    tapers = np.atleast_2d(np.asarray(tapers, dtype=np.float64))
    n_samples = data.shape[-1]
    if tapers.shape[-1] != n_samples:
        raise ShapeMismatch(
            f"Taper length {tapers.shape[-1]} does not match signal length {n_samples}"
        )
    if n_fft is None or n_fft < n_samples:
        n_fft = n_samples

    if remove_mean:
        data = data - data.mean(axis=-1, keepdims=True)

    tapered = data[..., np.newaxis, :] * tapers
    return rfft(tapered, n=int(n_fft), axis=-1)


def csd_from_tapered_spectra(seed_spectra: np.ndarray, target_spectra: np.ndarray,
                             seed_weights: np.ndarray, target_weights: np.ndarray,
                             n_fft: int, scale: float = 1.0) -> np.ndarray:
    """
    Combine two sets of tapered spectra into a cross-spectral density.

    Parameters
    ----------
    seed_spectra : np.ndarray
        Complex array (..., n_tapers, n_bins) of the seed channel.
    target_spectra : np.ndarray
        Complex array (..., n_tapers, n_bins); leading axes broadcast
        against the seed, so one seed can be combined with many targets.
    seed_weights, target_weights : np.ndarray
        Taper weights with shape (n_tapers,).
    n_fft : int
        FFT length the spectra were computed with.
    scale : float, default=1.0
        Normalisation factor, usually the sampling frequency.

    Returns
    -------
    np.ndarray
        Complex array (..., n_bins): seed times conjugate target, summed
        over tapers and normalised by the seed weight energy.
    """
    seed_spectra = np.asarray(seed_spectra)
    target_spectra = np.asarray(target_spectra)
    seed_weights = np.asarray(seed_weights, dtype=np.float64)
    target_weights = np.asarray(target_weights, dtype=np.float64)

    n_bins = n_frequency_bins(n_fft)
    if seed_spectra.shape[-2:] != target_spectra.shape[-2:]:
        raise ShapeMismatch(
            f"Spectra shapes differ: {seed_spectra.shape[-2:]} vs {target_spectra.shape[-2:]}"
        )
    if seed_spectra.shape[-1] != n_bins:
        raise ShapeMismatch(
            f"Spectra have {seed_spectra.shape[-1]} bins, expected {n_bins} for n_fft={n_fft}"
        )
    n_tapers = seed_spectra.shape[-2]
    if seed_weights.shape != (n_tapers,) or target_weights.shape != (n_tapers,):
        raise ShapeMismatch(f"Expected {n_tapers} taper weights per channel")

    seed = seed_weights[:, np.newaxis] * seed_spectra
    target = target_weights[:, np.newaxis] * target_spectra

    # seed * conj(target), written out so csd(x, x).imag is exactly zero
    real = seed.real * target.real + seed.imag * target.imag
    imag = seed.imag * target.real - seed.real * target.imag

    denom = np.sum(seed_weights ** 2) * scale
    csd = 2.0 * (real.sum(axis=-2) + 1j * imag.sum(axis=-2)) / denom

    # DC and Nyquist are not mirrored in the one-sided spectrum
    csd[..., 0] /= 2.0
    if n_fft % 2 == 0:
        csd[..., -1] /= 2.0
    return csd

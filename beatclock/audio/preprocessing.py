"""Audio preprocessing utilities."""

from __future__ import annotations

import numpy as np
from scipy.signal import butter, sosfilt


def normalize(audio: np.ndarray) -> np.ndarray:
    """Peak-normalize audio to the range [-1, 1].

    If the audio is silent (all zeros), it is returned unchanged.
    """
    if len(audio) == 0:
        return audio
    peak = np.max(np.abs(audio))
    if peak == 0:
        return audio
    return audio / peak


def high_pass_filter(
    audio: np.ndarray,
    sr: int,
    cutoff: float = 40.0,
) -> np.ndarray:
    """Apply a Butterworth high-pass filter (removes DC and rumble).

    Parameters
    ----------
    audio:
        Input audio signal.
    sr:
        Sample rate in Hz.
    cutoff:
        High-pass cutoff frequency in Hz. Defaults to 40 Hz.
    """
    sos = butter(N=4, Wn=cutoff, btype="high", fs=sr, output="sos")
    return sosfilt(sos, audio)


def low_pass_filter(
    audio: np.ndarray,
    sr: int,
    cutoff: float = 250.0,
) -> np.ndarray:
    """Apply a Butterworth low-pass filter.

    Used to weight beat energies toward kick/bass content. A cutoff at or
    above Nyquist returns the input unchanged.
    """
    if cutoff >= sr / 2:
        return np.asarray(audio, dtype=np.float64)
    sos = butter(N=4, Wn=cutoff, btype="low", fs=sr, output="sos")
    return sosfilt(sos, audio)


def preprocess(audio: np.ndarray, sr: int) -> np.ndarray:
    """Apply the full preprocessing pipeline (normalize then high-pass filter)."""
    audio = normalize(audio)
    audio = high_pass_filter(audio, sr)
    return audio

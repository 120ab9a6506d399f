"""Onset detection from short-time energy, spectral centroid and high-frequency change."""

import logging

import librosa
import numpy as np

from beatclock.analysis.models import Onset, Signal
from beatclock.config import Settings

logger = logging.getLogger(__name__)

# Frames per FFT block, keeps the spectral pass bounded on long signals
_BLOCK_FRAMES = 2048


def onset_thresholds(sensitivity: float) -> tuple[float, float, float]:
    """Map a 0-1 sensitivity onto the three detection thresholds.

    Returns (energy multiplier, centroid delta, high-frequency multiplier).
    Higher sensitivity lowers every threshold, so weaker evidence fires.
    """
    s = min(1.0, max(0.0, float(sensitivity)))
    energy_mult = 1.5 + (1.0 - s) * 2.0
    centroid_delta = 0.05 + (1.0 - s) * 0.15
    hf_mult = 1.2 + (1.0 - s) * 1.3
    return energy_mult, centroid_delta, hf_mult


def _trailing_mean(values: np.ndarray, length: int) -> np.ndarray:
    """Mean of the previous *length* values for each position (0 where none)."""
    csum = np.concatenate(([0.0], np.cumsum(values)))
    idx = np.arange(len(values))
    lo = np.maximum(0, idx - length)
    counts = idx - lo
    sums = csum[idx] - csum[lo]
    return np.divide(sums, counts, out=np.zeros(len(values)), where=counts > 0)


def frame_features(
    samples: np.ndarray,
    window: int,
    hop: int,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Per-window RMS energy, high-frequency proxy and normalized spectral centroid.

    The high-frequency proxy is the RMS of the first difference over the
    trailing half of each window. The centroid is the magnitude-weighted mean
    rFFT bin scaled to [0, 1]; silent windows get 0.
    """
    frames = librosa.util.frame(samples, frame_length=window, hop_length=hop, axis=0)

    rms = np.sqrt(np.mean(frames ** 2, axis=1))
    tail = frames[:, window // 2:]
    hf = np.sqrt(np.mean(np.diff(tail, axis=1) ** 2, axis=1))

    hann = np.hanning(window)
    n_bins = window // 2 + 1
    bins = np.arange(n_bins)
    centroid = np.zeros(len(frames))
    for start in range(0, len(frames), _BLOCK_FRAMES):
        block = frames[start:start + _BLOCK_FRAMES]
        spectrum = np.abs(np.fft.rfft(block * hann, axis=1))
        total = spectrum.sum(axis=1)
        weighted = (spectrum * bins).sum(axis=1)
        centroid[start:start + len(block)] = np.divide(
            weighted, total * max(n_bins - 1, 1),
            out=np.zeros(len(block)), where=total > 1e-12,
        )

    return rms, hf, centroid


def detect_onsets(
    signal: Signal,
    sensitivity: float = 0.5,
    settings: Settings | None = None,
    ranked: bool = False,
) -> list[Onset]:
    """Detect transient onsets in a mono signal.

    The first window never fires: with no history its baselines are 0.
    Otherwise an onset fires when at least ``settings.onset_required_criteria`` of three
    tests agree (energy over its running average, centroid jump, high-frequency
    jump over its running average) and the window clears the noise floor.
    Candidates inside the minimum spacing of an accepted onset are dropped;
    with *ranked* a stronger candidate replaces the accepted one instead.

    Returns onsets in time order with strengths normalized to a maximum of 1.
    """
    if signal is None:
        raise TypeError("detect_onsets requires a Signal")
    settings = settings or Settings()

    sr = signal.sample_rate
    window = max(2, int(round(sr * settings.onset_window_ms / 1000.0)))
    hop = max(1, int(round(window * settings.onset_hop_ratio)))
    if len(signal) < window:
        return []

    rms, hf, centroid = frame_features(signal.samples, window, hop)

    history = max(1, int(round(settings.onset_history_seconds * sr / hop)))
    rms_baseline = _trailing_mean(rms, history)
    hf_baseline = _trailing_mean(hf, history)
    prev_centroid = np.concatenate((centroid[:1], centroid[:-1]))

    energy_mult, centroid_delta, hf_mult = onset_thresholds(sensitivity)
    votes = (
        (rms > rms_baseline * energy_mult).astype(int)
        + (np.abs(centroid - prev_centroid) > centroid_delta).astype(int)
        + (hf > hf_baseline * hf_mult).astype(int)
    )
    # A window votes only once it has earlier windows as a baseline
    votes[0] = 0
    required = min(3, max(1, settings.onset_required_criteria))
    candidates = np.flatnonzero((votes >= required) & (rms > settings.onset_noise_floor))

    strengths = np.maximum(rms - rms_baseline, rms * 0.1)
    min_spacing = settings.min_onset_interval_ms / 1000.0

    accepted: list[Onset] = []
    for i in candidates:
        time = (i * hop + window - hop) / sr
        strength = float(strengths[i])
        if accepted and time - accepted[-1].time < min_spacing:
            if ranked and strength > accepted[-1].strength:
                accepted[-1] = Onset(time=time, strength=strength)
            continue
        accepted.append(Onset(time=time, strength=strength))

    if accepted:
        peak = max(o.strength for o in accepted)
        if peak > 0:
            for o in accepted:
                o.strength = o.strength / peak

    logger.debug(f"Detected {len(accepted)} onsets from {len(rms)} windows "
                 f"(sensitivity={sensitivity:.2f}, ranked={ranked})")
    return accepted


def onset_envelope(
    onsets: list[Onset],
    duration: float,
    rate: float = 100.0,
) -> np.ndarray:
    """Render onsets onto a regular strength envelope sampled at *rate* Hz."""
    n = max(1, int(np.ceil(max(duration, 0.0) * rate)) + 1)
    envelope = np.zeros(n)
    for o in onsets:
        idx = int(round(o.time * rate))
        if 0 <= idx < n:
            envelope[idx] = max(envelope[idx], o.strength)
    return envelope

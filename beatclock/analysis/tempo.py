"""Tempo estimation from onsets: IOI histogram, autocorrelation and consensus."""

import logging
from dataclasses import dataclass

import numpy as np

from beatclock.analysis.models import Onset, TempoEstimate, TempoMethod
from beatclock.analysis.onset import onset_envelope
from beatclock.config import Settings

logger = logging.getLogger(__name__)

# Harmonic multipliers covering half/double/quadruple-time ambiguity
HARMONIC_MULTIPLIERS = (0.5, 1.0, 2.0, 4.0)


@dataclass
class _Bucket:
    count: int = 0
    total_strength: float = 0.0
    direct: int = 0  # votes cast with multiplier 1

    @property
    def score(self) -> float:
        return self.count * self.total_strength


def clamp_bpm(bpm: float, settings: Settings) -> float:
    """Clamp into the configured tempo range."""
    return float(min(settings.max_bpm, max(settings.min_bpm, bpm)))


def default_tempo(settings: Settings) -> TempoEstimate:
    """Neutral estimate returned when there is not enough evidence."""
    return TempoEstimate(bpm=clamp_bpm(settings.default_bpm, settings), confidence=0.0)


def interval_consistency(intervals: np.ndarray) -> float:
    """Confidence from interval regularity: 1 - 2 * coefficient of variation."""
    if len(intervals) == 0:
        return 0.0
    mean = float(np.mean(intervals))
    if mean <= 0:
        return 0.0
    cv = float(np.std(intervals)) / mean
    return max(0.0, min(1.0, 1.0 - cv * 2))


def _quantize(bpm: float, resolution: float) -> float:
    return round(bpm / resolution) * resolution


def estimate_from_histogram(onsets: list[Onset], settings: Settings | None = None) -> TempoEstimate:
    """Estimate tempo by voting inter-onset intervals into a BPM histogram.

    Each adjacent interval votes for its BPM and its 0.5x/2x/4x harmonics,
    weighted by the mean strength of the two onsets. The winning bucket
    maximizes count * total strength and is refined by averaging its
    neighbours within ``settings.refine_window_bpm``.
    """
    settings = settings or Settings()
    if len(onsets) < settings.min_onsets_for_tempo:
        return default_tempo(settings)

    intervals: list[tuple[float, float]] = []
    for prev, cur in zip(onsets[:-1], onsets[1:]):
        gap = cur.time - prev.time
        if settings.min_beat_interval <= gap <= settings.max_beat_interval:
            intervals.append((gap, (prev.strength + cur.strength) / 2))

    if len(intervals) < 3:
        return default_tempo(settings)

    resolution = settings.tempo_resolution
    histogram: dict[float, _Bucket] = {}
    for gap, strength in intervals:
        for multiplier in HARMONIC_MULTIPLIERS:
            bpm = _quantize(60.0 / gap * multiplier, resolution)
            if settings.min_bpm <= bpm <= settings.max_bpm:
                bucket = histogram.setdefault(bpm, _Bucket())
                bucket.count += 1
                bucket.total_strength += strength
                if multiplier == 1.0:
                    bucket.direct += 1

    if not histogram:
        return default_tempo(settings)

    # Ties: prefer direct votes, then the tempo nearest the neutral default
    best_bpm = max(
        histogram,
        key=lambda b: (histogram[b].score, histogram[b].direct, -abs(b - settings.default_bpm)),
    )
    best = histogram[best_bpm]
    confidence = min(1.0, best.count / len(intervals) + 0.2)

    weighted_sum = 0.0
    weight_total = 0.0
    for bpm, bucket in histogram.items():
        if abs(bpm - best_bpm) <= settings.refine_window_bpm:
            weighted_sum += bpm * bucket.score
            weight_total += bucket.score
    if weight_total > 0:
        best_bpm = _quantize(weighted_sum / weight_total, resolution)

    return TempoEstimate(
        bpm=clamp_bpm(best_bpm, settings),
        confidence=round(confidence, 3),
        method=TempoMethod.HISTOGRAM.value,
    )


def estimate_from_autocorrelation(
    onsets: list[Onset],
    duration: float | None = None,
    settings: Settings | None = None,
) -> TempoEstimate:
    """Estimate tempo from the autocorrelation of the onset-strength envelope.

    Lags span ``floor(60/max_bpm * rate)`` to ``floor(60/min_bpm * rate)``.
    The autocorrelation is the plain lag-product sum, so a multiple of the
    period never outscores the period itself. Peaks are picked on a
    three-lag sum, which merges a peak split across neighbouring lags by
    onset jitter. The strongest peak wins (the shorter lag on ties); its
    height relative to the zero-lag value is the confidence.
    """
    settings = settings or Settings()
    if len(onsets) < settings.min_onsets_for_tempo:
        return default_tempo(settings)

    if duration is None or duration <= 0:
        duration = onsets[-1].time
    rate = settings.envelope_rate
    envelope = onset_envelope(onsets, duration, rate)
    n = len(envelope)

    min_lag = max(2, int(np.floor(60.0 / settings.max_bpm * rate)))
    max_lag = int(np.floor(60.0 / settings.min_bpm * rate))
    if max_lag + 1 >= n:
        max_lag = n - 2
    if max_lag <= min_lag:
        return default_tempo(settings)

    acf = np.correlate(envelope, envelope, mode="full")[n - 1:]
    zero_lag = float(acf[0])
    if zero_lag <= 0:
        return default_tempo(settings)
    merged = np.convolve(acf, np.ones(3), mode="same")

    best_lag = None
    best_value = 0.0
    for lag in range(min_lag, max_lag + 1):
        value = float(merged[lag])
        if value > merged[lag - 1] and value >= merged[lag + 1] and value > best_value * (1 + 1e-6):
            best_value = value
            best_lag = lag

    if best_lag is None:
        return default_tempo(settings)

    # Centroid of the raw peak refines the lag below one envelope sample
    window = acf[best_lag - 1:best_lag + 2]
    lag = best_lag + float(window[2] - window[0]) / float(window.sum())

    bpm = 60.0 * rate / lag
    confidence = min(1.0, best_value / zero_lag)
    return TempoEstimate(
        bpm=round(clamp_bpm(bpm, settings), 1),
        confidence=round(confidence, 3),
        method=TempoMethod.AUTOCORRELATION.value,
    )


def consensus_tempo(
    candidates: list[TempoEstimate],
    settings: Settings | None = None,
) -> TempoEstimate:
    """Build consensus from several tempo estimates."""
    settings = settings or Settings()
    candidates = [c for c in candidates if c.confidence > 0]
    if not candidates:
        return default_tempo(settings)

    total_weight = sum(c.confidence for c in candidates)
    reference = max(candidates, key=lambda c: c.confidence).bpm

    # Tempo octave ambiguity: 60 vs 120 vs 240 BPM
    normalized = []
    for c in candidates:
        b = c.bpm
        while b < reference * 0.7 and b * 2 <= settings.max_bpm:
            b *= 2
        while b > reference * 1.4 and b / 2 >= settings.min_bpm:
            b /= 2
        normalized.append(b)

    weighted_bpm = sum(b * c.confidence for b, c in zip(normalized, candidates)) / total_weight

    # Agreement: high if candidates land on the same tempo, low otherwise
    deviations = [abs(b - weighted_bpm) / weighted_bpm for b in normalized]
    avg_deviation = sum(d * c.confidence for d, c in zip(deviations, candidates)) / total_weight
    agreement = max(0.0, min(1.0, 1.0 - avg_deviation * 5))
    confidence = total_weight / len(candidates) * agreement

    return TempoEstimate(
        bpm=round(clamp_bpm(weighted_bpm, settings), 1),
        confidence=round(min(1.0, confidence), 3),
        method=TempoMethod.CONSENSUS.value,
    )


def estimate_tempo(
    onsets: list[Onset],
    duration: float | None = None,
    settings: Settings | None = None,
    method: TempoMethod | str = TempoMethod.CONSENSUS,
) -> TempoEstimate:
    """Estimate tempo with the chosen strategy.

    Too few onsets never raise: the neutral default (confidence 0) comes back.
    """
    settings = settings or Settings()
    method = TempoMethod(method)

    if method == TempoMethod.HISTOGRAM:
        return estimate_from_histogram(onsets, settings)
    if method == TempoMethod.AUTOCORRELATION:
        return estimate_from_autocorrelation(onsets, duration, settings)

    histogram = estimate_from_histogram(onsets, settings)
    autocorr = estimate_from_autocorrelation(onsets, duration, settings)
    logger.debug(f"Tempo candidates: histogram={histogram.bpm} ({histogram.confidence}), "
                 f"autocorrelation={autocorr.bpm} ({autocorr.confidence})")
    return consensus_tempo([histogram, autocorr], settings)

"""Phase-aligned beat grid construction, downbeat inference and grid helpers."""

import bisect
import logging

import numpy as np

from beatclock.analysis.models import Beat, BeatGrid, Onset, Signal, Slice, TempoEstimate
from beatclock.analysis.tempo import clamp_bpm
from beatclock.audio.preprocessing import low_pass_filter
from beatclock.config import Settings

logger = logging.getLogger(__name__)

TIME_SIGNATURES = {3: "3/4", 4: "4/4", 5: "5/4", 6: "6/8"}


def time_signature_for(group_size: int) -> str:
    """Time signature label for an inferred bar length."""
    return TIME_SIGNATURES.get(group_size, "4/4")


def _onset_arrays(onsets: list[Onset]) -> tuple[np.ndarray, np.ndarray]:
    times = np.array([o.time for o in onsets], dtype=np.float64)
    strengths = np.array([o.strength for o in onsets], dtype=np.float64)
    return times, strengths


def score_phase(
    onset_times: np.ndarray,
    onset_strengths: np.ndarray,
    phase: float,
    interval: float,
    tolerance: float,
) -> float:
    """Alignment score of a grid at *phase*.

    Each onset within *tolerance* of its nearest grid line adds
    ``strength * (1 - distance / tolerance)``; farther onsets add nothing.
    """
    if len(onset_times) == 0:
        return 0.0
    nearest = np.round((onset_times - phase) / interval) * interval + phase
    distance = np.abs(onset_times - nearest)
    mask = distance < tolerance
    return float(np.sum(onset_strengths[mask] * (1.0 - distance[mask] / tolerance)))


def find_phase(onsets: list[Onset], interval: float, settings: Settings) -> float:
    """Best grid phase in [0, interval), searched at interval / phase_subdivisions steps.

    Ties keep the earliest phase, so no onsets means phase 0.
    """
    times, strengths = _onset_arrays(onsets)
    tolerance = interval * settings.phase_tolerance
    subdivisions = max(1, settings.phase_subdivisions)

    best_phase = 0.0
    best_score = 0.0
    for k in range(subdivisions):
        phase = k * interval / subdivisions
        score = score_phase(times, strengths, phase, interval, tolerance)
        if score > best_score:
            best_score = score
            best_phase = phase
    return best_phase


def beat_confidence(
    time: float,
    onset_times: np.ndarray,
    onset_strengths: np.ndarray,
    interval: float,
    settings: Settings,
) -> float:
    """Strength of the nearest matching onset, or the interpolated-beat default."""
    if len(onset_times) == 0:
        return settings.interpolated_beat_confidence
    i = int(np.argmin(np.abs(onset_times - time)))
    if abs(onset_times[i] - time) < interval * settings.beat_match_tolerance:
        return float(min(1.0, onset_strengths[i]))
    return settings.interpolated_beat_confidence


def compute_beat_energies(beats: list[Beat], signal: Signal, settings: Settings) -> np.ndarray:
    """Low-frequency-weighted energy in a short window centred on each beat."""
    sr = signal.sample_rate
    low = low_pass_filter(signal.samples, sr, settings.downbeat_lowpass_hz)
    window = max(1, int(sr * settings.downbeat_window_ms / 1000.0))

    energies = np.zeros(len(beats))
    for i, beat in enumerate(beats):
        start = max(0, int(beat.time * sr) - window // 2)
        full_seg = signal.samples[start:start + window]
        if len(full_seg) == 0:
            continue
        low_seg = low[start:start + window]
        low_rms = float(np.sqrt(np.mean(low_seg ** 2)))
        full_rms = float(np.sqrt(np.mean(full_seg ** 2)))
        energies[i] = 0.75 * low_rms + 0.25 * full_rms
    return energies


def infer_downbeats(energies: np.ndarray, settings: Settings) -> tuple[int, int]:
    """Infer (beats per bar, index of first downbeat) from per-beat energies.

    Bar lengths min_group_size..max_group_size are tried in order; beat
    energies are averaged into ``index % group`` buckets and the first
    grouping whose loudest bucket beats the bucket mean by
    ``downbeat_accent_ratio`` wins. Otherwise the default bar at phase 0.
    """
    n = len(energies)
    for group in range(settings.min_group_size, settings.max_group_size + 1):
        if n < group * 2:
            continue
        positions = np.arange(n) % group
        sums = np.bincount(positions, weights=energies, minlength=group)
        counts = np.bincount(positions, minlength=group)
        buckets = sums / counts
        average = float(np.mean(buckets))
        if average > 0 and float(np.max(buckets)) > average * settings.downbeat_accent_ratio:
            return group, int(np.argmax(buckets))
    return settings.default_beats_per_bar, 0


def build_beat_grid(
    onsets: list[Onset],
    tempo: TempoEstimate,
    duration: float,
    settings: Settings | None = None,
    signal: Signal | None = None,
) -> BeatGrid:
    """Build a phase-aligned beat grid covering [0, duration).

    Beats are placed at ``phase + i * interval`` (never accumulated). When
    *signal* is given, downbeats come from low-frequency beat energies;
    otherwise the per-beat confidences stand in for energy.
    """
    settings = settings or Settings()
    bpm = clamp_bpm(tempo.bpm, settings)
    interval = 60.0 / bpm
    duration = max(0.0, float(duration))

    phase = find_phase(onsets, interval, settings)
    times, strengths = _onset_arrays(onsets)

    beats: list[Beat] = []
    i = 0
    while True:
        t = phase + i * interval
        if t >= duration:
            break
        beats.append(Beat(
            time=t,
            index=i,
            confidence=beat_confidence(t, times, strengths, interval, settings),
        ))
        i += 1

    if signal is not None:
        energies = compute_beat_energies(beats, signal, settings)
    else:
        energies = np.array([b.confidence for b in beats])

    beats_per_bar, downbeat_offset = infer_downbeats(energies, settings)
    for beat in beats:
        beat.is_downbeat = beat.index >= downbeat_offset and \
            (beat.index - downbeat_offset) % beats_per_bar == 0

    logger.debug(f"Beat grid: {len(beats)} beats at {bpm:.1f} BPM, phase={phase:.3f}s, "
                 f"{beats_per_bar} beats/bar from beat {downbeat_offset}")
    return BeatGrid(
        beats=beats,
        bpm=bpm,
        phase_offset=phase,
        beats_per_bar=beats_per_bar,
        time_signature=time_signature_for(beats_per_bar),
        downbeat_offset=downbeat_offset,
    )


def metronome_grid(
    bpm: float,
    duration: float,
    offset: float = 0.0,
    beats_per_bar: int = 4,
) -> list[Beat]:
    """Plain grid at a known tempo with no onset alignment."""
    if bpm <= 0:
        raise ValueError(f"bpm must be positive, got {bpm}")
    interval = 60.0 / bpm
    beats_per_bar = max(1, beats_per_bar)
    beats = []
    i = 0
    while offset + i * interval < duration:
        beats.append(Beat(time=offset + i * interval, index=i, is_downbeat=i % beats_per_bar == 0))
        i += 1
    return beats


def snap_to_beat(time: float, grid: BeatGrid | list[Beat]) -> float:
    """Time of the beat nearest to *time*; *time* itself if the grid is empty."""
    beats = grid.beats if isinstance(grid, BeatGrid) else grid
    if not beats:
        return time
    times = [b.time for b in beats]
    i = bisect.bisect_left(times, time)
    if i == 0:
        return times[0]
    if i == len(times):
        return times[-1]
    before, after = times[i - 1], times[i]
    return before if time - before <= after - time else after


def quantize_to_beat(time: float, bpm: float, strength: float = 1.0, offset: float = 0.0) -> float:
    """Pull *time* toward the nearest beat of a constant grid.

    *strength* blends from 0 (unchanged) to 1 (fully quantized).
    """
    if bpm <= 0:
        return time
    interval = 60.0 / bpm
    quantized = round((time - offset) / interval) * interval + offset
    strength = min(1.0, max(0.0, strength))
    return time + (quantized - time) * strength


def slice_points_from_beats(
    grid: BeatGrid,
    beats_per_slice: int = 4,
    onsets: list[Onset] | None = None,
    include_onsets: bool = False,
    min_strength: float = 0.5,
    min_gap: float = 0.1,
) -> list[float]:
    """Slice start times: every *beats_per_slice* beats, or strong onsets."""
    points = [0.0]
    if include_onsets:
        for onset in onsets or []:
            if onset.strength > min_strength and onset.time > points[-1] + min_gap:
                points.append(onset.time)
        return points

    step = max(1, beats_per_slice)
    for i in range(step, len(grid.beats), step):
        points.append(grid.beats[i].time)
    return points


def beat_aligned_slices(grid: BeatGrid, num_slices: int, duration: float) -> list[Slice]:
    """Split [0, duration) into *num_slices* regions with beat-snapped boundaries."""
    if num_slices <= 0 or duration <= 0:
        return []
    interval = grid.beat_interval
    slice_duration = duration / num_slices
    slices = []
    for i in range(num_slices):
        start = snap_to_beat(i * slice_duration, grid)
        end = duration if i == num_slices - 1 else snap_to_beat((i + 1) * slice_duration, grid)
        slices.append(Slice(
            start=start,
            end=end,
            start_beat=int(round((start - grid.phase_offset) / interval)),
            end_beat=int(round((end - grid.phase_offset) / interval)),
        ))
    return slices

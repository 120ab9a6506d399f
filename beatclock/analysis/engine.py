"""Analysis orchestrator - combines onset detection, tempo estimation and beat grid."""

import copy
import logging
from pathlib import Path

from beatclock.analysis.beat_grid import beat_aligned_slices, build_beat_grid
from beatclock.analysis.cache import AnalysisCache
from beatclock.analysis.models import AnalysisOptions, AnalysisResult, Signal
from beatclock.analysis.onset import detect_onsets
from beatclock.analysis.tempo import estimate_tempo
from beatclock.audio.loader import load_audio
from beatclock.audio.preprocessing import preprocess
from beatclock.config import Settings

logger = logging.getLogger(__name__)


class AnalysisEngine:
    """Orchestrates the full analysis pipeline.

    The last result is memoized on (signal content, options); every caller
    gets an independent copy. With an AnalysisCache results also survive
    restarts.
    """

    def __init__(self, settings: Settings | None = None, cache: AnalysisCache | None = None):
        self.settings = settings or Settings()
        self.cache = cache
        self._last_key: tuple[str, str] | None = None
        self._last_result: AnalysisResult | None = None

    def analyze_file(self, file_path: str | Path, options: AnalysisOptions | None = None) -> AnalysisResult:
        """Analyze an audio file."""
        audio, sr = load_audio(file_path, sr=self.settings.sample_rate)
        audio = preprocess(audio, sr)
        return self.analyze(Signal(audio, sr), options)

    def analyze(self, signal: Signal, options: AnalysisOptions | None = None) -> AnalysisResult:
        """Analyze a mono signal."""
        if signal is None:
            raise TypeError("analyze requires a Signal")
        options = options or AnalysisOptions(sensitivity=self.settings.default_sensitivity)

        ah = AnalysisCache.audio_hash(signal)
        key = (ah, options.cache_token())
        if key == self._last_key and self._last_result is not None:
            logger.debug("Returning memoized analysis")
            return copy.deepcopy(self._last_result)

        result = None
        if self.cache:
            result = self.cache.load(ah, options)
            if result is not None:
                logger.info(f"Analysis loaded from cache ({ah})")

        if result is None:
            result = self._run(signal, options)
            if self.cache:
                self.cache.save(ah, options, result)

        # Callers own what they get back; the memo keeps its own copy
        self._last_key = key
        self._last_result = copy.deepcopy(result)
        return result

    def _run(self, signal: Signal, options: AnalysisOptions) -> AnalysisResult:
        duration = signal.duration
        logger.info(f"Analyzing {duration:.1f}s of audio at {signal.sample_rate}Hz")

        # Step 1: Onset detection
        logger.info("Step 1: Onset detection")
        onsets = detect_onsets(signal, options.sensitivity, self.settings, ranked=options.ranked_onsets)
        logger.info(f"  {len(onsets)} onsets")

        # Step 2: Tempo estimation
        logger.info("Step 2: Tempo estimation")
        tempo = estimate_tempo(onsets, duration, self.settings, method=options.tempo_method)
        if tempo.is_reliable:
            logger.info(f"  Tempo: {tempo.bpm} BPM (confidence: {tempo.confidence})")
        else:
            logger.warning(f"  Not enough onsets for tempo, using default {tempo.bpm} BPM")

        # Step 3: Beat grid and downbeats
        logger.info("Step 3: Beat grid")
        grid = build_beat_grid(onsets, tempo, duration, self.settings, signal=signal)
        logger.info(f"  {len(grid.beats)} beats, {len(grid.downbeats)} downbeats, {grid.time_signature}")

        slices = []
        if options.num_slices > 0:
            slices = beat_aligned_slices(grid, options.num_slices, duration)

        return AnalysisResult(
            bpm=grid.bpm,
            confidence=tempo.confidence,
            beats=grid.beats,
            downbeats=grid.downbeats,
            onsets=onsets,
            time_signature=grid.time_signature,
            beat_grid=grid,
            slices=slices,
            duration=duration,
            tempo_method=tempo.method,
        )

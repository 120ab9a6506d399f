"""Core data models for rhythm analysis."""

from dataclasses import dataclass, field
from enum import Enum

import numpy as np


@dataclass(frozen=True, eq=False)
class Signal:
    """Read-only mono audio owned by the caller."""
    samples: np.ndarray
    sample_rate: int

    def __post_init__(self):
        if self.samples is None:
            raise TypeError("Signal samples must not be None")
        if self.sample_rate is None or self.sample_rate <= 0:
            raise ValueError(f"Sample rate must be positive, got {self.sample_rate}")
        samples = np.asarray(self.samples, dtype=np.float64)
        if samples.ndim != 1:
            raise ValueError(f"Signal must be mono (1-D), got shape {samples.shape}")
        view = samples.view()
        view.flags.writeable = False
        object.__setattr__(self, "samples", view)

    @property
    def duration(self) -> float:
        """Length in seconds."""
        return len(self.samples) / self.sample_rate

    def __len__(self) -> int:
        return len(self.samples)


@dataclass
class Onset:
    """A detected transient."""
    time: float  # seconds
    strength: float  # >= 0, strongest onset of a run is 1.0


class TempoMethod(str, Enum):
    HISTOGRAM = "histogram"
    AUTOCORRELATION = "autocorrelation"
    CONSENSUS = "consensus"


@dataclass
class TempoEstimate:
    """A tempo with confidence. Confidence 0 marks a default, not a measurement."""
    bpm: float
    confidence: float  # 0.0-1.0
    method: str = "default"

    @property
    def is_reliable(self) -> bool:
        return self.confidence > 0.0


@dataclass
class Beat:
    """A single beat on the grid."""
    time: float  # seconds
    index: int
    is_downbeat: bool = False
    confidence: float = 1.0  # 0.0-1.0, low for interpolated beats


@dataclass
class BeatGrid:
    """Phase-aligned beats spanning a signal."""
    beats: list[Beat]
    bpm: float
    phase_offset: float  # seconds, time of beat 0
    beats_per_bar: int = 4
    time_signature: str = "4/4"
    downbeat_offset: int = 0  # index of the first downbeat

    @property
    def beat_interval(self) -> float:
        return 60.0 / self.bpm

    @property
    def downbeats(self) -> list[float]:
        return [b.time for b in self.beats if b.is_downbeat]

    @property
    def times(self) -> list[float]:
        return [b.time for b in self.beats]


@dataclass
class Slice:
    """A beat-aligned region of the signal."""
    start: float
    end: float
    start_beat: int
    end_beat: int


@dataclass(frozen=True)
class AnalysisOptions:
    """Per-call analysis parameters. Every field is part of the cache key."""
    sensitivity: float = 0.5
    num_slices: int = 0
    tempo_method: TempoMethod = TempoMethod.CONSENSUS
    ranked_onsets: bool = True

    def cache_token(self) -> str:
        return (f"s={self.sensitivity:.4f}|n={self.num_slices}|"
                f"m={TempoMethod(self.tempo_method).value}|r={int(self.ranked_onsets)}")


@dataclass
class AnalysisResult:
    """Complete analysis result."""
    bpm: float
    confidence: float
    beats: list[Beat]
    downbeats: list[float]
    onsets: list[Onset]
    time_signature: str
    beat_grid: BeatGrid
    slices: list[Slice] = field(default_factory=list)
    duration: float = 0.0
    tempo_method: str = TempoMethod.CONSENSUS.value

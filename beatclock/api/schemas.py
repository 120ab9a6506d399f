"""Pydantic models for API responses and websocket messages."""

from typing import Literal

from pydantic import BaseModel, Field

from beatclock.analysis.models import AnalysisResult


class BeatResponse(BaseModel):
    time: float
    index: int
    is_downbeat: bool
    confidence: float


class OnsetResponse(BaseModel):
    time: float
    strength: float


class SliceResponse(BaseModel):
    start: float
    end: float
    start_beat: int
    end_beat: int


class AnalysisResponse(BaseModel):
    bpm: float
    confidence: float
    time_signature: str
    beats_per_bar: int
    phase_offset: float
    beats: list[BeatResponse]
    downbeats: list[float]
    onsets: list[OnsetResponse] = []
    slices: list[SliceResponse] = []
    duration: float = 0.0
    tempo_method: str = "consensus"
    converged: bool = False
    source_type: str = "recorded"  # "recorded" or "live"


def result_to_response(
    result: AnalysisResult,
    converged: bool = False,
    source_type: str = "recorded",
) -> AnalysisResponse:
    grid = result.beat_grid
    return AnalysisResponse(
        bpm=result.bpm,
        confidence=result.confidence,
        time_signature=result.time_signature,
        beats_per_bar=grid.beats_per_bar,
        phase_offset=grid.phase_offset,
        beats=[
            BeatResponse(time=b.time, index=b.index, is_downbeat=b.is_downbeat, confidence=b.confidence)
            for b in result.beats
        ],
        downbeats=result.downbeats,
        onsets=[OnsetResponse(time=o.time, strength=o.strength) for o in result.onsets],
        slices=[
            SliceResponse(start=s.start, end=s.end, start_beat=s.start_beat, end_beat=s.end_beat)
            for s in result.slices
        ],
        duration=result.duration,
        tempo_method=result.tempo_method,
        converged=converged,
        source_type=source_type,
    )


# WebSocket message types

class WarmupProgressMessage(BaseModel):
    type: str = "warmup_progress"
    seconds: float
    total: float
    onset_count: int = 0


class AnalysisMessage(BaseModel):
    type: str = "analysis"
    data: AnalysisResponse


class TransportCommand(BaseModel):
    """Client command on the transport socket."""
    command: Literal["start", "stop", "set_bpm", "set_swing", "set_pattern", "tap", "status"]
    bpm: float | None = None
    beats_per_bar: int | None = Field(default=None, ge=1, le=16)
    count_in_bars: int = Field(default=0, ge=0, le=8)
    swing: float | None = None
    pattern: list[list[float]] | None = None
    time_ms: float | None = None
    metronome: bool | None = None
    sequencer: bool | None = None


class TransportEventMessage(BaseModel):
    type: str = "event"
    time: float
    kind: str
    payload: dict


class TapMessage(BaseModel):
    type: str = "tap"
    bpm: float | None = None
    confidence: float = 0.0
    taps: int = 0


class ErrorMessage(BaseModel):
    type: str = "error"
    message: str

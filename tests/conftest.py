"""Shared test fixtures for beat analysis and transport tests."""

import numpy as np
import pytest
from fastapi.testclient import TestClient

from beatclock.analysis.models import Signal
from beatclock.config import Settings
from beatclock.main import create_app

SR = 22050


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def client(settings):
    """FastAPI test client bound to its own settings."""
    with TestClient(create_app(settings)) as c:
        yield c


def generate_click_track(
    bpm: float,
    beats_per_bar: int,
    duration_seconds: float = 10.0,
    sr: int = SR,
    accent_ratio: float = 2.0,
    offset: float = 0.0,
) -> np.ndarray:
    """Generate a synthetic click track with accented downbeats.

    Returns mono audio at the given sample rate, peak-normalized.
    """
    n_samples = int(duration_seconds * sr)
    audio = np.zeros(n_samples, dtype=np.float32)

    beat_interval = 60.0 / bpm
    click_samples = int(0.02 * sr)  # 20ms click

    # Short sine burst with exponential decay
    t_click = np.arange(click_samples) / sr
    click = np.sin(2 * np.pi * 1000 * t_click) * np.exp(-t_click * 100)

    beat = 0
    while True:
        t = offset + beat * beat_interval
        if t >= duration_seconds:
            break
        sample_pos = int(round(t * sr))
        amplitude = accent_ratio if beat % beats_per_bar == 0 else 1.0
        end = min(sample_pos + click_samples, n_samples)
        if end > sample_pos:
            audio[sample_pos:end] += click[:end - sample_pos] * amplitude
        beat += 1

    peak = np.max(np.abs(audio))
    if peak > 0:
        audio = audio / peak
    return audio


@pytest.fixture
def click_4_4():
    """8 seconds of 4/4 at 120 BPM: 16 beats, downbeats every 2 s."""
    return Signal(generate_click_track(bpm=120, beats_per_bar=4, duration_seconds=8), SR)


@pytest.fixture
def click_3_4():
    """Click track in 3/4 at 100 BPM."""
    return Signal(generate_click_track(bpm=100, beats_per_bar=3, duration_seconds=10), SR)


@pytest.fixture
def silence():
    return Signal(np.zeros(SR * 2), SR)


class SimulatedClock:
    """Settable time source in seconds."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSink:
    """Event sink that records (time, kind, payload, now) for every event."""

    def __init__(self, clock: SimulatedClock | None = None):
        self.clock = clock
        self.events: list[tuple] = []

    def on_event(self, time, kind, payload):
        now = self.clock() if self.clock else None
        self.events.append((time, kind, payload, now))

    def times(self, kind=None) -> list[float]:
        return [e[0] for e in self.events if kind is None or e[1] == kind]

    def payloads(self, kind=None) -> list:
        return [e[2] for e in self.events if kind is None or e[1] == kind]


@pytest.fixture
def sim_clock():
    return SimulatedClock()


@pytest.fixture
def sink(sim_clock):
    return RecordingSink(sim_clock)


def run_for(clock: SimulatedClock, ticker, seconds: float, step: float = 0.025) -> None:
    """Advance simulated time, firing the ticker once per step."""
    n = int(round(seconds / step))
    for _ in range(n):
        clock.advance(step)
        ticker.fire()

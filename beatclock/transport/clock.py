"""Lookahead transport clock driving the metronome and step sequencer.

Every tick schedules all events falling inside ``now + schedule_ahead_seconds``
and hands them to the sink with their exact target time, so the sink can
place them on a sample-accurate timeline while the tick itself stays coarse.
Cursors always advance past the horizon, which keeps consecutive ticks from
overlapping or leaving gaps.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import math
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from beatclock.config import Settings
from beatclock.transport.interfaces import EventSink, PatternSource, Ticker, TimeSource
from beatclock.transport.pattern import StepTrigger
from beatclock.transport.ticker import ThreadTicker

logger = logging.getLogger(__name__)


class TransportState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class EventKind(str, Enum):
    METRONOME = "metronome"
    STEP = "step"


@dataclass(frozen=True)
class ClickPayload:
    beat_index: int
    bar: int
    accent: bool  # first beat of the bar


@dataclass(frozen=True)
class StepPayload:
    step_index: int
    nominal_time: float  # grid time before swing
    triggers: tuple[StepTrigger, ...] = ()


@dataclass(frozen=True)
class ScheduledEvent:
    time: float
    kind: EventKind
    payload: Any = field(compare=False)


class TransportClock:
    """Schedules metronome clicks and sequencer steps ahead of time.

    The clock owns no thread of its own: *ticker* calls :meth:`tick`
    periodically and *time_source* supplies "now" in seconds. Both are
    injectable so tests can drive a simulated clock deterministically.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        sink: EventSink | None = None,
        ticker: Ticker | None = None,
        time_source: TimeSource | None = None,
        pattern: PatternSource | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.sink = sink
        self.ticker = ticker or ThreadTicker()
        self.time_source = time_source or time.monotonic
        self.pattern = pattern

        self.lookahead_interval_ms = self.settings.lookahead_interval_ms
        self.schedule_ahead_seconds = self.settings.schedule_ahead_seconds
        self.bpm = self._clamp_bpm(self.settings.default_bpm)
        self.beats_per_bar = max(1, self.settings.default_beats_per_bar)
        self.steps_per_bar = max(1, self.settings.steps_per_bar)
        self.swing = 0.0
        self.metronome_enabled = True
        self.sequencer_enabled = True

        self.running = False
        self.transport_start_time: float | None = None
        self.next_click_time = 0.0
        self.next_step_time = 0.0
        self.beat_index = 0
        self.current_step = 0

        self._lock = threading.RLock()
        self._pending: list[tuple[float, int, ScheduledEvent]] = []
        self._seq = itertools.count()

    # ------------------------------------------------------------------
    # Derived timing
    # ------------------------------------------------------------------

    @property
    def state(self) -> TransportState:
        return TransportState.RUNNING if self.running else TransportState.STOPPED

    @property
    def beat_interval(self) -> float:
        return 60.0 / self.bpm

    @property
    def bar_duration(self) -> float:
        return self.beat_interval * self.beats_per_bar

    @property
    def step_interval(self) -> float:
        return self.bar_duration / self.steps_per_bar

    def next_downbeat(self, now: float) -> float:
        """First bar boundary at or after *now*, on a grid anchored at time 0."""
        bar = self.bar_duration
        return math.ceil(now / bar) * bar

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, bpm: float | None = None, beats_per_bar: int | None = None,
              count_in_bars: int = 0) -> bool:
        """Start on the next bar boundary (plus *count_in_bars*). False if already running."""
        with self._lock:
            if self.running:
                return False
            if bpm is not None:
                self.bpm = self._clamp_bpm(bpm)
            if beats_per_bar is not None:
                self.beats_per_bar = max(1, int(beats_per_bar))

            now = self.time_source()
            start = self.next_downbeat(now) + max(0, int(count_in_bars)) * self.bar_duration
            self.transport_start_time = start
            self.next_click_time = start
            self.next_step_time = start
            self.beat_index = 0
            self.current_step = 0
            self._pending.clear()
            self.running = True

            logger.info(f"Transport start at {start:.3f}s ({self.bpm} BPM, "
                        f"{self.beats_per_bar}/bar, count-in {count_in_bars})")
            self.ticker.start(self.tick, self.lookahead_interval_ms / 1000.0)
            self.tick()
            return True

    def stop(self) -> bool:
        """Stop and drop everything not yet dispatched. False if already stopped."""
        with self._lock:
            if not self.running:
                return False
            self.running = False
            self._pending.clear()
            self.transport_start_time = None
            self.next_click_time = 0.0
            self.next_step_time = 0.0
            self.beat_index = 0
            self.current_step = 0
            logger.info("Transport stopped")
        # Outside the lock: the ticker thread may be waiting on it inside tick().
        # A start() that slipped in meanwhile has already restarted the ticker.
        if not self.running:
            self.ticker.stop()
        return True

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def tick(self) -> None:
        """Schedule up to the lookahead horizon and dispatch due events."""
        with self._lock:
            if not self.running:
                return
            horizon = self.time_source() + self.schedule_ahead_seconds

            while self.next_click_time < horizon:
                if self.metronome_enabled:
                    payload = ClickPayload(
                        beat_index=self.beat_index,
                        bar=self.beat_index // self.beats_per_bar,
                        accent=self.beat_index % self.beats_per_bar == 0,
                    )
                    self._push(self.next_click_time, EventKind.METRONOME, payload)
                self.beat_index += 1
                self.next_click_time += self.beat_interval

            while self.next_step_time < horizon:
                self._schedule_step()

            self._dispatch(horizon)

    def _schedule_step(self) -> None:
        num_steps = self.pattern.num_steps if self.pattern is not None else self.steps_per_bar
        step_index = self.current_step % max(1, num_steps)
        step_interval = self.step_interval
        nominal = self.next_step_time

        if self.sequencer_enabled and self.pattern is not None:
            event_time = nominal
            if step_index % 2 == 1:
                event_time += self.swing * step_interval
            try:
                triggers = tuple(self.pattern.active_triggers(step_index))
            except Exception:
                logger.exception(f"Pattern read failed at step {step_index}")
                triggers = ()
            self._push(event_time, EventKind.STEP,
                       StepPayload(step_index=step_index, nominal_time=nominal, triggers=triggers))

        self.current_step += 1
        self.next_step_time += step_interval

    def _push(self, event_time: float, kind: EventKind, payload: Any) -> None:
        heapq.heappush(self._pending, (event_time, next(self._seq),
                                       ScheduledEvent(event_time, kind, payload)))

    def _dispatch(self, horizon: float) -> None:
        while self._pending and self._pending[0][0] < horizon:
            if not self.running:
                return
            _, _, event = heapq.heappop(self._pending)
            if self.sink is None:
                continue
            try:
                self.sink.on_event(event.time, event.kind, event.payload)
            except Exception:
                logger.exception(f"Event sink failed on {event.kind.value} at {event.time:.3f}s")

    # ------------------------------------------------------------------
    # Parameters
    # ------------------------------------------------------------------

    def _clamp_bpm(self, bpm: float) -> float:
        return float(min(self.settings.max_bpm, max(self.settings.min_bpm, bpm)))

    def set_bpm(self, bpm: float) -> float:
        """Change tempo for future advances. Returns the clamped value."""
        with self._lock:
            self.bpm = self._clamp_bpm(bpm)
            return self.bpm

    def set_swing(self, swing: float) -> float:
        with self._lock:
            self.swing = min(self.settings.max_swing, max(0.0, float(swing)))
            return self.swing

    def set_beats_per_bar(self, beats_per_bar: int) -> int:
        with self._lock:
            self.beats_per_bar = max(1, int(beats_per_bar))
            return self.beats_per_bar

    def set_metronome_enabled(self, enabled: bool) -> None:
        with self._lock:
            self.metronome_enabled = bool(enabled)

    def set_sequencer_enabled(self, enabled: bool) -> None:
        with self._lock:
            self.sequencer_enabled = bool(enabled)

    def set_pattern(self, pattern: PatternSource | None) -> None:
        with self._lock:
            self.pattern = pattern

    def status(self) -> dict:
        with self._lock:
            return {
                "state": self.state.value,
                "now": self.time_source(),
                "bpm": self.bpm,
                "beats_per_bar": self.beats_per_bar,
                "swing": self.swing,
                "steps_per_bar": self.steps_per_bar,
                "current_step": self.current_step,
                "beat_index": self.beat_index,
                "transport_start_time": self.transport_start_time,
                "next_click_time": self.next_click_time,
                "next_step_time": self.next_step_time,
                "metronome_enabled": self.metronome_enabled,
                "sequencer_enabled": self.sequencer_enabled,
                "pending": len(self._pending),
            }

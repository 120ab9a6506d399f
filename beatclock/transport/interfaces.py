"""Capabilities the transport clock is wired to."""

from __future__ import annotations

from typing import Any, Callable, Protocol, Sequence, runtime_checkable

TimeSource = Callable[[], float]


@runtime_checkable
class EventSink(Protocol):
    """Receives scheduled events with their target time in the clock's timebase."""

    def on_event(self, time: float, kind: Any, payload: Any) -> None: ...


@runtime_checkable
class PatternSource(Protocol):
    """Step pattern read at schedule time."""

    @property
    def num_steps(self) -> int: ...

    def active_triggers(self, step_index: int) -> Sequence[Any]: ...


class Ticker(Protocol):
    """Periodic callback driver.

    ``start`` arranges for *callback* to run every *interval_seconds* until
    ``stop``. Implementations never call back after ``stop`` returns.
    """

    def start(self, callback: Callable[[], None], interval_seconds: float) -> None: ...

    def stop(self) -> None: ...

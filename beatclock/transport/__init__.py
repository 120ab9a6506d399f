"""Transport subpackage: lookahead clock, tick drivers, pattern grid and tap tempo."""

from beatclock.transport.clock import (
    ClickPayload,
    EventKind,
    ScheduledEvent,
    StepPayload,
    TransportClock,
    TransportState,
)
from beatclock.transport.interfaces import EventSink, PatternSource, Ticker, TimeSource
from beatclock.transport.pattern import PatternGrid, StepTrigger
from beatclock.transport.tap_tempo import TapTempo
from beatclock.transport.ticker import AsyncioTicker, ManualTicker, ThreadTicker

__all__ = [
    "ClickPayload",
    "EventKind",
    "ScheduledEvent",
    "StepPayload",
    "TransportClock",
    "TransportState",
    "EventSink",
    "PatternSource",
    "Ticker",
    "TimeSource",
    "PatternGrid",
    "StepTrigger",
    "TapTempo",
    "AsyncioTicker",
    "ManualTicker",
    "ThreadTicker",
]

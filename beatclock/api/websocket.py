"""WebSocket endpoints: transport control and live audio analysis."""

import asyncio
import dataclasses
import json
import logging
import time
from collections import deque

import numpy as np
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from beatclock.analysis.engine import AnalysisEngine
from beatclock.analysis.onset import detect_onsets
from beatclock.api.schemas import (
    AnalysisMessage,
    ErrorMessage,
    TapMessage,
    TransportCommand,
    TransportEventMessage,
    WarmupProgressMessage,
    result_to_response,
)
from beatclock.audio.stream import StreamBuffer
from beatclock.transport import AsyncioTicker, EventKind, PatternGrid, TapTempo, TransportClock

logger = logging.getLogger(__name__)

router = APIRouter()

# Convergence parameters
_CONVERGENCE_HISTORY = 3
_CONVERGENCE_BPM_TOLERANCE = 0.03  # 3% variance


class QueueSink:
    """Event sink that hands scheduled events to an asyncio queue."""

    def __init__(self, queue: asyncio.Queue) -> None:
        self.queue = queue

    def on_event(self, time: float, kind: EventKind, payload) -> None:
        message = TransportEventMessage(
            time=time,
            kind=kind.value,
            payload=dataclasses.asdict(payload),
        )
        self.queue.put_nowait(message.model_dump())


def handle_command(clock: TransportClock, tapper: TapTempo, cmd: TransportCommand) -> dict:
    """Apply one transport command and build the reply message."""
    if cmd.metronome is not None:
        clock.set_metronome_enabled(cmd.metronome)
    if cmd.sequencer is not None:
        clock.set_sequencer_enabled(cmd.sequencer)

    if cmd.command == "start":
        clock.start(bpm=cmd.bpm, beats_per_bar=cmd.beats_per_bar, count_in_bars=cmd.count_in_bars)
    elif cmd.command == "stop":
        clock.stop()
    elif cmd.command == "set_bpm":
        if cmd.bpm is None:
            raise ValueError("set_bpm requires bpm")
        clock.set_bpm(cmd.bpm)
    elif cmd.command == "set_swing":
        if cmd.swing is None:
            raise ValueError("set_swing requires swing")
        clock.set_swing(cmd.swing)
    elif cmd.command == "set_pattern":
        clock.set_pattern(PatternGrid.from_rows(cmd.pattern) if cmd.pattern else None)
    elif cmd.command == "tap":
        estimate = tapper.tap(cmd.time_ms)
        if estimate is not None:
            clock.set_bpm(estimate.bpm)
        return TapMessage(
            bpm=estimate.bpm if estimate else None,
            confidence=estimate.confidence if estimate else 0.0,
            taps=tapper.tap_count,
        ).model_dump()

    return {"type": "status", **clock.status()}


@router.websocket("/ws/transport")
async def transport(websocket: WebSocket):
    """Metronome and sequencer transport via WebSocket.

    Protocol:
    - Client sends JSON commands: {"command": "start", "bpm": 120, ...}
    - Server sends:
      - {"type": "status", "now": T, ...} after each command; "now" is the
        server clock that event times are measured on
      - {"type": "tap", "bpm": B, "confidence": C, "taps": N}
      - {"type": "event", "time": T, "kind": "metronome"|"step", "payload": {...}}
      - {"type": "error", "message": "..."} for malformed commands
    """
    await websocket.accept()
    settings = websocket.app.state.settings

    queue: asyncio.Queue = asyncio.Queue()
    clock = TransportClock(settings, sink=QueueSink(queue), ticker=AsyncioTicker())
    tapper = TapTempo(settings)

    async def _send_events() -> None:
        while True:
            await websocket.send_json(await queue.get())

    sender = asyncio.create_task(_send_events())
    try:
        while True:
            text = await websocket.receive_text()
            try:
                cmd = TransportCommand.model_validate(json.loads(text))
                reply = handle_command(clock, tapper, cmd)
            except (ValueError, ValidationError) as e:
                reply = ErrorMessage(message=str(e)).model_dump()
            await queue.put(reply)
    except WebSocketDisconnect:
        pass
    finally:
        clock.stop()
        sender.cancel()


def _check_convergence(history: deque) -> bool:
    """Converged means BPM within 3% across the history and a stable time signature."""
    if len(history) < _CONVERGENCE_HISTORY:
        return False

    bpms = [h["bpm"] for h in history]
    if len({h["time_signature"] for h in history}) != 1:
        return False

    mean_bpm = sum(bpms) / len(bpms)
    if mean_bpm == 0:
        return False
    max_deviation = max(abs(b - mean_bpm) / mean_bpm for b in bpms)
    return max_deviation < _CONVERGENCE_BPM_TOLERANCE


@router.websocket("/ws/live")
async def live_analysis(websocket: WebSocket):
    """Live audio analysis via WebSocket.

    Protocol:
    - Client sends binary Float32 PCM chunks (mono, at the configured sample rate)
    - Server sends JSON messages:
      - {"type": "warmup_progress", "seconds": N, "total": W, "onset_count": K}
      - {"type": "analysis", "data": {...}}
    """
    await websocket.accept()
    settings = websocket.app.state.settings

    stream_buffer = StreamBuffer(
        sr=settings.sample_rate,
        max_duration=settings.stream_buffer_seconds,
    )
    engine = AnalysisEngine(settings)
    loop = asyncio.get_running_loop()
    last_analysis_time = 0.0
    onset_count = 0
    last_onset_check_duration = 0.0
    convergence_history: deque = deque(maxlen=_CONVERGENCE_HISTORY)

    try:
        while True:
            data = await websocket.receive_bytes()
            n_samples = len(data) // 4
            if n_samples == 0:
                continue
            stream_buffer.append(np.frombuffer(data[:n_samples * 4], dtype=np.float32))
            buffer_duration = stream_buffer.duration

            # Warmup: report progress and a rough onset count about once a second
            if buffer_duration < settings.warmup_seconds:
                if buffer_duration - last_onset_check_duration >= 1.0:
                    onsets = await loop.run_in_executor(
                        None, detect_onsets, stream_buffer.signal(), settings.default_sensitivity, settings,
                    )
                    onset_count = len(onsets)
                    last_onset_check_duration = buffer_duration

                await websocket.send_json(WarmupProgressMessage(
                    seconds=round(buffer_duration, 1),
                    total=settings.warmup_seconds,
                    onset_count=onset_count,
                ).model_dump())
                continue

            now = time.monotonic()
            if last_analysis_time == 0.0 or now - last_analysis_time >= settings.reanalysis_interval:
                last_analysis_time = now
                window_seconds = min(buffer_duration, settings.sliding_window_seconds)
                signal = stream_buffer.signal(last_n_seconds=window_seconds)

                result = await loop.run_in_executor(None, engine.analyze, signal)

                convergence_history.append({
                    "bpm": result.bpm,
                    "time_signature": result.time_signature,
                })
                converged = _check_convergence(convergence_history)
                response = result_to_response(result, converged=converged, source_type="live")
                await websocket.send_json(AnalysisMessage(data=response).model_dump())

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.exception("Live analysis failed")
        try:
            await websocket.send_json(ErrorMessage(message=str(e)).model_dump())
        except RuntimeError:
            pass

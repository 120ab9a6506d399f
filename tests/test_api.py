"""Tests for the HTTP and websocket API."""

import io

import numpy as np
import pytest
import soundfile as sf
from fastapi.testclient import TestClient

from beatclock.config import Settings
from beatclock.main import create_app
from tests.conftest import SR, generate_click_track


def _wav_bytes(audio: np.ndarray) -> bytes:
    buf = io.BytesIO()
    sf.write(buf, audio, SR, format="WAV")
    return buf.getvalue()


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_analyze_endpoint(client):
    audio = generate_click_track(bpm=120, beats_per_bar=4, duration_seconds=8)
    response = client.post(
        "/api/analyze",
        files={"file": ("clicks.wav", _wav_bytes(audio), "audio/wav")},
        params={"num_slices": 2, "sensitivity": 0.5},
    )
    assert response.status_code == 200
    data = response.json()
    assert abs(data["bpm"] - 120) <= 1.0
    assert data["time_signature"] == "4/4"
    assert len(data["beats"]) == 16
    assert len(data["downbeats"]) == 4
    assert len(data["slices"]) == 2
    assert data["source_type"] == "recorded"


def test_analyze_with_method(client):
    audio = generate_click_track(bpm=100, beats_per_bar=4, duration_seconds=6)
    response = client.post(
        "/api/analyze",
        files={"file": ("clicks.wav", _wav_bytes(audio), "audio/wav")},
        params={"method": "histogram"},
    )
    assert response.status_code == 200
    assert response.json()["tempo_method"] == "histogram"


def test_analyze_rejects_unsupported_format(client):
    response = client.post("/api/analyze", files={"file": ("notes.txt", b"hello", "text/plain")})
    assert response.status_code == 400


def test_analyze_rejects_undecodable_audio(client):
    response = client.post("/api/analyze", files={"file": ("broken.wav", b"not audio" * 100, "audio/wav")})
    assert response.status_code == 400


def test_analyze_rejects_empty_upload(client):
    response = client.post("/api/analyze", files={"file": ("empty.wav", b"", "audio/wav")})
    assert response.status_code == 400


def test_analyze_rejects_bad_params(client):
    audio = generate_click_track(bpm=120, beats_per_bar=4, duration_seconds=2)
    response = client.post(
        "/api/analyze",
        files={"file": ("clicks.wav", _wav_bytes(audio), "audio/wav")},
        params={"sensitivity": 3.0},
    )
    assert response.status_code == 422


def test_upload_size_limit():
    with TestClient(create_app(Settings(max_upload_mb=0))) as client:
        audio = generate_click_track(bpm=120, beats_per_bar=4, duration_seconds=1)
        response = client.post("/api/analyze", files={"file": ("clicks.wav", _wav_bytes(audio), "audio/wav")})
    assert response.status_code == 400


def _receive_until(ws, message_type: str, limit: int = 200) -> dict:
    for _ in range(limit):
        message = ws.receive_json()
        if message["type"] == message_type:
            return message
    raise AssertionError(f"no {message_type} message")


def test_transport_socket_commands(client):
    with client.websocket_connect("/api/ws/transport") as ws:
        ws.send_json({"command": "status"})
        status = ws.receive_json()
        assert status["type"] == "status"
        assert status["state"] == "stopped"
        assert isinstance(status["now"], float)

        ws.send_json({"command": "set_bpm", "bpm": 90})
        assert _receive_until(ws, "status")["bpm"] == 90

        ws.send_json({"command": "set_swing", "swing": 0.9})
        assert _receive_until(ws, "status")["swing"] == 0.5

        ws.send_json({"command": "set_pattern", "pattern": [[1, 0, 0, 0], [0, 0, 0.5, 0]]})
        assert _receive_until(ws, "status")["type"] == "status"


def test_transport_socket_start_stop(client):
    with client.websocket_connect("/api/ws/transport") as ws:
        ws.send_json({"command": "start", "bpm": 200, "beats_per_bar": 4})
        assert _receive_until(ws, "status")["state"] == "running"

        event = _receive_until(ws, "event")
        assert event["kind"] == "metronome"
        assert "beat_index" in event["payload"]

        ws.send_json({"command": "stop"})
        assert _receive_until(ws, "status")["state"] == "stopped"


def test_transport_socket_tap(client):
    with client.websocket_connect("/api/ws/transport") as ws:
        replies = []
        for t in (0, 500, 1000):
            ws.send_json({"command": "tap", "time_ms": t})
            replies.append(_receive_until(ws, "tap"))
        assert replies[0]["bpm"] is None
        assert replies[2]["bpm"] == 120.0
        assert replies[2]["taps"] == 3

        ws.send_json({"command": "status"})
        assert _receive_until(ws, "status")["bpm"] == 120.0


@pytest.mark.parametrize("raw", [
    "not json",
    '{"command": "explode"}',
    '{"command": "set_bpm"}',
    '{"command": "set_pattern", "pattern": [[1, 0], [1]]}',
])
def test_transport_socket_rejects_bad_commands(client, raw):
    with client.websocket_connect("/api/ws/transport") as ws:
        ws.send_text(raw)
        assert ws.receive_json()["type"] == "error"
        # Socket stays usable
        ws.send_json({"command": "status"})
        assert ws.receive_json()["type"] == "status"


def test_live_socket_warmup_then_analysis():
    settings = Settings(warmup_seconds=2.0, sliding_window_seconds=8.0)
    audio = generate_click_track(bpm=120, beats_per_bar=4, duration_seconds=6).astype(np.float32)
    with TestClient(create_app(settings)) as client:
        with client.websocket_connect("/api/ws/live") as ws:
            ws.send_bytes(audio[:SR].tobytes())
            warmup = ws.receive_json()
            assert warmup["type"] == "warmup_progress"
            assert warmup["seconds"] == 1.0

            ws.send_bytes(audio[SR:].tobytes())
            message = ws.receive_json()
            assert message["type"] == "analysis"
            assert message["data"]["source_type"] == "live"
            assert abs(message["data"]["bpm"] - 120) <= 1.5

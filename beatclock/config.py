"""Application configuration."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Analysis, transport and server settings with env var overrides.

    An instance is built once by the host and handed to every component;
    there is no module-level instance.
    """

    # Audio
    sample_rate: int = 22050

    # Onset detection
    onset_window_ms: float = 20.0
    onset_hop_ratio: float = 0.25
    onset_history_seconds: float = 1.0
    onset_noise_floor: float = 0.01
    onset_required_criteria: int = 2  # of energy / centroid / high-frequency
    min_onset_interval_ms: float = 50.0
    default_sensitivity: float = 0.5

    # Tempo
    min_bpm: float = 60.0
    max_bpm: float = 200.0
    default_bpm: float = 120.0
    tempo_resolution: float = 0.5  # BPM
    min_beat_interval: float = 0.2  # seconds
    max_beat_interval: float = 2.0
    min_onsets_for_tempo: int = 4
    envelope_rate: float = 100.0  # Hz, autocorrelation envelope
    refine_window_bpm: float = 5.0

    # Beat grid
    phase_subdivisions: int = 20
    phase_tolerance: float = 0.2  # fraction of a beat
    beat_match_tolerance: float = 0.15
    interpolated_beat_confidence: float = 0.3
    downbeat_window_ms: float = 50.0
    downbeat_lowpass_hz: float = 250.0
    downbeat_accent_ratio: float = 1.3
    min_group_size: int = 3
    max_group_size: int = 6
    default_beats_per_bar: int = 4

    # Transport
    lookahead_interval_ms: float = 25.0
    schedule_ahead_seconds: float = 0.1
    steps_per_bar: int = 16
    max_swing: float = 0.5

    # Tap tempo
    tap_window: int = 8
    tap_reset_ms: float = 2000.0

    # Cache
    cache_enabled: bool = False
    cache_dir: str = ".cache"

    # Live streaming
    stream_buffer_seconds: float = 60.0
    warmup_seconds: float = 4.0
    reanalysis_interval: float = 2.0
    sliding_window_seconds: float = 12.0

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    max_upload_mb: int = 50

    model_config = {"env_prefix": "BEATCLOCK_"}

"""Audio file loading utilities."""

from __future__ import annotations

from io import BytesIO
from pathlib import Path
from typing import Union

import librosa
import numpy as np


def load_audio(
    file_path_or_buffer: Union[str, Path, BytesIO],
    sr: int = 22050,
) -> tuple[np.ndarray, int]:
    """Load an audio file or buffer, resampled to *sr* and mixed down to mono.

    Raises whatever librosa/soundfile raise for unreadable input; callers at
    the HTTP boundary map that to a 400.
    """
    audio, sample_rate = librosa.load(file_path_or_buffer, sr=sr, mono=True)
    return audio.astype(np.float64), int(sample_rate)

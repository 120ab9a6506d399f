"""File upload endpoint for audio analysis."""

import asyncio
import logging
import os
import tempfile
from functools import partial

from fastapi import APIRouter, File, HTTPException, Query, Request, UploadFile

from beatclock.analysis.engine import AnalysisEngine
from beatclock.analysis.models import AnalysisOptions, Signal, TempoMethod
from beatclock.api.schemas import AnalysisResponse, result_to_response
from beatclock.audio.loader import load_audio
from beatclock.audio.preprocessing import preprocess

logger = logging.getLogger(__name__)

router = APIRouter()

ALLOWED_EXTENSIONS = {".wav", ".mp3", ".flac", ".ogg", ".m4a", ".aac", ".wma"}


@router.post("/analyze", response_model=AnalysisResponse)
async def analyze_file(
    request: Request,
    file: UploadFile = File(...),
    sensitivity: float | None = Query(default=None, ge=0.0, le=1.0),
    num_slices: int = Query(default=0, ge=0, le=64),
    method: TempoMethod = Query(default=TempoMethod.CONSENSUS),
):
    """Analyze an uploaded audio file for tempo, beats and downbeats."""
    settings = request.app.state.settings

    suffix = ""
    if file.filename and "." in file.filename:
        suffix = "." + file.filename.rsplit(".", 1)[-1].lower()
        if suffix not in ALLOWED_EXTENSIONS:
            raise HTTPException(400, f"Unsupported format. Use: {', '.join(sorted(ALLOWED_EXTENSIONS))}")

    content = await file.read()
    if not content:
        raise HTTPException(400, "Empty upload")
    if len(content) > settings.max_upload_mb * 1024 * 1024:
        raise HTTPException(400, f"File too large (max {settings.max_upload_mb} MB)")

    options = AnalysisOptions(
        sensitivity=settings.default_sensitivity if sensitivity is None else sensitivity,
        num_slices=num_slices,
        tempo_method=method,
    )
    engine = AnalysisEngine(settings, cache=request.app.state.cache)
    loop = asyncio.get_running_loop()

    # librosa needs a file path for some formats
    with tempfile.NamedTemporaryFile(suffix=suffix, delete=False) as tmp:
        tmp.write(content)
        tmp_path = tmp.name

    try:
        try:
            audio, sr = await loop.run_in_executor(None, partial(load_audio, tmp_path, sr=settings.sample_rate))
        except Exception as e:
            logger.warning(f"Could not decode upload {file.filename!r}: {e}")
            raise HTTPException(400, "Could not decode audio file")

        try:
            signal = Signal(preprocess(audio, sr), sr)
            result = await loop.run_in_executor(None, engine.analyze, signal, options)
        except Exception:
            logger.exception(f"Analysis failed for {file.filename!r}")
            raise HTTPException(500, "Analysis failed")

        return result_to_response(result)
    finally:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass

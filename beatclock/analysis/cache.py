"""Analysis result cache backed by LMDB.

Cache structure:
    .cache/analysis.lmdb/
    ├── data.mdb
    └── lock.mdb

Key format:
    analysis:{code_hash}:{options_hash}:{audio_hash}   → JSON string

The code hash covers every source file that shapes an AnalysisResult, so
editing the detector, estimator or grid builder produces a new hash and old
entries simply aren't read. Stale entries are cleaned up at startup via
prefix scan.
"""

import dataclasses
import hashlib
import json
import logging
from pathlib import Path

import lmdb

from beatclock.analysis.models import (
    AnalysisOptions,
    AnalysisResult,
    Beat,
    BeatGrid,
    Onset,
    Signal,
    Slice,
)

logger = logging.getLogger(__name__)

# LMDB map size: 1 GB virtual address space (file grows on demand).
_MAP_SIZE = 1024 * 1024 * 1024

# Source files that affect an AnalysisResult, relative to the package root.
ANALYSIS_DEPS: list[str] = [
    "analysis/onset.py",
    "analysis/tempo.py",
    "analysis/beat_grid.py",
    "analysis/engine.py",
    "analysis/models.py",
    "audio/preprocessing.py",
]


class AnalysisCache:
    """Whole-result cache for the analysis pipeline (LMDB backend)."""

    def __init__(self, cache_dir: Path | str = ".cache"):
        self.cache_dir = Path(cache_dir)
        self._code_hash = self._combined_hash(*ANALYSIS_DEPS)

        lmdb_path = self.cache_dir / "analysis.lmdb"
        lmdb_path.mkdir(parents=True, exist_ok=True)
        self._env = lmdb.open(
            str(lmdb_path),
            map_size=_MAP_SIZE,
            max_dbs=0,
            readahead=False,
        )

        self._cleanup_stale_entries()

    # ------------------------------------------------------------------
    # Keys and hashing
    # ------------------------------------------------------------------

    def _key(self, audio_hash: str, options: AnalysisOptions) -> bytes:
        return f"analysis:{self._code_hash}:{options_hash(options)}:{audio_hash}".encode()

    @staticmethod
    def audio_hash(signal: Signal) -> str:
        """Content hash of a signal's samples and sample rate -> 16 hex chars."""
        h = hashlib.sha256()
        h.update(str(signal.sample_rate).encode("ascii"))
        h.update(signal.samples.tobytes())
        return h.hexdigest()[:16]

    @staticmethod
    def _combined_hash(*rel_paths: str) -> str:
        """SHA-256 of concatenated source files -> 12 hex chars."""
        h = hashlib.sha256()
        for rp in sorted(rel_paths):
            p = _package_root() / rp
            if p.exists():
                h.update(p.read_bytes())
        return h.hexdigest()[:12]

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def load(self, audio_hash: str, options: AnalysisOptions) -> AnalysisResult | None:
        """Load a cached result. Returns None on miss or unreadable entry."""
        with self._env.begin() as txn:
            data = txn.get(self._key(audio_hash, options))
        if data is None:
            return None
        try:
            return result_from_dict(json.loads(data))
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            logger.warning(f"Discarding unreadable cache entry for {audio_hash}: {e}")
            return None

    def save(self, audio_hash: str, options: AnalysisOptions, result: AnalysisResult) -> None:
        with self._env.begin(write=True) as txn:
            txn.put(self._key(audio_hash, options), json.dumps(result_to_dict(result)).encode())

    def __len__(self) -> int:
        return self._env.stat()["entries"]

    # ------------------------------------------------------------------
    # Stale entry cleanup
    # ------------------------------------------------------------------

    def _cleanup_stale_entries(self) -> None:
        """Remove LMDB entries whose code hash doesn't match current source."""
        if self._env.stat()["entries"] == 0:
            return

        valid_prefix = f"analysis:{self._code_hash}:".encode()
        with self._env.begin(write=True) as txn:
            cursor = txn.cursor()
            stale = [key for key, _ in cursor if not key.startswith(valid_prefix)]
            for key in stale:
                txn.delete(key)

        if stale:
            logger.info("LMDB cleanup: removed %d stale entries", len(stale))

    def close(self) -> None:
        """Close the LMDB environment."""
        if self._env:
            self._env.close()
            self._env = None


# ======================================================================
# Module-level helpers
# ======================================================================

def _package_root() -> Path:
    return Path(__file__).resolve().parent.parent


def options_hash(options: AnalysisOptions) -> str:
    return hashlib.sha256(options.cache_token().encode()).hexdigest()[:12]


def result_to_dict(result: AnalysisResult) -> dict:
    """JSON-ready form of a result. The grid carries the beats once."""
    data = dataclasses.asdict(result)
    data.pop("beats")
    data.pop("downbeats")
    return data


def result_from_dict(data: dict) -> AnalysisResult:
    grid_data = dict(data["beat_grid"])
    beats = [Beat(**b) for b in grid_data.pop("beats")]
    grid = BeatGrid(beats=beats, **grid_data)
    return AnalysisResult(
        bpm=data["bpm"],
        confidence=data["confidence"],
        beats=beats,
        downbeats=grid.downbeats,
        onsets=[Onset(**o) for o in data["onsets"]],
        time_signature=data["time_signature"],
        beat_grid=grid,
        slices=[Slice(**s) for s in data.get("slices", [])],
        duration=data.get("duration", 0.0),
        tempo_method=data.get("tempo_method", "consensus"),
    )

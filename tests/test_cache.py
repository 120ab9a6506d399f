"""Tests for the LMDB analysis cache."""

import numpy as np
import pytest

from beatclock.analysis.cache import AnalysisCache, result_from_dict, result_to_dict
from beatclock.analysis.engine import AnalysisEngine
from beatclock.analysis.models import AnalysisOptions, Signal
from tests.conftest import SR


@pytest.fixture
def cache(tmp_path):
    c = AnalysisCache(tmp_path)
    yield c
    c.close()


@pytest.fixture
def result(click_4_4):
    return AnalysisEngine().analyze(click_4_4, AnalysisOptions(num_slices=2))


def test_miss_returns_none(cache):
    assert cache.load("0" * 16, AnalysisOptions()) is None


def test_save_and_load(cache, click_4_4, result):
    ah = AnalysisCache.audio_hash(click_4_4)
    options = AnalysisOptions(num_slices=2)
    cache.save(ah, options, result)

    loaded = cache.load(ah, options)
    assert loaded.bpm == result.bpm
    assert loaded.time_signature == result.time_signature
    assert loaded.beat_grid.phase_offset == result.beat_grid.phase_offset
    assert loaded.beats == result.beats
    assert loaded.downbeats == result.downbeats
    assert loaded.slices == result.slices
    assert len(loaded.onsets) == len(result.onsets)


def test_options_are_part_of_key(cache, click_4_4, result):
    ah = AnalysisCache.audio_hash(click_4_4)
    cache.save(ah, AnalysisOptions(num_slices=2), result)
    assert cache.load(ah, AnalysisOptions(num_slices=3)) is None
    assert cache.load(ah, AnalysisOptions(num_slices=2, sensitivity=0.7)) is None


def test_audio_hash_tracks_content():
    a = Signal(np.zeros(100), SR)
    b = Signal(np.zeros(100), SR)
    c = Signal(np.ones(100), SR)
    d = Signal(np.zeros(100), 44100)
    assert AnalysisCache.audio_hash(a) == AnalysisCache.audio_hash(b)
    assert AnalysisCache.audio_hash(a) != AnalysisCache.audio_hash(c)
    assert AnalysisCache.audio_hash(a) != AnalysisCache.audio_hash(d)


def test_stale_entries_removed_on_open(tmp_path, click_4_4, result):
    cache = AnalysisCache(tmp_path)
    ah = AnalysisCache.audio_hash(click_4_4)
    cache.save(ah, AnalysisOptions(num_slices=2), result)
    with cache._env.begin(write=True) as txn:
        txn.put(b"analysis:oldcodehash:opts:" + ah.encode(), b"{}")
    assert len(cache) == 2
    cache.close()

    reopened = AnalysisCache(tmp_path)
    try:
        assert len(reopened) == 1
        assert reopened.load(ah, AnalysisOptions(num_slices=2)) is not None
    finally:
        reopened.close()


def test_dict_round_trip(result):
    restored = result_from_dict(result_to_dict(result))
    assert restored.beats == result.beats
    assert restored.beat_grid.beats_per_bar == result.beat_grid.beats_per_bar
    assert "beats" not in result_to_dict(result)

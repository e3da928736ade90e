import sys
from pathlib import Path

import numpy as np

sys.path.append(str(Path(__file__).resolve().parents[1]))

from svtdenoise.core.filters import median_filter, correct_hot_pixels
from svtdenoise.core.multiproc import ParallelExecutor
from svtdenoise.core.preprocessing import preprocess_sequence


def _flat_with_spike(frames=3, shape=(12, 12)):
    seq = np.full((frames,) + shape, 10.0)
    seq[1, 5, 6] = 1000.0
    return seq


def test_median_filter_removes_impulse():
    frame = np.zeros((9, 9))
    frame[4, 4] = 50.0
    out = median_filter(frame, 3)
    assert out.shape == frame.shape
    assert out[4, 4] == 0.0


def test_median_filter_size_one_copies():
    frame = np.arange(16, dtype=float).reshape(4, 4)
    out = median_filter(frame, 1)
    assert np.array_equal(out, frame)
    assert out is not frame


def test_hot_pixel_replaced_in_place():
    seq = _flat_with_spike()
    count = correct_hot_pixels(seq, 5.0, ParallelExecutor(2))
    assert count == 1
    assert seq[1, 5, 6] == 10.0
    assert np.all(seq == 10.0)


def test_hot_pixel_threshold_zero_disables():
    seq = _flat_with_spike()
    assert correct_hot_pixels(seq, 0.0) == 0
    assert seq[1, 5, 6] == 1000.0


def test_hot_pixel_keeps_noise():
    rng = np.random.default_rng(0)
    seq = rng.normal(100.0, 5.0, size=(2, 32, 32))
    seq[0, 10, 10] = 400.0
    before = seq.copy()
    correct_hot_pixels(seq, 10.0)
    assert seq[0, 10, 10] < 200.0
    # ordinary samples are untouched
    changed = seq != before
    assert changed.sum() <= 3


def test_preprocess_leaves_raw_untouched():
    raw = _flat_with_spike()
    raw_before = raw.copy()
    corrected, filtered = preprocess_sequence(raw, 3, 5.0, ParallelExecutor(2))
    assert np.array_equal(raw, raw_before)
    assert corrected.shape == filtered.shape == raw.shape
    assert corrected[1, 5, 6] == 10.0
    assert filtered[1, 5, 6] == 10.0

import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from svtdenoise.core.windows import window_for, normalize


@pytest.mark.parametrize(
    "t, start, local",
    [(0, 0, 0), (1, 0, 1), (2, 0, 2), (4, 2, 2), (7, 5, 2), (8, 5, 3), (9, 5, 4)],
)
def test_window_for_ten_frames_length_five(t, start, local):
    assert window_for(t, 10, 5) == (start, local)


@pytest.mark.parametrize("num_frames", [1, 2, 5, 9, 16])
@pytest.mark.parametrize("length", [1, 2, 3, 4, 5])
def test_windows_cover_exactly_length_frames(num_frames, length):
    if length > num_frames:
        pytest.skip("window longer than sequence")
    half = length // 2
    for t in range(num_frames):
        start, local = window_for(t, num_frames, length)
        assert 0 <= start <= num_frames - length
        assert 0 <= local < length
        assert start + local == t
        if t < half:
            assert start == 0
        elif t >= num_frames - half:
            assert start == num_frames - length


def test_normalize_scales_to_unit_max():
    win = np.array([[[0.0, 2.0], [4.0, 8.0]]])
    scaled, scale = normalize(win)
    assert scale == 8.0
    assert scaled.max() == 1.0
    assert scaled.min() == 0.0


def test_normalize_blank_window_is_noop():
    win = np.zeros((3, 4, 4))
    scaled, scale = normalize(win)
    assert scale == 1.0
    assert np.array_equal(scaled, win)
    assert np.isfinite(scaled).all()
    assert scaled is not win

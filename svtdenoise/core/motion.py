from __future__ import annotations
from dataclasses import dataclass
import logging
import numpy as np

from .windows import window_for

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MotionField:
    """Per-patch displacements of a window relative to its reference frame.

    ``displacements[k, y, x]`` holds the ``(dy, dx)`` offset of the patch whose
    top-left corner is ``(y, x)`` in the reference frame, as found in frame
    ``k`` of the window.
    """

    displacements: np.ndarray
    patch_size: int
    reference_index: int

    @property
    def num_frames(self) -> int:
        return int(self.displacements.shape[0])


def _block_sums(img: np.ndarray, size: int) -> np.ndarray:
    """Sums over every ``size x size`` block, indexed by top-left corner."""
    integral = np.zeros((img.shape[0] + 1, img.shape[1] + 1), dtype=np.float64)
    integral[1:, 1:] = img.cumsum(axis=0).cumsum(axis=1)
    return (
        integral[size:, size:]
        - integral[:-size, size:]
        - integral[size:, :-size]
        + integral[:-size, :-size]
    )


def _search_offsets(radius: int) -> list[tuple[int, int]]:
    offsets = [
        (dy, dx)
        for dy in range(-radius, radius + 1)
        for dx in range(-radius, radius + 1)
    ]
    # Nearest offsets first so that ties keep the smallest displacement.
    offsets.sort(key=lambda o: (abs(o[0]) + abs(o[1]), abs(o[0]), o))
    return offsets


def match_patches(
    ref: np.ndarray, frame: np.ndarray, patch_size: int, radius: int
) -> np.ndarray:
    """Best integer displacement of every reference patch inside ``frame``.

    Returns an ``int`` array of shape ``(H-P+1, W-P+1, 2)``.
    """

    h, w = ref.shape
    ny, nx = h - patch_size + 1, w - patch_size + 1
    best_cost = np.full((ny, nx), np.inf)
    best = np.zeros((ny, nx, 2), dtype=np.int64)

    for dy, dx in _search_offsets(radius):
        if abs(dy) >= h or abs(dx) >= w:
            continue
        # Overlap of ref[y, x] with frame[y + dy, x + dx]
        ry0, ry1 = max(0, -dy), min(h, h - dy)
        rx0, rx1 = max(0, -dx), min(w, w - dx)
        if ry1 - ry0 < patch_size or rx1 - rx0 < patch_size:
            continue
        diff = np.abs(
            ref[ry0:ry1, rx0:rx1] - frame[ry0 + dy:ry1 + dy, rx0 + dx:rx1 + dx]
        )
        sums = _block_sums(diff, patch_size)
        cost = np.full((ny, nx), np.inf)
        # Origins whose displaced patch leaves the frame keep an infinite cost.
        cost[ry0:ry0 + sums.shape[0], rx0:rx0 + sums.shape[1]] = sums
        better = cost < best_cost
        best_cost[better] = cost[better]
        best[better] = (dy, dx)
    return best


def estimate_motion(
    window: np.ndarray,
    frame_index: int,
    half_window: int,
    num_frames: int,
    patch_size: int,
    search_radius: int,
) -> MotionField:
    """Block-matching motion estimate for every patch of the target frame.

    Parameters
    ----------
    window:
        Normalised filtered window of shape ``(T, height, width)``.
    frame_index:
        Index of the target frame in the full sequence.
    half_window:
        ``T // 2``; kept for callers that track it separately.
    num_frames:
        Number of frames in the full sequence.
    patch_size:
        Side length of a square patch.
    search_radius:
        Largest displacement searched along each axis.
    """

    length = window.shape[0]
    _, ref_idx = window_for(frame_index, num_frames, length)
    if half_window != length // 2:
        logger.debug(
            "Frame %d: half window %d differs from window length %d",
            frame_index,
            half_window,
            length,
        )
    h, w = window.shape[1:]
    ref = np.asarray(window[ref_idx], dtype=np.float64)
    disp = np.zeros((length, h - patch_size + 1, w - patch_size + 1, 2), dtype=np.int64)
    for k in range(length):
        if k == ref_idx or search_radius <= 0:
            continue
        disp[k] = match_patches(
            ref, np.asarray(window[k], dtype=np.float64), patch_size, search_radius
        )
    return MotionField(disp, patch_size, ref_idx)

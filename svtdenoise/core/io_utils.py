from __future__ import annotations
from pathlib import Path
from typing import List
import logging
import numpy as np
import cv2
import re

logger = logging.getLogger(__name__)

SUPPORTED_EXTS = {".png",".tif",".tiff",".bmp"}

def discover_images(folder: Path, numeric_sort: bool=True) -> list[Path]:
    paths = []
    for ext in SUPPORTED_EXTS:
        paths.extend(sorted(folder.glob(f"*{ext}")))
    if numeric_sort:
        def key(p: Path):
            nums = re.findall(r"\d+", p.name)
            return tuple(int(n) for n in nums) if nums else (float("inf"), p.name)
        paths = sorted(paths, key=key)
    else:
        paths = sorted(paths, key=lambda p: p.name)
    return paths

def imread_raw(path: Path) -> np.ndarray:
    """Read an image as grayscale, keeping its original bit depth."""
    img = cv2.imdecode(np.fromfile(str(path), dtype=np.uint8), cv2.IMREAD_UNCHANGED)
    if img is None:
        raise ValueError(f"Failed to read {path}")
    if img.ndim == 3:
        img = cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)
    return img

def read_stack(paths: List[Path]) -> np.ndarray:
    """Read frames into a float64 array of shape ``(frames, height, width)``."""
    if not paths:
        raise ValueError("No frames to read")
    frames = [imread_raw(p) for p in paths]
    shape = frames[0].shape
    for p, f in zip(paths, frames):
        if f.shape != shape:
            raise ValueError(f"Frame {p.name} has shape {f.shape}, expected {shape}")
    logger.info("Loaded %d frames of %dx%d (%s)", len(frames), shape[1], shape[0], frames[0].dtype)
    return np.stack(frames, axis=0).astype(np.float64)

def write_stack(stack: np.ndarray, out_dir: Path, dtype=np.uint16) -> list[Path]:
    """Write each frame of ``stack`` as ``frame_XXXX.tif``, clipped to ``dtype``."""
    ensure_dir(out_dir)
    info = np.iinfo(dtype)
    paths = []
    for i, frame in enumerate(stack):
        img = np.clip(np.rint(frame), info.min, info.max).astype(dtype)
        path = out_dir / f"frame_{i:04d}.tif"
        ok, buf = cv2.imencode(".tif", img)
        if not ok:
            raise ValueError(f"Failed to encode {path}")
        buf.tofile(str(path))
        paths.append(path)
    return paths

def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)

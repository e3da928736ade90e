from __future__ import annotations
from dataclasses import dataclass, asdict, field, fields
from typing import Optional, Dict, Any, Union
import json
import logging
from PyQt6.QtCore import QSettings

from ..core.errors import ConfigurationError
from ..core.noise import NoiseParams

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FixedThreshold:
    lam: float = 0.5  # singular value cutoff, normalised scale


@dataclass(frozen=True)
class AdaptiveThreshold:
    tolerance: float = 1e-7
    max_evaluations: int = 1000


ThresholdMode = Union[FixedThreshold, AdaptiveThreshold]


@dataclass
class DenoiseParams:
    patch_size: int = 4
    patch_overlap: int = 2
    window_length: int = 15  # frames per temporal window (T)
    threshold: ThresholdMode = field(default_factory=AdaptiveThreshold)
    noise: NoiseParams = field(default_factory=NoiseParams)  # gain, offset, sigma in normalised [0, 1] units
    noise_bins: int = 4
    noise_method: str = "regression"  # "regression" | "gaussian"
    search_radius: int = 7  # motion search, pixels
    median_size: int = 5
    hot_pixel_threshold: float = 10.0  # robust std devs; <= 0 disables
    workers: Optional[int] = None  # None -> all cores
    random_seed: int = 0
    warm_start: bool = True

    @property
    def adaptive(self) -> bool:
        return isinstance(self.threshold, AdaptiveThreshold)

    def validate(self, num_frames: int, height: int, width: int) -> None:
        """Raise :class:`ConfigurationError` if these parameters cannot run."""

        problems = []
        if min(num_frames, height, width) <= 0:
            problems.append(f"invalid dimensions {width}x{height}x{num_frames}")
        if self.window_length <= 0:
            problems.append(f"window length must be positive, got {self.window_length}")
        elif self.window_length > num_frames:
            problems.append(
                f"window length {self.window_length} exceeds frame count {num_frames}"
            )
        if self.workers is not None and self.workers <= 0:
            problems.append(f"thread count must be positive, got {self.workers}")
        if self.patch_size <= 0 or self.patch_size > min(height, width):
            problems.append(f"patch size {self.patch_size} does not fit {width}x{height}")
        if not 0 <= self.patch_overlap < self.patch_size:
            problems.append(
                f"patch overlap {self.patch_overlap} must be in [0, {self.patch_size})"
            )
        if self.search_radius < 0:
            problems.append(f"search radius must be >= 0, got {self.search_radius}")
        if self.median_size <= 0 or self.median_size % 2 == 0:
            problems.append(f"median size must be a positive odd number, got {self.median_size}")
        if self.noise_bins <= 0:
            problems.append(f"noise bins must be positive, got {self.noise_bins}")
        if self.noise_method not in ("regression", "gaussian"):
            problems.append(f"unknown noise method {self.noise_method!r}")
        if isinstance(self.threshold, FixedThreshold):
            if self.threshold.lam < 0:
                problems.append(f"fixed lambda must be >= 0, got {self.threshold.lam}")
        elif isinstance(self.threshold, AdaptiveThreshold):
            if self.threshold.tolerance <= 0:
                problems.append(f"tolerance must be positive, got {self.threshold.tolerance}")
            if self.threshold.max_evaluations < 0:
                problems.append("max evaluations must be >= 0")
        else:
            problems.append(f"unknown threshold mode {self.threshold!r}")
        if problems:
            msg = "Invalid denoising parameters: " + "; ".join(problems)
            logger.error(msg)
            raise ConfigurationError(msg)


def params_to_dict(params: DenoiseParams) -> Dict[str, Any]:
    data = asdict(params)
    kind = "adaptive" if params.adaptive else "fixed"
    data["threshold"] = {"kind": kind, **asdict(params.threshold)}
    return data


def _known_fields(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


def params_from_dict(data: Dict[str, Any]) -> DenoiseParams:
    data = dict(data)
    known = {f.name for f in fields(DenoiseParams)}
    for key in list(data):
        if key not in known:
            data.pop(key)
    thr = dict(data.pop("threshold", None) or {"kind": "adaptive"})
    mode = FixedThreshold if thr.pop("kind", "adaptive") == "fixed" else AdaptiveThreshold
    data["threshold"] = mode(**_known_fields(mode, thr))
    data["noise"] = NoiseParams(**_known_fields(NoiseParams, data.get("noise") or {}))
    return DenoiseParams(**data)


def save_preset(path: str, params: DenoiseParams) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(params_to_dict(params), f, indent=2)


def load_preset(path: str) -> DenoiseParams:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return params_from_dict(data)


def save_settings(params: DenoiseParams) -> None:
    s = QSettings("YeastLab", "SvtDenoise")
    s.setValue("params", json.dumps(params_to_dict(params)))
    s.sync()


def load_settings() -> DenoiseParams:
    s = QSettings("YeastLab", "SvtDenoise")
    v = s.value("params")
    if v is None:
        return DenoiseParams()
    try:
        return params_from_dict(json.loads(v))
    except (TypeError, ValueError) as e:
        logger.warning("Ignoring stored settings: %s", e)
        return DenoiseParams()

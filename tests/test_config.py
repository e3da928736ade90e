import json
import os
import sys
from pathlib import Path

import pytest

pytest.importorskip("PyQt6")
from PyQt6.QtCore import QSettings

sys.path.append(str(Path(__file__).resolve().parents[1]))

from svtdenoise.core.errors import ConfigurationError
from svtdenoise.core.noise import NoiseParams
from svtdenoise.models.config import (
    AdaptiveThreshold,
    DenoiseParams,
    FixedThreshold,
    load_preset,
    load_settings,
    save_preset,
    save_settings,
)


def test_defaults_are_adaptive_and_valid():
    params = DenoiseParams()
    assert params.adaptive
    assert params.threshold.max_evaluations == 1000
    params.validate(20, 64, 64)


def test_preset_keeps_threshold_mode(tmp_path):
    preset = tmp_path / "preset.json"
    params = DenoiseParams(
        window_length=7,
        threshold=FixedThreshold(0.25),
        noise=NoiseParams(gain=0.3, offset=0.01, sigma=0.02),
        workers=3,
    )
    save_preset(str(preset), params)
    data = json.loads(preset.read_text())
    assert data["threshold"] == {"kind": "fixed", "lam": 0.25}
    loaded = load_preset(str(preset))
    assert loaded == params
    assert not loaded.adaptive


def test_preset_tolerates_old_and_missing_keys(tmp_path):
    preset = tmp_path / "old.json"
    preset.write_text(json.dumps({"window_length": 9, "obsolete": True}))
    loaded = load_preset(str(preset))
    assert loaded.window_length == 9
    assert loaded.threshold == AdaptiveThreshold()
    assert loaded.noise == NoiseParams()


def test_preset_drops_unknown_nested_keys(tmp_path):
    preset = tmp_path / "nested.json"
    preset.write_text(
        json.dumps(
            {
                "threshold": {"kind": "fixed", "lam": 0.1, "tolerance": 1e-3},
                "noise": {"gain": 0.2, "alpha": 3.0},
            }
        )
    )
    loaded = load_preset(str(preset))
    assert loaded.threshold == FixedThreshold(0.1)
    assert loaded.noise == NoiseParams(gain=0.2)


def test_validate_collects_problems(caplog):
    params = DenoiseParams(window_length=0, workers=0)
    with pytest.raises(ConfigurationError) as info:
        params.validate(5, 32, 32)
    msg = str(info.value)
    assert "window length" in msg
    assert "thread count" in msg
    assert "Invalid denoising parameters" in caplog.text


def test_window_longer_than_sequence():
    with pytest.raises(ValueError):
        DenoiseParams(window_length=15).validate(10, 32, 32)


def test_settings_persist(tmp_path):
    os.environ["QT_QPA_PLATFORM"] = "offscreen"
    QSettings.setDefaultFormat(QSettings.Format.IniFormat)
    QSettings.setPath(QSettings.Format.IniFormat, QSettings.Scope.UserScope, str(tmp_path))

    s = QSettings("YeastLab", "SvtDenoise")
    s.clear()
    s.sync()
    assert load_settings() == DenoiseParams()

    params = DenoiseParams(patch_size=6, threshold=AdaptiveThreshold(tolerance=1e-5))
    save_settings(params)
    assert load_settings() == params

    s.setValue("params", "{not json")
    s.sync()
    assert load_settings() == DenoiseParams()

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import cv2
import pytest

pytest.importorskip("PyQt6.QtCore")

sys.path.append(str(Path(__file__).resolve().parents[1]))

from svtdenoise.workers.pipeline_worker import DenoiseWorker
from svtdenoise.models.config import DenoiseParams, FixedThreshold
from svtdenoise import main as cli


def create_frames(tmp_path, n=4, shape=(12, 12)):
    rng = np.random.default_rng(0)
    base = rng.integers(200, 3000, size=shape)
    paths = []
    for i in range(n):
        img = np.clip(base + rng.normal(0, 50, size=shape), 0, 65535).astype(np.uint16)
        p = tmp_path / f"img_{i}.png"
        cv2.imwrite(str(p), img)
        paths.append(p)
    return paths


def _params(**kw):
    base = dict(window_length=3, threshold=FixedThreshold(0.05), search_radius=1, workers=1)
    base.update(kw)
    return DenoiseParams(**base)


def test_worker_writes_frames_and_summary(tmp_path):
    paths = create_frames(tmp_path)
    out_dir = tmp_path / "out"
    worker = DenoiseWorker(paths, _params(), out_dir)

    captured = {"progress": []}
    worker.progressed.connect(lambda d, t: captured["progress"].append((d, t)))
    worker.finished.connect(lambda path: captured.setdefault("finished", path))
    worker.failed.connect(lambda msg: captured.setdefault("failed", msg))

    worker.run()

    assert "failed" not in captured
    assert captured["finished"] == str(out_dir)
    assert captured["progress"][0] == (0, 4)
    assert captured["progress"][-1] == (4, 4)
    frames = sorted((out_dir / "denoised").glob("*.tif"))
    assert len(frames) == 4
    img = cv2.imread(str(frames[0]), cv2.IMREAD_UNCHANGED)
    assert img.shape == (12, 12)
    assert img.dtype == np.uint16
    df = pd.read_csv(out_dir / "summary.csv")
    assert df["frame_index"].tolist() == [0, 1, 2, 3]


def test_worker_emits_failed_on_invalid_window(tmp_path):
    paths = create_frames(tmp_path, n=2)
    worker = DenoiseWorker(paths, _params(window_length=5), tmp_path / "out")

    captured = {}
    worker.failed.connect(lambda msg: captured.setdefault("failed", msg))
    worker.finished.connect(lambda path: captured.setdefault("finished", path))

    worker.run()

    assert "window length" in captured["failed"].lower()
    assert "finished" not in captured


def test_cli_runs_on_folder(tmp_path):
    create_frames(tmp_path, n=3)
    out_dir = tmp_path / "out"
    code = cli.main(
        [
            str(tmp_path),
            str(out_dir),
            "--window-length",
            "3",
            "--fixed-lambda",
            "0.05",
            "--workers",
            "1",
        ]
    )
    assert code == 0
    assert (out_dir / "summary.csv").exists()
    assert len(list((out_dir / "denoised").glob("*.tif"))) == 3


def test_cli_uses_preset(tmp_path):
    from svtdenoise.models.config import save_preset

    preset = tmp_path / "p.json"
    save_preset(str(preset), _params(window_length=5))
    args = cli.build_parser().parse_args(["in", "out", "--preset", str(preset), "--workers", "2"])
    params = cli.params_from_args(args)
    assert params.window_length == 5
    assert params.workers == 2
    assert not params.adaptive


def test_cli_fails_on_empty_folder(tmp_path):
    assert cli.main([str(tmp_path), str(tmp_path / "out")]) == 1

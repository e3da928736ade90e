from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path

from .core.io_utils import discover_images
from .models.config import DenoiseParams, FixedThreshold, load_preset
from .workers.pipeline_worker import DenoiseWorker

logger = logging.getLogger(__name__)

def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="svtdenoise",
        description="Denoise a time-lapse image sequence with windowed SVT.",
    )
    p.add_argument("input", type=Path, help="folder of frames")
    p.add_argument("output", type=Path, help="output folder")
    p.add_argument("--preset", type=Path, help="JSON preset with denoising parameters")
    p.add_argument("--workers", type=int, help="worker threads (default: all cores)")
    p.add_argument("--window-length", type=int, help="frames per temporal window")
    p.add_argument("--fixed-lambda", type=float, help="use this threshold instead of searching")
    p.add_argument("-v", "--verbose", action="store_true", help="log every frame")
    return p

def params_from_args(args: argparse.Namespace) -> DenoiseParams:
    params = load_preset(str(args.preset)) if args.preset else DenoiseParams()
    if args.workers is not None:
        params = replace(params, workers=args.workers)
    if args.window_length is not None:
        params = replace(params, window_length=args.window_length)
    if args.fixed_lambda is not None:
        params = replace(params, threshold=FixedThreshold(args.fixed_lambda))
    return params

def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    paths = discover_images(args.input)
    if not paths:
        logger.error("No images found in %s", args.input)
        return 1

    worker = DenoiseWorker(paths, params_from_args(args), args.output)
    errors: list[str] = []
    worker.failed.connect(errors.append)
    worker.run()
    return 1 if errors else 0

if __name__ == "__main__":
    sys.exit(main())

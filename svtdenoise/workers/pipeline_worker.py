from __future__ import annotations
import logging
from pathlib import Path

from PyQt6.QtCore import QObject, pyqtSignal

from ..core.processing import denoise_sequence
from ..core.io_utils import ensure_dir, read_stack, write_stack
from ..models.config import DenoiseParams

logger = logging.getLogger(__name__)


class DenoiseWorker(QObject):
    progressed = pyqtSignal(int, int)  # frames done, total
    finished = pyqtSignal(str)         # output dir
    failed = pyqtSignal(str)

    def __init__(self, paths: list[Path], params: DenoiseParams, out_dir: Path):
        super().__init__()
        self.paths = paths
        self.params = params
        self.out_dir = out_dir

    def run(self):
        try:
            logger.info("Starting denoising for %d paths into %s", len(self.paths), self.out_dir)
            ensure_dir(self.out_dir)

            raw = read_stack(self.paths)
            self.progressed.emit(0, raw.shape[0])

            clean, df = denoise_sequence(raw, self.params, progress=self.progressed.emit)
            write_stack(clean, self.out_dir / "denoised")
            df.to_csv(self.out_dir / "summary.csv", index=False)

            self.finished.emit(str(self.out_dir))
            logger.info("Processing finished: %s", self.out_dir)
        except Exception as e:
            logger.exception("Processing failed")
            self.failed.emit(str(e))

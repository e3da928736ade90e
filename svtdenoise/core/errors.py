from __future__ import annotations


class DenoiseError(Exception):
    """Base exception for svtdenoise."""


class ConfigurationError(DenoiseError, ValueError):
    """Invalid parameters or sequence dimensions, raised before any work starts."""


class TaskFailure(DenoiseError, RuntimeError):
    """An exception escaped a task run by :class:`ParallelExecutor`.

    The original exception is available as ``__cause__``.
    """

    def __init__(self, index: int, message: str):
        super().__init__(f"Task {index} failed: {message}")
        self.index = index

from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor, Future
import logging
import multiprocessing as mp
import threading
from typing import Any, Callable, List

from .errors import TaskFailure

logger = logging.getLogger(__name__)


def cpu_count() -> int:
    try:
        return mp.cpu_count()
    except NotImplementedError:
        return 4


class ParallelExecutor:
    """Run an index-addressed task over a fixed range of integers.

    Every index is visited exactly once and :meth:`run` returns only after all
    invocations finished. Tasks must write to disjoint state; no ordering is
    guaranteed between indices.

    Parameters
    ----------
    workers:
        Number of concurrent workers. ``None`` uses :func:`cpu_count`.
    """

    def __init__(self, workers: int | None = None):
        self.workers = cpu_count() if workers is None else int(workers)

    def run(
        self,
        task: Callable[[int], Any],
        start: int,
        end: int,
        threshold: int = 1,
    ) -> None:
        n = end - start
        if n <= 0:
            return
        cores = self.workers
        abort = threading.Event()

        def _call(i: int) -> None:
            try:
                task(i)
            except TaskFailure:
                abort.set()
                raise
            except Exception as e:
                abort.set()
                raise TaskFailure(i, str(e)) from e

        def _slice(first: int, last: int) -> None:
            for i in range(first, last):
                if abort.is_set():
                    return
                _call(i)

        # Small or serial jobs stay on the calling thread.
        if cores <= 1 or n <= threshold:
            logger.debug("Running %d tasks sequentially", n)
            _slice(start, end)
            return

        futures: List[Future] = []
        if n <= cores:
            logger.debug("Running %d tasks on %d threads", n, n)
            with ThreadPoolExecutor(max_workers=n) as pool:
                futures = [pool.submit(_call, i) for i in range(start, end)]
            self._raise_first(futures)
            return

        per_thread = (n + cores - 1) // cores
        logger.debug(
            "Running %d tasks in chunks of %d on %d threads", n, per_thread, cores
        )
        with ThreadPoolExecutor(max_workers=cores - 1) as pool:
            for k in range(cores - 1):
                first = min(start + per_thread * k, end)
                last = min(first + per_thread, end)
                futures.append(pool.submit(_slice, first, last))
            # The last chunk runs here; leaving the block joins the pool.
            _slice(min(start + per_thread * (cores - 1), end), end)
        self._raise_first(futures)

    def map(
        self,
        func: Callable[[int], Any],
        start: int,
        end: int,
        threshold: int = 1,
    ) -> list:
        """Collect ``func(i)`` for every index into a list ordered by index."""
        results: list = [None] * max(end - start, 0)

        def _store(i: int) -> None:
            results[i - start] = func(i)

        self.run(_store, start, end, threshold)
        return results

    @staticmethod
    def _raise_first(futures: List[Future]) -> None:
        failures = [f.exception() for f in futures if f.exception() is not None]
        if failures:
            raise failures[0]

"""
Concurrent batch analysis.

Files are analyzed on a bounded thread pool.  At most ``2 * jobs`` files are
in flight at any time; new files are submitted as earlier ones complete.
Results land in a slot per input index, so the returned order always matches
the input order regardless of completion order.

Cancellation (a set :class:`threading.Event` or Ctrl-C in the collecting
thread) stops dispatch, cancels futures that have not started, and waits for
running ones.  Files that never ran are counted in ``BatchReport.skipped``.
"""
import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union

from .analyzer import Analyzer, error_result
from .config import AnalysisConfig
from .types import AnalysisResult, BatchReport

logger = logging.getLogger(__name__)

ResultCallback = Callable[[int, AnalysisResult], None]

# Seconds between cancellation checks while waiting on the pool
_POLL_INTERVAL = 0.1


class BatchRunner:
    """Analyze many files with failure isolation and deterministic ordering."""

    def __init__(self, config: Optional[AnalysisConfig] = None,
                 analyzer: Optional[Analyzer] = None):
        self.config = config or AnalysisConfig()
        self.analyzer = analyzer or Analyzer(self.config)

    def run(self, paths: Sequence[Union[str, Path]],
            cancel_event: Optional[threading.Event] = None,
            on_result: Optional[ResultCallback] = None) -> BatchReport:
        """Analyze ``paths`` and return their results in input order.

        Args:
            paths: Files to analyze.
            cancel_event: Set from any thread to stop dispatching new files.
            on_result: Called in the collecting thread as ``on_result(index,
                result)`` whenever a file finishes before cancellation.

        Returns:
            BatchReport.  A failing file yields an ERROR result in its slot;
            it never aborts the batch.
        """
        items = [str(p) for p in paths]
        total = len(items)
        slots: List[Optional[AnalysisResult]] = [None] * total
        cancel = cancel_event or threading.Event()
        jobs = self.config.resolved_jobs
        in_flight_limit = 2 * jobs
        pending: Dict[Future, int] = {}
        next_index = 0
        finished = 0
        cancelled = False

        def collect(future: Future, index: int, notify: bool = True) -> None:
            nonlocal finished
            slots[index] = self._result_of(future, items[index])
            finished += 1
            logger.info(f"[{finished}/{total}] {items[index]}: {slots[index].verdict.value}")
            if notify and on_result is not None:
                on_result(index, slots[index])

        logger.info(f"Analyzing {total} files with {jobs} workers")
        with ThreadPoolExecutor(max_workers=jobs) as executor:
            try:
                while next_index < total or pending:
                    while (not cancel.is_set() and next_index < total
                           and len(pending) < in_flight_limit):
                        future = executor.submit(self.analyzer.analyze_path, items[next_index])
                        pending[future] = next_index
                        next_index += 1

                    if cancel.is_set():
                        cancelled = True
                        break

                    done, _ = wait(pending, timeout=_POLL_INTERVAL, return_when=FIRST_COMPLETED)
                    for future in done:
                        collect(future, pending.pop(future))
            except KeyboardInterrupt:
                logger.warning("Interrupted, waiting for running analyses to finish")
                cancel.set()
                cancelled = True

            if cancelled:
                for future in list(pending):
                    if future.cancel():
                        del pending[future]
                # Analyses already running are drained without the callback
                for future, index in sorted(pending.items(), key=lambda item: item[1]):
                    collect(future, index, notify=False)

        results = [r for r in slots if r is not None]
        skipped = total - len(results)
        if cancelled:
            logger.warning(f"Batch cancelled: {len(results)} analyzed, {skipped} skipped")
        return BatchReport(results=results, cancelled=cancelled, skipped=skipped)

    @staticmethod
    def _result_of(future: Future, path: str) -> AnalysisResult:
        try:
            return future.result()
        except Exception as e:
            logger.error(f"Worker failed on {path}: {e}")
            return error_result(path, str(e))


def run_batch(paths: Sequence[Union[str, Path]],
              config: Optional[AnalysisConfig] = None,
              cancel_event: Optional[threading.Event] = None,
              on_result: Optional[ResultCallback] = None) -> BatchReport:
    """Convenience wrapper around :class:`BatchRunner`."""
    return BatchRunner(config).run(paths, cancel_event=cancel_event, on_result=on_result)

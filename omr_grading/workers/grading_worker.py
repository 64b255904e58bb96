from threading import Thread
from typing import Callable, Iterable, Optional
import time

from omr_grading.core import GradingAggregator
from omr_grading.core.models import GradingSnapshot
from omr_grading.utils import app_logger


class GradingWorker(Thread):
    """
    Background thread that computes the round-wide grades.

    The analysis and grading caches do their heavy work while holding their
    locks; running that work here keeps the caller (console loop or UI)
    responsive. Results and errors come back through callbacks, invoked on
    this worker thread.
    """

    def __init__(self,
                 aggregator: GradingAggregator,
                 on_complete: Callable[[GradingSnapshot], None],
                 on_error: Optional[Callable[[Exception], None]] = None,
                 warm_student_ids: Optional[Iterable[str]] = None):
        super().__init__(name="GradingWorker")
        self.aggregator = aggregator
        self.on_complete = on_complete
        self.on_error = on_error
        self.warm_student_ids = list(warm_student_ids or [])

        # Daemon: never keeps the process alive on exit
        self.daemon = True

    def run(self):
        round_name = self.aggregator.context.current_round
        app_logger.info(f"Grading worker started for round '{round_name}'.")
        start_time = time.time()

        try:
            # Students the caller is about to look at are served first,
            # through the per-student path
            if self.warm_student_ids:
                self.aggregator.grades_for(self.warm_student_ids)

            snapshot = self.aggregator.all_grades()
        except Exception as e:
            app_logger.error(f"Grading failed for round '{round_name}': {e}", exc_info=True)
            if self.on_error is not None:
                self.on_error(e)
            return

        elapsed_time = time.time() - start_time
        app_logger.info(f"Grading worker finished: {len(snapshot.results)} students. Time: {elapsed_time:.2f}s")
        self.on_complete(snapshot)

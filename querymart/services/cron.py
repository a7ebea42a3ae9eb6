"""
Incremental, time-windowed extraction jobs.

A Cron owns an in-memory cursor (start_range). Every run() processes the
window [start_range, now) and then moves the cursor forward according to
its WindowPolicy. Errors raised while processing a window are counted and
logged here; they never reach the scheduler.
"""
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
import threading
from typing import Any, Callable, Dict, Optional

from querymart.core.logger import get_logger
from querymart.core.metrics import MetricsContext

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CronState(str, Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class WindowPolicy(str, Enum):
    """What happens to the cursor after a failed window."""
    DROP_ON_FAILURE = "drop_on_failure"  # skip the failed window
    RETRY_WINDOW = "retry_window"  # keep the cursor, next run covers it again


class Cron(ABC):
    """
    Base class of the scheduled extraction jobs.

    Subclasses implement process_window(start, end). run() is the only
    entry point used by the scheduler and is never re-entered: a second
    caller waits for the running iteration to finish.
    """

    def __init__(
        self,
        name: str,
        sink,
        source,
        frequency_min: int,
        metrics: Optional[MetricsContext] = None,
        policy: WindowPolicy = WindowPolicy.DROP_ON_FAILURE,
        clock: Clock = utc_now,
        start_range: Optional[datetime] = None,
        delay_min: int = 0,
    ):
        self.name = name
        self.sink = sink
        self.source = source
        self.frequency_min = frequency_min
        self.delay_min = delay_min
        self.metrics = metrics if metrics is not None else MetricsContext()
        self.policy = WindowPolicy(policy)
        self.clock = clock

        self.start_range = start_range if start_range is not None else clock()
        if self.start_range.tzinfo is None:
            raise ValueError(f"{name}: start_range must be timezone-aware")

        self.iterations = self.metrics.counter(f"{name}.iterations", f"Windows processed by {name}")
        self.failed_iterations = self.metrics.counter(
            f"{name}.failed_iterations", f"Windows of {name} that raised"
        )

        self.state = CronState.IDLE
        self.last_state: Optional[CronState] = None
        self.last_error: Optional[str] = None
        self.last_run_at: Optional[datetime] = None
        self._lock = threading.Lock()

    @abstractmethod
    def process_window(self, start: datetime, end: datetime) -> None:
        """Extract and persist the records of [start, end)."""

    def run(self) -> CronState:
        """Process one window and advance the cursor."""
        with self._lock:
            start_range = self.start_range
            # The cursor never moves backwards, even if the clock does
            end_range = max(self.clock(), start_range)

            self.state = CronState.RUNNING
            self.iterations.inc()
            outcome = CronState.FAILED
            try:
                self.process_window(start_range, end_range)
                outcome = CronState.SUCCEEDED
                self.last_error = None
            except Exception as e:
                self.failed_iterations.inc()
                self.last_error = f"{type(e).__name__}: {e}"
                logger.error(
                    f"{self.name}: window [{start_range.isoformat()}, {end_range.isoformat()}) failed: {e}",
                    exc_info=True,
                )
            finally:
                if outcome is CronState.SUCCEEDED or self.policy is WindowPolicy.DROP_ON_FAILURE:
                    self.start_range = end_range
                self.last_state = outcome
                self.last_run_at = end_range
                self.state = CronState.IDLE

            logger.debug(f"{self.name}: iteration {self.iterations.count} {outcome.value}")
            return outcome

    def failure_ratio(self) -> float:
        iterations = self.iterations.count
        if iterations == 0:
            return 0.0
        return self.failed_iterations.count / iterations

    def status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "frequency_min": self.frequency_min,
            "policy": self.policy.value,
            "state": self.state.value,
            "last_state": self.last_state.value if self.last_state else None,
            "start_range": self.start_range.isoformat(),
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "iterations": self.iterations.count,
            "failed_iterations": self.failed_iterations.count,
            "last_error": self.last_error,
        }

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name} start_range={self.start_range.isoformat()}>"

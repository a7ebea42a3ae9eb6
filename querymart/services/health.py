"""
Health checks for the scheduled jobs and the sink.
"""
from dataclasses import dataclass, field
import threading
from typing import Any, Callable, Dict, List, Optional

from querymart.core.config import settings
from querymart.core.logger import get_logger

logger = get_logger(__name__)


@dataclass
class HealthResult:
    healthy: bool
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"healthy": self.healthy, "message": self.message, **self.details}


class CronHealthCheck:
    """
    Unhealthy once the share of failed windows exceeds max_failure_ratio.

    A job that has not run yet is healthy.
    """

    def __init__(self, cron, max_failure_ratio: Optional[float] = None):
        self.cron = cron
        self.max_failure_ratio = (
            max_failure_ratio if max_failure_ratio is not None else settings.health_max_failure_ratio
        )

    @property
    def name(self) -> str:
        return self.cron.name

    def check(self) -> HealthResult:
        iterations = self.cron.iterations.count
        failed = self.cron.failed_iterations.count
        details = {"iterations": iterations, "failed_iterations": failed}

        if iterations == 0:
            return HealthResult(True, "No iterations yet", details)

        ratio = self.cron.failure_ratio()
        if ratio > self.max_failure_ratio:
            return HealthResult(
                False,
                f"{failed} of {iterations} windows failed (last error: {self.cron.last_error})",
                details,
            )
        return HealthResult(True, f"{failed} of {iterations} windows failed", details)


class HealthRegistry:
    """Named health checks evaluated together by the /health endpoint."""

    def __init__(self):
        self._checks: Dict[str, Callable[[], HealthResult]] = {}
        self._lock = threading.Lock()

    def register(self, name: str, check: Callable[[], HealthResult]) -> None:
        with self._lock:
            if name in self._checks:
                logger.warning(f"Replacing health check '{name}'")
            self._checks[name] = check

    def register_cron(self, cron, max_failure_ratio: Optional[float] = None) -> CronHealthCheck:
        health_check = CronHealthCheck(cron, max_failure_ratio)
        self.register(cron.name, health_check.check)
        return health_check

    @property
    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._checks)

    def run_all(self) -> Dict[str, HealthResult]:
        with self._lock:
            checks = dict(self._checks)

        results = {}
        for name, check in sorted(checks.items()):
            try:
                results[name] = check()
            except Exception as e:
                logger.error(f"Health check '{name}' raised: {e}", exc_info=True)
                results[name] = HealthResult(False, f"Check raised {type(e).__name__}: {e}")
        return results

    def is_healthy(self) -> bool:
        return all(result.healthy for result in self.run_all().values())

"""
Tests for the Cron window cursor.
"""
from datetime import datetime, timedelta

import pytest

from conftest import T0, ManualClock
from querymart.core.metrics import MetricsContext
from querymart.services.cron import Cron, CronState, WindowPolicy


class RecordingCron(Cron):
    """Cron that records its windows and fails on demand."""

    def __init__(self, *args, **kwargs):
        super().__init__("recording_cron", None, None, 5, *args, **kwargs)
        self.windows = []
        self.fail = False

    def process_window(self, start: datetime, end: datetime) -> None:
        self.windows.append((start, end))
        if self.fail:
            raise RuntimeError("window failed")


@pytest.fixture
def cron(clock, metrics):
    return RecordingCron(metrics=metrics, clock=clock)


class TestRun:
    """Tests for Cron.run."""

    def test_initial_state(self, cron):
        assert cron.state is CronState.IDLE
        assert cron.last_state is None
        assert cron.start_range == T0
        assert cron.iterations.count == 0
        assert cron.failed_iterations.count == 0

    def test_consecutive_windows_are_contiguous(self, cron, clock):
        """Test each window starts where the previous one ended."""
        for _ in range(3):
            clock.advance(minutes=5)
            assert cron.run() is CronState.SUCCEEDED

        assert cron.windows == [
            (T0, T0 + timedelta(minutes=5)),
            (T0 + timedelta(minutes=5), T0 + timedelta(minutes=10)),
            (T0 + timedelta(minutes=10), T0 + timedelta(minutes=15)),
        ]
        assert cron.iterations.count == 3
        assert cron.start_range == T0 + timedelta(minutes=15)
        assert cron.state is CronState.IDLE
        assert cron.last_state is CronState.SUCCEEDED

    def test_failure_is_counted_not_raised(self, cron, clock):
        cron.fail = True
        clock.advance(minutes=5)

        assert cron.run() is CronState.FAILED
        assert cron.iterations.count == 1
        assert cron.failed_iterations.count == 1
        assert "window failed" in cron.last_error

    def test_drop_on_failure_advances_cursor(self, cron, clock):
        """Test the default policy skips a failed window."""
        cron.fail = True
        clock.advance(minutes=5)
        cron.run()

        cron.fail = False
        clock.advance(minutes=5)
        cron.run()

        assert cron.policy is WindowPolicy.DROP_ON_FAILURE
        assert cron.windows[1] == (T0 + timedelta(minutes=5), T0 + timedelta(minutes=10))

    def test_retry_window_keeps_cursor(self, clock, metrics):
        """Test a failed window is covered again by the next run."""
        cron = RecordingCron(metrics=metrics, clock=clock, policy=WindowPolicy.RETRY_WINDOW)
        cron.fail = True
        clock.advance(minutes=5)
        cron.run()
        assert cron.start_range == T0

        cron.fail = False
        clock.advance(minutes=5)
        cron.run()

        assert cron.windows[1] == (T0, T0 + timedelta(minutes=10))
        assert cron.start_range == T0 + timedelta(minutes=10)

    def test_policy_from_string(self, clock, metrics):
        cron = RecordingCron(metrics=metrics, clock=clock, policy="retry_window")
        assert cron.policy is WindowPolicy.RETRY_WINDOW

    def test_cursor_never_rewinds(self, cron, clock):
        """Test a clock going backwards yields an empty window at the cursor."""
        clock.advance(minutes=5)
        cron.run()
        clock.advance(minutes=-3)
        cron.run()

        assert cron.windows[1] == (T0 + timedelta(minutes=5), T0 + timedelta(minutes=5))
        assert cron.start_range == T0 + timedelta(minutes=5)

    def test_start_range_override(self, clock, metrics):
        cron = RecordingCron(metrics=metrics, clock=clock, start_range=T0 - timedelta(hours=1))
        cron.run()
        assert cron.windows == [(T0 - timedelta(hours=1), T0)]

    def test_naive_start_range_rejected(self, clock, metrics):
        with pytest.raises(ValueError):
            RecordingCron(metrics=metrics, clock=clock, start_range=datetime(2019, 3, 16))


class TestStatus:
    """Tests for counters and status reporting."""

    def test_failure_ratio(self, cron, clock):
        assert cron.failure_ratio() == 0.0

        cron.run()
        cron.fail = True
        cron.run()

        assert cron.failure_ratio() == 0.5

    def test_counters_live_in_metrics_context(self, cron, metrics):
        cron.run()
        snapshot = metrics.snapshot()

        assert snapshot["querymart_recording_cron_iterations"] == 1
        assert snapshot["querymart_recording_cron_failed_iterations"] == 0
        assert b"querymart_recording_cron_iterations_total 1.0" in metrics.render()

    def test_separate_contexts_do_not_share_counters(self, clock):
        first = RecordingCron(metrics=MetricsContext(), clock=clock)
        second = RecordingCron(metrics=MetricsContext(), clock=clock)
        first.run()

        assert first.iterations.count == 1
        assert second.iterations.count == 0

    def test_status(self, cron, clock):
        clock.advance(minutes=1)
        cron.run()
        status = cron.status()

        assert status["name"] == "recording_cron"
        assert status["last_state"] == "SUCCEEDED"
        assert status["state"] == "IDLE"
        assert status["iterations"] == 1
        assert status["start_range"] == (T0 + timedelta(minutes=1)).isoformat()
        assert status["policy"] == "drop_on_failure"

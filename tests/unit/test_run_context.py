"""
Unit tests for assistant/pipeline/run_context.py

Tests the cancellation token, the run deadline (with a fake clock, plus one
real timer test) and PipelineRun state.
"""

import asyncio

import pytest

from assistant.common.errors import STOPPED_MARKER, PipelineStopped
from assistant.common.types import JobDetail
from assistant.pipeline.run_context import (
    CancellationToken,
    PipelineRun,
    PipelineStep,
    RunDeadline,
    RunStatus,
)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def deadline(clock):
    return RunDeadline(base_minutes=10, extension_minutes=5, max_minutes=12, wrap_up_seconds=60, clock=clock)


# ===== TESTS: CancellationToken =====

class TestCancellationToken:
    """Tests for CancellationToken."""

    def test_first_cancel_wins(self):
        """Later cancels do not replace the first reason."""
        token = CancellationToken()
        token.cancel("Run deadline reached")
        token.cancel("Stopped by user")

        assert token.is_cancelled is True
        assert token.reason == "Run deadline reached"

    def test_default_reason(self):
        token = CancellationToken()
        token.cancel()

        with pytest.raises(PipelineStopped) as exc_info:
            token.raise_if_cancelled()
        assert exc_info.value.reason == STOPPED_MARKER

    def test_not_cancelled(self):
        token = CancellationToken()
        token.raise_if_cancelled()
        assert token.reason is None

    @pytest.mark.asyncio
    async def test_wait_returns_after_cancel(self):
        token = CancellationToken()
        asyncio.get_running_loop().call_soon(token.cancel)
        await asyncio.wait_for(token.wait(), timeout=1)
        assert token.is_cancelled


# ===== TESTS: RunDeadline =====

class TestRunDeadline:
    """Tests for RunDeadline with a fake clock."""

    def test_before_start(self, deadline):
        """Before start the full budget remains and no wrap-up applies."""
        assert deadline.started is False
        assert deadline.remaining() == 600
        assert deadline.elapsed() == 0.0
        assert deadline.in_wrap_up() is False

    def test_remaining_and_wrap_up(self, deadline, clock):
        """Wrap-up starts inside the last wrap_up_seconds; expiry at zero."""
        deadline.start()
        clock.advance(500)
        assert deadline.remaining() == 100
        assert deadline.in_wrap_up() is False

        clock.advance(45)
        assert deadline.in_wrap_up() is True
        assert deadline.expired is False

        clock.advance(100)
        assert deadline.remaining() == 0.0
        assert deadline.expired is True

    def test_extend_once_capped(self, deadline, clock):
        """The extension applies once and never beyond max_minutes from start."""
        deadline.start()
        clock.advance(100)

        assert deadline.extend_once() is True
        assert deadline.remaining() == 620
        assert deadline.extend_once() is False
        assert deadline.remaining() == 620

    def test_extend_before_start(self, deadline):
        assert deadline.extend_once() is False
        assert deadline.extended is False

    def test_pause_stops_the_clock(self, deadline, clock):
        """Time spent paused is not charged to the run."""
        deadline.start()
        clock.advance(100)
        deadline.pause()
        clock.advance(1000)

        assert deadline.remaining() == 500

        deadline.resume()
        assert deadline.remaining() == 500
        assert deadline.elapsed() == 100

        clock.advance(50)
        assert deadline.remaining() == 450

    def test_bound_timeout(self, deadline, clock):
        """Per-call timeouts are clipped to the time left."""
        deadline.start()
        clock.advance(100)

        assert deadline.bound_timeout(30000) == 30000
        assert deadline.bound_timeout(900000) == 500000


class TestRunDeadlineTimer:
    """Tests for the expiry callback on a real event loop."""

    @pytest.mark.asyncio
    async def test_on_expire_called(self):
        expired = []
        deadline = RunDeadline(base_minutes=0.001, on_expire=lambda: expired.append(True))
        deadline.start()

        await asyncio.sleep(0.3)

        assert expired == [True]

    @pytest.mark.asyncio
    async def test_paused_deadline_does_not_fire(self):
        expired = []
        deadline = RunDeadline(base_minutes=0.001, on_expire=lambda: expired.append(True))
        deadline.start()
        deadline.pause()

        await asyncio.sleep(0.3)

        assert expired == []
        deadline.cancel_timer()


# ===== TESTS: PipelineRun =====

class TestPipelineRun:
    """Tests for PipelineRun state."""

    def test_initial_state(self):
        run = PipelineRun(url="https://acme.com/jobs/1")

        assert run.status == RunStatus.PENDING
        assert run.step == PipelineStep.OPEN_BROWSER
        assert len(run.run_id) == 32
        assert run.is_terminal is False

    def test_add_event(self):
        run = PipelineRun(url="https://acme.com/jobs/1")
        run.add_event("Classify", "info", "detail (0.90, heuristic)")

        event = run.events[0]
        assert (event.stage, event.level, event.message) == ("Classify", "info", "detail (0.90, heuristic)")
        assert event.timestamp

    def test_finish_with_error(self):
        """finish() sets a terminal status, the error and clears any wait."""
        run = PipelineRun(url="https://acme.com/jobs/1")
        run.waiting_for = "login"
        run.finish(RunStatus.ERROR, STOPPED_MARKER)

        assert run.is_terminal is True
        assert run.last_error == STOPPED_MARKER
        assert run.waiting_for is None
        assert run.finished_at is not None

    def test_to_dict(self):
        """The summary serializes the job model and the company name."""
        run = PipelineRun(url="https://acme.com/jobs/1", user_name="Jane Doe")
        run.job = JobDetail(title="Backend Engineer", company="Acme")
        run.set_step(PipelineStep.DONE)
        run.add_event("Extract", "success", "Backend Engineer at Acme")
        run.finish(RunStatus.DONE)

        data = run.to_dict()

        assert data["status"] == "done"
        assert data["step"] == "done"
        assert data["job"]["title"] == "Backend Engineer"
        assert data["company"] is None
        assert data["events"][0]["level"] == "success"
        assert data["finished_at"] is not None

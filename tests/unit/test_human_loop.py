"""
Unit tests for assistant/pipeline/human_loop.py

Tests operator waits: resolution, timeout, cancellation and re-arming.
"""

import asyncio

import pytest

from assistant.common.errors import HumanWaitTimeout, PipelineStopped
from assistant.pipeline.human_loop import CAPTCHA, LOGIN, HumanSignal
from assistant.pipeline.run_context import CancellationToken


# ===== TESTS: HumanSignal =====

class TestHumanSignal:
    """Tests for HumanSignal."""

    def test_resolve_without_wait(self):
        """Resolving when nothing waits is a no-op."""
        assert HumanSignal().resolve("<html></html>") is False

    @pytest.mark.asyncio
    async def test_resolve_returns_html(self):
        """The operator's HTML is returned to the waiter."""
        signal = HumanSignal(timeout_seconds=5)
        asyncio.get_running_loop().call_later(0.01, signal.resolve, "<h1>Job</h1>")

        html = await signal.wait_for_login()

        assert html == "<h1>Job</h1>"
        assert signal.waiting_for is None

    @pytest.mark.asyncio
    async def test_resolve_without_html(self):
        """A bare resolve returns None so the caller re-captures the page."""
        signal = HumanSignal(timeout_seconds=5)
        asyncio.get_running_loop().call_later(0.01, signal.resolve)

        assert await signal.wait_for_captcha() is None

    @pytest.mark.asyncio
    async def test_on_wait_reports_kind(self):
        """on_wait is told which step the operator must complete."""
        kinds = []
        signal = HumanSignal(timeout_seconds=5)

        def on_wait(kind):
            kinds.append((kind, signal.waiting_for))
            signal.resolve()

        signal.on_wait = on_wait
        await signal.wait_for_login()
        await signal.wait_for_captcha()

        assert kinds == [(LOGIN, LOGIN), (CAPTCHA, CAPTCHA)]

    @pytest.mark.asyncio
    async def test_timeout(self):
        """No operator response within the window raises HumanWaitTimeout."""
        signal = HumanSignal(timeout_seconds=0.05)

        with pytest.raises(HumanWaitTimeout) as exc_info:
            await signal.wait_for_login()

        assert exc_info.value.kind == LOGIN
        assert "No operator response for login" in str(exc_info.value)
        assert signal.resolve() is False

    @pytest.mark.asyncio
    async def test_cancel_ends_wait(self):
        """A cancelled run ends the wait with PipelineStopped."""
        token = CancellationToken()
        signal = HumanSignal(timeout_seconds=5)
        asyncio.get_running_loop().call_later(0.01, token.cancel, "Stopped by user")

        with pytest.raises(PipelineStopped) as exc_info:
            await signal.wait_for_captcha(cancel=token)

        assert exc_info.value.reason == "Stopped by user"
        assert signal.waiting_for is None

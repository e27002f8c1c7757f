"""
Human-in-the-loop signal for login walls and captcha challenges.

The controller waits on the signal while an operator completes the step in
the visible browser; the operator (CLI prompt or UI) calls ``resolve()``.
Waits have their own timeout and are not counted against the run deadline,
but a cancelled run ends the wait immediately.
"""

import asyncio
import logging
from typing import Callable, Optional

from assistant.common.config import Config
from assistant.common.errors import STOPPED_MARKER, HumanWaitTimeout, PipelineStopped

logger = logging.getLogger(__name__)

LOGIN = "login"
CAPTCHA = "captcha"


class HumanSignal:
    """
    One-shot operator signal, re-armed for every wait.

    Args:
        timeout_seconds: Operator response window
        on_wait: Optional callback invoked with the wait kind when a wait starts
    """

    def __init__(
        self,
        timeout_seconds: float = Config.HUMAN_WAIT_TIMEOUT_SECONDS,
        on_wait: Optional[Callable[[str], None]] = None,
    ):
        self.timeout_seconds = timeout_seconds
        self.on_wait = on_wait
        self._future: Optional[asyncio.Future] = None
        self._waiting_for: Optional[str] = None

    @property
    def waiting_for(self) -> Optional[str]:
        return self._waiting_for

    def resolve(self, html: Optional[str] = None) -> bool:
        """
        Signal that the operator finished the step.

        Args:
            html: Optional page HTML captured by the operator's client; None
                means the controller re-captures from the browser

        Returns:
            False if nothing was waiting
        """
        if self._future is None or self._future.done():
            return False
        self._future.set_result(html)
        logger.info(f"Operator resolved {self._waiting_for} wait")
        return True

    async def wait_for_login(self, cancel=None) -> Optional[str]:
        return await self._wait(LOGIN, cancel)

    async def wait_for_captcha(self, cancel=None) -> Optional[str]:
        return await self._wait(CAPTCHA, cancel)

    async def _wait(self, kind: str, cancel) -> Optional[str]:
        loop = asyncio.get_running_loop()
        self._future = loop.create_future()
        self._waiting_for = kind
        logger.info(f"Waiting up to {self.timeout_seconds:.0f}s for operator to complete {kind}")
        if self.on_wait is not None:
            self.on_wait(kind)

        waiters = {self._future}
        cancel_task = None
        if cancel is not None:
            cancel_task = asyncio.ensure_future(cancel.wait())
            waiters.add(cancel_task)

        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=self.timeout_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if self._future in done:
                return self._future.result()
            if cancel_task is not None and cancel_task in done:
                raise PipelineStopped(cancel.reason or STOPPED_MARKER)
            raise HumanWaitTimeout(kind, self.timeout_seconds)
        finally:
            if cancel_task is not None and not cancel_task.done():
                cancel_task.cancel()
            if not self._future.done():
                self._future.cancel()
            self._future = None
            self._waiting_for = None

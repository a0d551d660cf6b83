from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from botical.core.logger import get_logger

log = get_logger(__name__)


RetryCallable = Callable[[], Awaitable[None]]


class ReconnectTimer:
    """Single-shot delayed retry with at most one pending task.

    arm() always cancels the previously pending task first, so a burst of
    disconnect events results in exactly one retry.
    """

    def __init__(self) -> None:
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def arm(self, delay_ms: int, func: RetryCallable) -> None:
        self.cancel()

        async def _fire() -> None:
            await asyncio.sleep(delay_ms / 1000)
            try:
                await func()
            except Exception:
                log.exception("Reconnect attempt failed")

        self._task = asyncio.create_task(_fire(), name="botical-reconnect")
        log.debug("Reconnect armed in %d ms", delay_ms)

    def cancel(self) -> None:
        task = self._task
        self._task = None
        # The firing task may re-arm from inside its own callback; it finishes on its own.
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

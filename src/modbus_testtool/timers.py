"""PeriodicTask: a cancellable asyncio interval timer that never overlaps its own callback."""

import asyncio
import inspect
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

Callback = Callable[[], Any]


def _current_task() -> asyncio.Task[Any] | None:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return None
    return asyncio.current_task()


class PeriodicTask:
    """
    Runs ``callback`` every ``interval_ms`` on the running event loop.

    The next tick is only scheduled after the previous callback finished, so a
    slow callback delays the timer instead of stacking invocations. start()
    replaces any previous run; stop() is idempotent and may be called from
    inside the callback itself.
    """

    def __init__(self, callback: Callback, interval_ms: int, name: str = "periodic") -> None:
        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be positive, got {interval_ms}")
        self._callback = callback
        self._interval_ms = interval_ms
        self._name = name
        self._task: asyncio.Task[None] | None = None

    @property
    def interval_ms(self) -> int:
        return self._interval_ms

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, interval_ms: int | None = None) -> None:
        """(Re)start the timer; requires a running event loop."""
        if interval_ms is not None:
            if interval_ms <= 0:
                raise ValueError(f"interval_ms must be positive, got {interval_ms}")
            self._interval_ms = interval_ms
        self.stop()
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run(), name=self._name)
        logger.debug("%s started (%d ms)", self._name, self._interval_ms)

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        # From inside the callback the loop notices the swap and exits on its own
        if task is not _current_task():
            task.cancel()
        logger.debug("%s stopped", self._name)

    def set_interval(self, interval_ms: int) -> None:
        """Change the interval; a running timer is restarted, never duplicated."""
        if self.running:
            self.start(interval_ms)
        else:
            if interval_ms <= 0:
                raise ValueError(f"interval_ms must be positive, got {interval_ms}")
            self._interval_ms = interval_ms

    async def _run(self) -> None:
        me = asyncio.current_task()
        while self._task is me:
            await asyncio.sleep(self._interval_ms / 1000)
            if self._task is not me:
                break
            try:
                result = self._callback()
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("%s callback failed", self._name)

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
class PeriodicTicker:
    """
    Cancellable background task calling `callback` every `interval` seconds.

    - start() may be called once, from inside a running event loop.
    - cancel() stops the task cooperatively and waits for it to finish; once it
      returns the callback will not run again. Repeated calls are no-ops.
    - The sleep after each callback is the full interval regardless of how long
      the callback took; cadence is best effort.
    - An exception raised by the callback is logged and the loop keeps going.
    """

    def __init__(self, interval: float, callback: Callable[[], None], name: str = "ticker") -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._interval = interval
        self._callback = callback
        self._name = name
        self._task: Optional[asyncio.Task] = None
        self._cancelled = False

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is not None or self._cancelled:
            raise RuntimeError(f"{self._name} can only be started once")
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self._name)
        logger.debug("%s started at %.4fs interval", self._name, self._interval)

    async def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("%s cancelled", self._name)

    async def _run(self) -> None:
        while True:
            try:
                self._callback()
            except Exception:
                logger.exception("%s callback failed", self._name)
            await asyncio.sleep(self._interval)

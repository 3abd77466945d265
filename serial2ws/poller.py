"""Periodic poll command that keeps the device reporting its status."""

import asyncio
import logging
from typing import Optional

from serial2ws.config import DEFAULT_POLL_INTERVAL_MS, MIN_INTERVAL_MS

logger = logging.getLogger("serial2ws")

POLL_COMMAND = "=R"


class PollScheduler:
    """Write ``command`` to the link every ``interval`` seconds while it is connected.

    At most one timer task exists; ``start()`` replaces a running one.
    """

    def __init__(self, link, interval: float = DEFAULT_POLL_INTERVAL_MS / 1000, command: str = POLL_COMMAND):
        if interval * 1000 < MIN_INTERVAL_MS:
            raise ValueError(f"poll interval must be at least {MIN_INTERVAL_MS} ms")
        self.interval = interval
        self.command = command
        self._link = link
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None

    def start(self):
        self.stop()
        self._task = asyncio.create_task(self._run(), name="poll-scheduler")
        logger.debug("Polling every %g seconds", self.interval)

    def stop(self):
        if self._task is not None:
            self._task.cancel()
            self._task = None
            logger.debug("Polling stopped")

    def tick(self) -> bool:
        """Send the poll command once; skipped (False) while the link is down."""
        if not self._link.connected:
            return False
        return self._link.write(self.command)

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval)
            self.tick()

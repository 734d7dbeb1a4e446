"""Server liveness tracking.

The server sends an unsolicited ``HB`` message every few seconds. Every
inbound message counts as proof of life; :meth:`HeartbeatMonitor.tick` is
called for each one and :meth:`HeartbeatMonitor.is_stale` reports when
nothing has arrived for ``timeout`` seconds. :meth:`HeartbeatMonitor.watch`
polls that condition in a background task.
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional

from wmtp.utils.logging import get_logger

logger = get_logger(__name__)


class HeartbeatMonitor:
    """Tracks the time since the last message from the server."""

    def __init__(self, timeout: float = 15.0, check_interval: float = 1.0):
        self.timeout = timeout
        self.check_interval = check_interval
        self._last_tick: Optional[float] = None
        self._heartbeats = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def heartbeats(self) -> int:
        """Number of ``HB`` messages seen since the monitor started."""
        return self._heartbeats

    def tick(self, heartbeat: bool = False) -> None:
        """Record traffic from the server."""
        self._last_tick = time.monotonic()
        if heartbeat:
            self._heartbeats += 1

    def age(self) -> Optional[float]:
        """Seconds since the last tick, or None before the first one."""
        if self._last_tick is None:
            return None
        return time.monotonic() - self._last_tick

    def is_stale(self) -> bool:
        age = self.age()
        return age is not None and age > self.timeout

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, on_timeout: Callable[[float], Awaitable[None]]) -> None:
        """Start watching; ``on_timeout`` is awaited once when traffic stops."""
        self.stop()
        self.tick()
        self._heartbeats = 0
        self._task = asyncio.create_task(self.watch(on_timeout))

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def watch(self, on_timeout: Callable[[float], Awaitable[None]]) -> None:
        while True:
            await asyncio.sleep(self.check_interval)
            if self.is_stale():
                age = self.age() or 0.0
                logger.warning(f"No message from server for {age:.1f}s")
                await on_timeout(age)
                return

"""Host power handling: sleep detection and keep-awake.

There is no portable suspend/resume notification, so ``SleepWatcher``
infers one: it ticks on the event loop and compares how far the wall clock
moved against the monotonic clock.  The monotonic clock stops while the
host is suspended; the wall clock does not.  A gap well beyond the tick is
reported as a suspend immediately followed by a resume.

On macOS ``KeepAwake`` runs ``caffeinate -dis`` for as long as the host
serves, so idle sleep does not take the tunnel down in the first place.
"""

from __future__ import annotations

import asyncio
import sys
import time
from collections.abc import Callable

from loguru import logger

from clawdaunt.host.supervisors.process import ManagedProcess

SLEEP_MARGIN = 10.0


class SleepWatcher:
    """Detect host suspend/resume from wall-clock jumps."""

    def __init__(
        self,
        *,
        interval: float,
        on_suspend: Callable[[], None],
        on_resume: Callable[[], None],
        margin: float = SLEEP_MARGIN,
        wall_clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._interval = interval
        self._on_suspend = on_suspend
        self._on_resume = on_resume
        self._margin = margin
        self._wall_clock = wall_clock
        self._monotonic = monotonic
        self._last_wall = wall_clock()
        self._last_mono = monotonic()
        self._task: asyncio.Task[None] | None = None

    def start(self) -> None:
        self.stop()
        self._last_wall = self._wall_clock()
        self._last_mono = self._monotonic()
        self._task = asyncio.create_task(self._run(), name="sleep-watcher")

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    def check(self) -> bool:
        """Compare clocks since the last check; returns ``True`` if the host slept."""
        wall, mono = self._wall_clock(), self._monotonic()
        slept = (wall - self._last_wall) - (mono - self._last_mono)
        self._last_wall, self._last_mono = wall, mono
        if slept <= self._margin:
            return False
        logger.info("Host was suspended for ~{:.0f}s", slept)
        self._on_suspend()
        self._on_resume()
        return True

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self.check()


class KeepAwake:
    """Hold a ``caffeinate`` assertion on macOS; a no-op elsewhere."""

    def __init__(self) -> None:
        self._process: ManagedProcess | None = None

    async def start(self) -> None:
        if sys.platform != "darwin" or self._process is not None:
            return
        try:
            # -d display, -i idle, -s system sleep
            self._process = await ManagedProcess.spawn("caffeinate", ["caffeinate", "-dis"])
        except OSError as exc:
            logger.warning("caffeinate unavailable: {}", exc)
            self._process = None

    async def stop(self, timeout: float = 2.0) -> None:
        process, self._process = self._process, None
        if process is not None:
            await process.stop(timeout)

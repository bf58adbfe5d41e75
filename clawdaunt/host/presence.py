"""Remote-client presence tracking.

The mobile client POSTs ``/heartbeat`` periodically.  From the time since the
last heartbeat the tracker derives three states:

- **connected** -- heartbeats are arriving.
- **away** -- silent for more than ``presence_away_after`` (30 s).  Almost
  always a phone that suspended the app in the background; it resumes and
  heartbeats as soon as the user returns.  Fired once per silence episode.
- **disconnected** -- silent for more than ``presence_disconnect_after``
  (120 s).  State is reset.

The polling loop only runs while a client is connected.  Host sleep would
otherwise look like client silence, so ``suspend`` pauses the loop and
``resume`` restarts the heartbeat clock.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from loguru import logger

from clawdaunt.host.models.enums import UIChannel
from clawdaunt.host.models.session import PresenceState

if TYPE_CHECKING:
    from clawdaunt.host.events import EventBus
    from clawdaunt.host.settings import ClawSettings


class ClientPresenceTracker:
    """Three-state presence machine fed by heartbeats."""

    def __init__(
        self,
        *,
        settings: ClawSettings,
        events: EventBus,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings
        self._events = events
        self._clock = clock
        self._state = PresenceState()
        self._task: asyncio.Task[None] | None = None

    # -- Query -----------------------------------------------------------------

    @property
    def state(self) -> PresenceState:
        return self._state.model_copy()

    @property
    def connected(self) -> bool:
        return self._state.connected

    @property
    def away(self) -> bool:
        return self._state.away

    @property
    def monitoring(self) -> bool:
        return self._task is not None and not self._task.done()

    # -- Inputs ----------------------------------------------------------------

    def heartbeat(self) -> None:
        """Record a heartbeat: connected, not away, clock restarted."""
        now = self._clock()
        self._state.last_heartbeat_at = max(now, self._state.last_heartbeat_at) if self._state.connected else now
        if not self._state.connected:
            self._state.connected = True
            logger.info("Presence: client connected")
            self._start_loop()
        self._state.away = False
        # Emitted on every heartbeat, not only on the transition.
        self._events.emit(UIChannel.CLIENT_CONNECTED, True)

    def tick(self) -> None:
        """Evaluate elapsed silence once (the loop body)."""
        state = self._state
        if not state.connected or state.last_heartbeat_at <= 0:
            return
        elapsed = self._clock() - state.last_heartbeat_at
        if elapsed > self._settings.presence_disconnect_after:
            logger.info("Presence: no heartbeat for {:.0f}s, client disconnected", elapsed)
            self.reset(notify=True)
        elif elapsed > self._settings.presence_away_after and not state.away:
            state.away = True
            logger.info("Presence: no heartbeat for {:.0f}s, client away", elapsed)
            self._events.emit(UIChannel.CLIENT_AWAY, True)

    def reset(self, *, notify: bool = True) -> None:
        """Forget the client and stop the loop."""
        self._stop_loop()
        self._state = PresenceState()
        if notify:
            self._events.emit(UIChannel.CLIENT_DISCONNECTED, True)

    # -- Host power ------------------------------------------------------------

    def suspend(self) -> None:
        logger.debug("Presence: host suspending, loop paused")
        self._stop_loop()

    def resume(self) -> None:
        if not self._state.connected:
            return
        logger.debug("Presence: host resumed, heartbeat clock reset")
        self._state.last_heartbeat_at = self._clock()
        self._start_loop()

    def stop(self) -> None:
        self._stop_loop()

    # -- Internals -------------------------------------------------------------

    def _start_loop(self) -> None:
        self._stop_loop()
        self._task = asyncio.create_task(self._run(), name="client-presence")

    def _stop_loop(self) -> None:
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _run(self) -> None:
        while self._state.connected:
            await asyncio.sleep(self._settings.presence_poll_interval)
            self.tick()

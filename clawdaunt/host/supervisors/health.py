"""Tunnel health monitor.

Once a tunnel URL is published, the monitor polls ``{url}/global/health``
through the public internet every ``health_interval`` seconds.  This goes
through the tunnel and the reverse proxy and back, so it proves the whole
path works, not just that the tunnel process is alive.

State machine::

    healthy --fail--> checking --fail--> checking --fail--> down
       ^                 |                                   |
       +----success------+                                   +--> restart tunnel

The first failure only moves to ``checking`` (a transient glitch buffer).
The threshold failure moves to ``down``, clears the URL and restarts the
tunnel through ``TunnelProcessSupervisor.restart(RestartReason.MONITOR)`` so
the killed process's exit handler does not restart it a second time.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

import httpx
from loguru import logger

from clawdaunt.host.models.enums import RestartReason, TunnelHealth, UIChannel

if TYPE_CHECKING:
    from clawdaunt.host.events import EventBus
    from clawdaunt.host.settings import ClawSettings
    from clawdaunt.host.supervisors.tunnel import TunnelProcessSupervisor

ProbeFn = Callable[[str], Awaitable[bool]]

HEALTH_PATH = "/global/health"


class TunnelHealthMonitor:
    """Derive tunnel health from periodic external reachability checks."""

    def __init__(
        self,
        *,
        settings: ClawSettings,
        events: EventBus,
        tunnel: TunnelProcessSupervisor,
        get_secret: Callable[[], str],
        shutdown: asyncio.Event,
        probe: ProbeFn | None = None,
    ) -> None:
        self._settings = settings
        self._events = events
        self._tunnel = tunnel
        self._get_secret = get_secret
        self._shutdown = shutdown
        self._probe = probe or self.verify_reachable

        self._health = TunnelHealth.CHECKING
        self._failures = 0
        self._lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None

    @property
    def health(self) -> TunnelHealth:
        return self._health

    @property
    def failures(self) -> int:
        return self._failures

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # -- Lifecycle -------------------------------------------------------------

    def start(self, url: str | None = None) -> None:
        """(Re)start polling.  Called whenever a new URL is published."""
        self.stop()
        self._failures = 0
        self._set_health(TunnelHealth.HEALTHY)
        self._task = asyncio.create_task(self._run(), name="tunnel-health")
        logger.info("Tunnel health: monitoring {}", url or self._tunnel.url)

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    # -- Checks ----------------------------------------------------------------

    async def check_once(self) -> TunnelHealth:
        """Run one check and apply it to the state machine.

        Serialized by a lock so two checks never interleave.
        """
        async with self._lock:
            if self._shutdown.is_set():
                return self._health
            url = self._tunnel.url
            if not url:
                return self._health

            ok = await self._probe(url)
            if self._shutdown.is_set() or self._tunnel.url != url:
                # The URL changed while we were probing; the result is stale.
                return self._health

            if ok:
                self._failures = 0
                if self._health != TunnelHealth.HEALTHY:
                    self._set_health(TunnelHealth.HEALTHY)
                return self._health

            self._failures += 1
            logger.warning(
                "Tunnel health: check {}/{} failed for {}",
                self._failures,
                self._settings.health_failure_threshold,
                url,
            )
            if self._failures == 1:
                self._set_health(TunnelHealth.CHECKING)
            if self._failures >= self._settings.health_failure_threshold:
                self._failures = 0
                self._set_health(TunnelHealth.DOWN)
                self._tunnel.clear_url()
                await self._tunnel.restart(RestartReason.MONITOR)
            return self._health

    async def verify_reachable(self, url: str) -> bool:
        """``True`` iff the health endpoint answers 200 through the tunnel."""
        headers = {"Authorization": f"Bearer {self._get_secret()}"}
        try:
            async with httpx.AsyncClient(timeout=self._settings.health_timeout) as client:
                response = await client.get(f"{url}{HEALTH_PATH}", headers=headers)
        except httpx.HTTPError as exc:
            logger.debug("Tunnel health: probe error: {!r}", exc)
            return False
        return response.status_code == 200

    # -- Internals -------------------------------------------------------------

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._settings.health_interval)
            try:
                await self.check_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Tunnel health: check crashed")

    def _set_health(self, health: TunnelHealth) -> None:
        if health != self._health:
            logger.info("Tunnel health: {} -> {}", self._health, health)
        self._health = health
        self._events.emit(UIChannel.TUNNEL_HEALTH, health.value)

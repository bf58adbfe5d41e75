"""Top-level aggregate that owns every subsystem and wires their cross-triggers.

Subsystems never reach into each other; the coordinator hands each one the
callbacks it needs:

- gateway reaches ``running``  -> observer connects to it
- gateway stops / exits        -> observer closes, presence resets (unless kept)
- tunnel publishes a URL       -> health monitor (re)starts on it
- health monitor declares down -> tunnel restart tagged ``monitor``
- host sleeps / wakes          -> presence pauses / resumes

A single ``asyncio.Event`` is the global "deliberately stopping" flag; every
supervisor checks it before reporting errors or restarting anything.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

import httpx
from anyio import to_thread
from loguru import logger

from clawdaunt.host.binaries import BinaryLocator
from clawdaunt.host.events import EventBus
from clawdaunt.host.models.api import AIConfigUpdate
from clawdaunt.host.models.config import Config, Workspace
from clawdaunt.host.models.enums import GatewayPhase, UIChannel
from clawdaunt.host.models.session import TunnelState
from clawdaunt.host.observer import ChannelFactory, SessionObserver
from clawdaunt.host.placeholder import PlaceholderServer
from clawdaunt.host.power import KeepAwake, SleepWatcher
from clawdaunt.host.presence import ClientPresenceTracker
from clawdaunt.host.settings import ClawSettings
from clawdaunt.host.store.base import ConfigStore
from clawdaunt.host.supervisors.gateway import GatewayProcessSupervisor, SpawnFn
from clawdaunt.host.supervisors.health import ProbeFn, TunnelHealthMonitor
from clawdaunt.host.supervisors.process import ManagedProcess
from clawdaunt.host.supervisors.tunnel import HostResolver, TunnelProcessSupervisor

if TYPE_CHECKING:
    from clawdaunt.host.proxy.app import HostProxy


class WorkspaceNotFoundError(LookupError):
    """Raised when a workspace id is not in the config."""


def _default_http_client() -> httpx.AsyncClient:
    # Streams (SSE) may stay open indefinitely; only connecting is bounded.
    return httpx.AsyncClient(timeout=httpx.Timeout(None, connect=5.0), follow_redirects=False)


class Coordinator:
    """Process-wide host state: config, supervisors, trackers and servers."""

    def __init__(
        self,
        *,
        settings: ClawSettings,
        store: ConfigStore,
        locator: BinaryLocator,
        events: EventBus | None = None,
        spawn: SpawnFn = ManagedProcess.spawn,
        resolver: HostResolver | None = None,
        probe: ProbeFn | None = None,
        channel_factory: ChannelFactory | None = None,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.store = store
        self.locator = locator
        self.events = events or EventBus()
        self.shutdown_event = asyncio.Event()
        self.http_client = http_client or _default_http_client()
        self._config = store.load()

        self.presence = ClientPresenceTracker(settings=settings, events=self.events, clock=clock)
        self.observer = SessionObserver(
            settings=settings,
            events=self.events,
            shutdown=self.shutdown_event,
            channel_factory=channel_factory,
            clock=clock,
        )
        self.gateway = GatewayProcessSupervisor(
            settings=settings,
            locator=locator,
            events=self.events,
            get_config=lambda: self.config,
            shutdown=self.shutdown_event,
            on_running=lambda config: self.observer.connect(config.port, config.password),
            on_stopped=self.observer.close,
            reset_presence=self.presence.reset,
            spawn=spawn,
        )
        self.tunnel = TunnelProcessSupervisor(
            settings=settings,
            locator=locator,
            events=self.events,
            get_config=lambda: self.config,
            shutdown=self.shutdown_event,
            resolver=resolver,
            on_url_published=self._on_url_published,
            spawn=spawn,
        )
        self.health = TunnelHealthMonitor(
            settings=settings,
            events=self.events,
            tunnel=self.tunnel,
            get_secret=lambda: self.config.password,
            shutdown=self.shutdown_event,
            probe=probe,
        )
        self.placeholder = PlaceholderServer(lambda: self.config.password)
        self.keep_awake = KeepAwake()
        self.sleep_watcher = SleepWatcher(
            interval=settings.sleep_check_interval,
            on_suspend=self.presence.suspend,
            on_resume=self.presence.resume,
        )
        self._proxy: HostProxy | None = None

    # -- Config ----------------------------------------------------------------

    @property
    def config(self) -> Config:
        return self._config

    @property
    def stopping(self) -> bool:
        return self.shutdown_event.is_set()

    @property
    def proxy(self) -> HostProxy | None:
        return self._proxy

    @property
    def tunnel_state(self) -> TunnelState:
        """Published tunnel URL together with its last health verdict."""
        return TunnelState(url=self.tunnel.url, health=self.health.health)

    def _save(self, config: Config) -> None:
        self.store.save(config)
        self._config = config

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Bring the host up.  Raises ``OSError`` if the proxy port is taken."""
        from clawdaunt.host.proxy.app import HostProxy

        config = self.config
        logger.info("Host starting (backend port={}, proxy port={})", config.port, config.proxy_port)
        await to_thread.run_sync(self.locator.warm)

        proxy = HostProxy(self)
        await proxy.start(self.settings.host, config.proxy_port)
        self._proxy = proxy

        await self.tunnel.start()

        if config.active_workspace() is None:
            logger.info("No active workspace, serving placeholder on port {}", config.port)
            try:
                await self.placeholder.start(config.port)
            except OSError as exc:
                self.events.error(f"Could not start placeholder server on port {config.port}: {exc}")
        else:
            await self.gateway.start()

        if self.settings.keep_awake:
            await self.keep_awake.start()
        self.sleep_watcher.start()

    async def restart_gateway(self, *, reset_presence: bool = False) -> bool:
        """Stop the gateway, then start it with the current config.

        The placeholder gives way only when there is a workspace to run the
        gateway in; otherwise it keeps serving the backend port.  The
        downstream gateway config is regenerated by ``gateway.start``.
        """
        process = self.gateway.stop(reset_presence=reset_presence)
        if process is not None:
            await process.stop(self.settings.process_stop_timeout)
        if self.config.active_workspace() is None:
            logger.info("No active workspace, gateway stays down")
            return False
        await self.placeholder.stop()
        return await self.gateway.start()

    async def stop_all(self) -> None:
        """Tear everything down in order.  Safe on a partially started host."""
        self.shutdown_event.set()
        logger.info("Host stopping")

        self.health.stop()
        self.observer.close()
        self.presence.stop()
        self.sleep_watcher.stop()

        proxy, self._proxy = self._proxy, None
        if proxy is not None:
            await proxy.stop()
        await self.placeholder.stop()
        await self.keep_awake.stop()
        await self.tunnel.shutdown()
        await self.gateway.shutdown()
        await self.http_client.aclose()

        self.events.emit(UIChannel.STATUS, GatewayPhase.STOPPED.value)
        self.events.emit(UIChannel.TUNNEL_URL, "")
        logger.info("Host stopped")

    # -- Config mutations ------------------------------------------------------

    async def update_ai_config(self, update: AIConfigUpdate) -> Config:
        """Persist a new AI source and restart the gateway once with it."""
        changes: dict[str, object] = {"ai_source": update.ai_source}
        if update.api_key is not None:
            changes["api_key"] = update.api_key
        if update.api_provider is not None:
            changes["api_provider"] = update.api_provider

        config = self.config.model_copy(update=changes)
        self._save(config)
        logger.info("AI source set to {} (provider={})", config.ai_source, config.api_provider)

        await self.restart_gateway()
        self.events.emit(UIChannel.CONFIG_CHANGED)
        return config

    async def set_active_workspace(self, workspace_id: str) -> Config:
        if self.config.find_workspace(workspace_id) is None:
            raise WorkspaceNotFoundError(workspace_id)

        config = self.config.model_copy(update={"active_workspace_id": workspace_id})
        self._save(config)
        logger.info("Active workspace set to {}", workspace_id)

        await self.restart_gateway()
        self.events.emit(UIChannel.CONFIG_CHANGED)
        return config

    async def add_workspace(self, path: str, *, name: str | None = None) -> Workspace | None:
        """Add a workspace; the first one becomes active and replaces the placeholder with the gateway."""
        had_active = self.config.active_workspace() is not None
        config = self.config.model_copy(deep=True)
        workspace = config.add_workspace(path, name=name)
        if workspace is None:
            return None

        self._save(config)
        logger.info("Workspace {} added at {}", workspace.id, path)
        if not had_active and config.active_workspace() is not None:
            await self.restart_gateway()
        self.events.emit(UIChannel.CONFIG_CHANGED)
        return workspace

    # -- Cross-triggers --------------------------------------------------------

    def _on_url_published(self, url: str) -> None:
        self.health.start(url)

"""AI-gateway process supervisor.

Owns the lifecycle of the single gateway child process:

- ``start`` regenerates the gateway config and launches the gateway bound to
  ``Config.port`` inside the active workspace's primary path.
- ``starting -> running`` happens after a fixed settle delay; the gateway
  has no readiness probe, so the delay is a conservative constant.
- ``stop`` is idempotent.  Each launch carries its own stop token, so the
  exit of a launch the operator stopped is never mistaken for a crash, even
  when a newer launch is already running (restart-for-config-change).

Unexpected exits are reported (``error`` phase and event for non-zero codes)
but never retried automatically -- the operator decides.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from loguru import logger

from clawdaunt.host.events import GATEWAY_LOG_CLEAR, EventBus
from clawdaunt.host.models.enums import GatewayPhase, UIChannel
from clawdaunt.host.supervisors.downstream import api_key_env, write_gateway_config
from clawdaunt.host.supervisors.process import ManagedProcess

if TYPE_CHECKING:
    from clawdaunt.host.binaries import BinaryLocator
    from clawdaunt.host.models.config import Config
    from clawdaunt.host.settings import ClawSettings

_ANSI_COLOR = re.compile(r"\x1b\[[0-9;]*m")

SpawnFn = Callable[..., Awaitable[ManagedProcess]]


def strip_ansi(text: str) -> str:
    return _ANSI_COLOR.sub("", text)


def gateway_argv(binary: str, config: Config) -> list[str]:
    return [
        binary,
        "gateway",
        "--port",
        str(config.port),
        "--token",
        config.password,
        "--allow-unconfigured",
        "--force",
        "--compact",
    ]


@dataclass
class _Launch:
    process: ManagedProcess
    stop_requested: bool = False


class GatewayProcessSupervisor:
    """Start, stop and observe the gateway child process."""

    def __init__(
        self,
        *,
        settings: ClawSettings,
        locator: BinaryLocator,
        events: EventBus,
        get_config: Callable[[], Config],
        shutdown: asyncio.Event,
        on_running: Callable[[Config], None] | None = None,
        on_stopped: Callable[[], None] | None = None,
        reset_presence: Callable[[], None] | None = None,
        spawn: SpawnFn = ManagedProcess.spawn,
    ) -> None:
        self._settings = settings
        self._locator = locator
        self._events = events
        self._get_config = get_config
        self._shutdown = shutdown
        self._on_running = on_running
        self._on_stopped = on_stopped
        self._reset_presence = reset_presence
        self._spawn = spawn

        self._phase = GatewayPhase.STOPPED
        self._launch: _Launch | None = None
        self._settle_task: asyncio.Task[None] | None = None
        self._watch_tasks: set[asyncio.Task[None]] = set()

    # -- Query -----------------------------------------------------------------

    @property
    def phase(self) -> GatewayPhase:
        return self._phase

    @property
    def process(self) -> ManagedProcess | None:
        return self._launch.process if self._launch else None

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> bool:
        """Launch the gateway.  Returns ``False`` (with an error event) if it could not."""
        if self._shutdown.is_set():
            return False
        if self._launch is not None:
            logger.debug("Gateway: start ignored, pid={} already live", self._launch.process.pid)
            return True

        config = self._get_config()
        binary = self._locator.find(self._settings.gateway_binary)
        if binary is None:
            self._events.error(f"{self._settings.gateway_binary} not found. Install with: brew install openclaw-cli")
            return False

        workspace = config.active_workspace()
        if workspace is None:
            self._events.error("No active workspace configured. Create a workspace first.")
            return False

        try:
            write_gateway_config(self._settings.gateway_config_path, config, self._locator)
        except OSError as exc:
            self._events.error(f"Could not write gateway config: {exc}")
            return False

        self._events.emit(UIChannel.GATEWAY_LOG, GATEWAY_LOG_CLEAR)
        self._set_phase(GatewayPhase.STARTING)

        env = self._locator.enriched_env({"OPENCLAW_GATEWAY_TOKEN": config.password, **api_key_env(config)})
        try:
            process = await self._spawn(
                "gateway",
                gateway_argv(binary, config),
                env=env,
                cwd=workspace.primary_path,
                on_output=self._forward_log,
            )
        except OSError as exc:
            self._set_phase(GatewayPhase.ERROR)
            self._events.error(f"{self._settings.gateway_binary} error: {exc}")
            return False

        launch = _Launch(process)
        self._launch = launch
        logger.info("Gateway: launched on port {} in {} (source={})", config.port, workspace.primary_path, config.ai_source)

        watch = asyncio.create_task(self._watch(launch), name="gateway-exit")
        self._watch_tasks.add(watch)
        watch.add_done_callback(self._watch_tasks.discard)
        self._settle_task = asyncio.create_task(self._settle(launch, config), name="gateway-settle")
        return True

    def stop(self, *, reset_presence: bool = True) -> ManagedProcess | None:
        """Operator-requested stop.  Safe to call repeatedly.

        Returns the process that was signalled, if any, so callers that need
        to wait for it (full shutdown) can do so.
        """
        launch, self._launch = self._launch, None
        if self._settle_task is not None:
            self._settle_task.cancel()
            self._settle_task = None

        if launch is not None:
            launch.stop_requested = True
            launch.process.terminate()
            logger.info("Gateway: stop requested (pid={})", launch.process.pid)

        self._set_phase(GatewayPhase.STOPPED)
        if self._on_stopped is not None:
            self._on_stopped()
        if reset_presence and self._reset_presence is not None:
            self._reset_presence()
        return launch.process if launch else None

    async def shutdown(self) -> None:
        """Stop and wait for the process to exit (SIGKILL after the stop timeout)."""
        process = self.stop(reset_presence=False)
        if process is not None:
            await process.stop(self._settings.process_stop_timeout)

    # -- Internals -------------------------------------------------------------

    async def _settle(self, launch: _Launch, config: Config) -> None:
        await asyncio.sleep(self._settings.gateway_settle_delay)
        if self._launch is not launch or launch.stop_requested or self._shutdown.is_set():
            return
        if not launch.process.running:
            return
        self._set_phase(GatewayPhase.RUNNING)
        if self._on_running is not None:
            self._on_running(config)

    async def _watch(self, launch: _Launch) -> None:
        code = await launch.process.wait()
        if self._launch is launch:
            self._launch = None

        if launch.stop_requested or self._shutdown.is_set():
            logger.info("Gateway: pid={} exited with code {} after stop", launch.process.pid, code)
            return

        logger.warning("Gateway: pid={} exited unexpectedly with code {}", launch.process.pid, code)
        if self._settle_task is not None:
            self._settle_task.cancel()
            self._settle_task = None
        self._set_phase(GatewayPhase.STOPPED if code == 0 else GatewayPhase.ERROR)
        if code != 0:
            self._events.error(f"{self._settings.gateway_binary} exited with code {code}")
        if self._on_stopped is not None:
            self._on_stopped()
        if self._reset_presence is not None:
            self._reset_presence()

    def _forward_log(self, text: str) -> None:
        clean = strip_ansi(text)
        if not clean.strip():
            return
        logger.debug("gateway | {}", clean.rstrip())
        self._events.emit(UIChannel.GATEWAY_LOG, clean)

    def _set_phase(self, phase: GatewayPhase) -> None:
        if phase == self._phase:
            return
        logger.info("Gateway: {} -> {}", self._phase, phase)
        self._phase = phase
        self._events.emit(UIChannel.STATUS, phase.value)

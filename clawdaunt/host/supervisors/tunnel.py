"""Public-tunnel process supervisor.

The tunnel process is pointed at the reverse proxy's port (never at the
gateway).  Its combined output is scanned line by line for two signals:

- a rate-limit signature from the tunnel provider, and
- the public URL it was assigned.

A freshly issued hostname is not resolvable for a while, so the URL is only
published once DNS for it resolves against fixed external nameservers.
Publishing the URL starts the health monitor.

Every launch carries an explicit exit reason (``RestartReason``):

- ``operator`` -- stopped on purpose; do nothing on exit.
- ``monitor``  -- the health monitor killed it and already started a
  replacement; do nothing on exit.
- ``organic``  -- it died by itself; clear the URL and restart after a short
  delay, or a long one if the provider rate-limited us.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol
from urllib.parse import urlsplit

import dns.asyncresolver
import dns.exception
from loguru import logger

from clawdaunt.host.events import EventBus
from clawdaunt.host.models.enums import RestartReason, UIChannel
from clawdaunt.host.supervisors.process import ManagedProcess

if TYPE_CHECKING:
    from clawdaunt.host.binaries import BinaryLocator
    from clawdaunt.host.models.config import Config
    from clawdaunt.host.settings import ClawSettings

SpawnFn = Callable[..., Awaitable[ManagedProcess]]

RATE_LIMIT_MESSAGE = "Cloudflare rate limit hit. Please wait a few minutes and retry."


# ---------------------------------------------------------------------------
# Output parsing
# ---------------------------------------------------------------------------


class TunnelSignalKind(StrEnum):
    URL = "url"
    RATE_LIMITED = "rate_limited"


@dataclass(frozen=True)
class TunnelSignal:
    kind: TunnelSignalKind
    url: str | None = None


class TunnelOutputParser:
    """Extract structured signals from the tunnel's text output.

    Fed raw output chunks; buffers partial lines.  Once a URL has been found
    the remaining output is ignored.
    """

    URL_PATTERN = re.compile(r"https://[a-zA-Z0-9-]+\.trycloudflare\.com")
    RATE_LIMIT_MARKERS = ("429", "Too Many Requests")

    def __init__(self) -> None:
        self._buffer = ""
        self.url: str | None = None
        self.rate_limited = False

    def feed(self, text: str) -> list[TunnelSignal]:
        if self.url is not None:
            return []
        self._buffer += text
        *lines, self._buffer = self._buffer.split("\n")
        signals: list[TunnelSignal] = []
        for line in lines:
            signal = self.parse_line(line)
            if signal is not None:
                signals.append(signal)
            if self.url is not None:
                break
        return signals

    def feed_lines(self, lines: Sequence[str]) -> list[TunnelSignal]:
        """Convenience for recorded transcripts."""
        return self.feed("".join(f"{line}\n" for line in lines))

    def parse_line(self, line: str) -> TunnelSignal | None:
        if any(marker in line for marker in self.RATE_LIMIT_MARKERS):
            self.rate_limited = True
            return TunnelSignal(TunnelSignalKind.RATE_LIMITED)
        match = self.URL_PATTERN.search(line)
        if match:
            self.url = match.group(0)
            return TunnelSignal(TunnelSignalKind.URL, self.url)
        return None


# ---------------------------------------------------------------------------
# DNS
# ---------------------------------------------------------------------------


class HostResolver(Protocol):
    async def resolves(self, hostname: str) -> bool: ...


class NameserverResolver:
    """A-record lookups against fixed nameservers, bypassing the system resolver cache."""

    def __init__(self, nameservers: Sequence[str], lifetime: float = 2.0) -> None:
        self._resolver = dns.asyncresolver.Resolver(configure=False)
        self._resolver.nameservers = list(nameservers)
        self._lifetime = lifetime

    async def resolves(self, hostname: str) -> bool:
        try:
            await self._resolver.resolve(hostname, "A", lifetime=self._lifetime)
        except dns.exception.DNSException:
            return False
        return True


# ---------------------------------------------------------------------------
# Exit disposition
# ---------------------------------------------------------------------------


def restart_delay(
    reason: RestartReason,
    *,
    rate_limited: bool,
    shutting_down: bool,
    base_delay: float,
    rate_limit_delay: float,
) -> float | None:
    """Seconds to wait before restarting after an exit, or ``None`` for no restart."""
    if shutting_down or reason != RestartReason.ORGANIC:
        return None
    return rate_limit_delay if rate_limited else base_delay


# ---------------------------------------------------------------------------
# Supervisor
# ---------------------------------------------------------------------------


def tunnel_argv(binary: str, config: Config) -> list[str]:
    return [binary, "tunnel", "--url", f"http://localhost:{config.proxy_port}"]


@dataclass
class _TunnelLaunch:
    process: ManagedProcess
    parser: TunnelOutputParser
    exit_reason: RestartReason = RestartReason.ORGANIC
    dns_task: asyncio.Task[None] | None = field(default=None, repr=False)


class TunnelProcessSupervisor:
    """Keep exactly one tunnel process alive and publish its URL."""

    def __init__(
        self,
        *,
        settings: ClawSettings,
        locator: BinaryLocator,
        events: EventBus,
        get_config: Callable[[], Config],
        shutdown: asyncio.Event,
        resolver: HostResolver | None = None,
        on_url_published: Callable[[str], None] | None = None,
        spawn: SpawnFn = ManagedProcess.spawn,
    ) -> None:
        self._settings = settings
        self._locator = locator
        self._events = events
        self._get_config = get_config
        self._shutdown = shutdown
        self._resolver = resolver or NameserverResolver(settings.dns_nameservers)
        self._on_url_published = on_url_published
        self._spawn = spawn

        self._url = ""
        self._launch: _TunnelLaunch | None = None
        self._restart_task: asyncio.Task[None] | None = None
        self._watch_tasks: set[asyncio.Task[None]] = set()

    # -- Query -----------------------------------------------------------------

    @property
    def url(self) -> str:
        return self._url

    @property
    def process(self) -> ManagedProcess | None:
        return self._launch.process if self._launch else None

    @property
    def restart_pending(self) -> bool:
        return self._restart_task is not None and not self._restart_task.done()

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> bool:
        """Launch the tunnel.  Returns ``False`` (with an error event) if it could not."""
        if self._shutdown.is_set():
            return False
        self._cancel_pending_restart()
        if self._launch is not None:
            logger.debug("Tunnel: start ignored, pid={} already live", self._launch.process.pid)
            return True

        binary = self._locator.find(self._settings.tunnel_binary)
        if binary is None:
            self._events.error(
                f"{self._settings.tunnel_binary} not found. Install with: brew install cloudflare/cloudflare/cloudflared"
            )
            return False

        config = self._get_config()
        parser = TunnelOutputParser()
        try:
            process = await self._spawn(
                "tunnel",
                tunnel_argv(binary, config),
                env=self._locator.enriched_env(),
                on_output=lambda text: self._handle_output(parser, text),
            )
        except OSError as exc:
            self._events.error(f"{self._settings.tunnel_binary} error: {exc}")
            return False

        launch = _TunnelLaunch(process, parser)
        self._launch = launch
        logger.info("Tunnel: launched towards proxy port {}", config.proxy_port)

        watch = asyncio.create_task(self._watch(launch), name="tunnel-exit")
        self._watch_tasks.add(watch)
        watch.add_done_callback(self._watch_tasks.discard)
        return True

    async def restart(self, reason: RestartReason = RestartReason.MONITOR) -> bool:
        """Kill the current process and start a new one immediately.

        The killed launch is tagged with *reason* so its exit handler does
        not schedule a second restart.
        """
        self._detach(reason)
        return await self.start()

    def stop(self) -> ManagedProcess | None:
        """Operator-requested stop; no restart follows."""
        self._cancel_pending_restart()
        process = self._detach(RestartReason.OPERATOR)
        self.clear_url()
        return process

    async def shutdown(self) -> None:
        process = self.stop()
        if process is not None:
            await process.stop(self._settings.process_stop_timeout)

    def clear_url(self) -> None:
        if self._url:
            logger.info("Tunnel: URL cleared")
            self._url = ""
            self._events.emit(UIChannel.TUNNEL_URL, "")

    # -- Internals -------------------------------------------------------------

    def _detach(self, reason: RestartReason) -> ManagedProcess | None:
        launch, self._launch = self._launch, None
        if launch is None:
            return None
        launch.exit_reason = reason
        if launch.dns_task is not None:
            launch.dns_task.cancel()
        launch.process.terminate()
        logger.info("Tunnel: terminating pid={} (reason={})", launch.process.pid, reason)
        return launch.process

    def _cancel_pending_restart(self) -> None:
        task = self._restart_task
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        self._restart_task = None

    def _handle_output(self, parser: TunnelOutputParser, text: str) -> None:
        launch = self._launch
        if launch is None or launch.parser is not parser:
            return
        for signal in parser.feed(text):
            if signal.kind == TunnelSignalKind.RATE_LIMITED:
                self._events.error(RATE_LIMIT_MESSAGE)
            elif signal.url is not None:
                logger.info("Tunnel: assigned {}, waiting for DNS", signal.url)
                launch.dns_task = asyncio.create_task(self._await_dns(launch, signal.url), name="tunnel-dns")

    async def _await_dns(self, launch: _TunnelLaunch, url: str) -> None:
        hostname = urlsplit(url).hostname or ""
        loop = asyncio.get_running_loop()
        started = loop.time()
        while True:
            if self._shutdown.is_set() or self._launch is not launch:
                return
            if loop.time() - started > self._settings.dns_timeout:
                logger.warning("Tunnel: {} did not resolve within {}s, killing tunnel", hostname, self._settings.dns_timeout)
                launch.process.terminate()
                return
            if await self._resolver.resolves(hostname):
                break
            await asyncio.sleep(self._settings.dns_poll_interval)

        if self._shutdown.is_set() or self._launch is not launch:
            return
        self._url = url
        logger.info("Tunnel: published {}", url)
        self._events.emit(UIChannel.TUNNEL_URL, url)
        if self._on_url_published is not None:
            self._on_url_published(url)

    async def _watch(self, launch: _TunnelLaunch) -> None:
        code = await launch.process.wait()
        if self._launch is launch:
            self._launch = None
        if launch.dns_task is not None:
            launch.dns_task.cancel()

        delay = restart_delay(
            launch.exit_reason,
            rate_limited=launch.parser.rate_limited,
            shutting_down=self._shutdown.is_set(),
            base_delay=self._settings.tunnel_restart_delay,
            rate_limit_delay=self._settings.tunnel_rate_limit_delay,
        )
        if delay is None:
            logger.info("Tunnel: pid={} exited with code {} (reason={})", launch.process.pid, code, launch.exit_reason)
            return

        logger.warning("Tunnel: pid={} exited with code {}, restarting in {}s", launch.process.pid, code, delay)
        self.clear_url()
        self._cancel_pending_restart()
        self._restart_task = asyncio.create_task(self._restart_later(delay), name="tunnel-restart")

    async def _restart_later(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._shutdown.is_set():
            return
        await self.start()

"""Unit tests for TunnelHealthMonitor.

Checks are driven with ``check_once()``; the tunnel is a real supervisor on
fake processes so the monitor/exit-handler interplay is exercised end to end.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest
from fakes import EventRecorder, FakeSpawner, StubResolver

from clawdaunt.host.binaries import BinaryLocator
from clawdaunt.host.events import EventBus
from clawdaunt.host.models.config import Config
from clawdaunt.host.models.enums import TunnelHealth, UIChannel
from clawdaunt.host.settings import ClawSettings
from clawdaunt.host.supervisors.health import TunnelHealthMonitor
from clawdaunt.host.supervisors.tunnel import TunnelProcessSupervisor

URL = "https://calm-lake-xyz.trycloudflare.com"


@pytest.fixture
def shutdown() -> asyncio.Event:
    return asyncio.Event()


@pytest.fixture
def probe() -> AsyncMock:
    return AsyncMock(return_value=True)


@pytest.fixture
def tunnel(
    settings: ClawSettings,
    locator: BinaryLocator,
    events: EventBus,
    spawner: FakeSpawner,
    resolver: StubResolver,
    shutdown: asyncio.Event,
) -> TunnelProcessSupervisor:
    return TunnelProcessSupervisor(
        settings=settings,
        locator=locator,
        events=events,
        get_config=Config,
        shutdown=shutdown,
        resolver=resolver,
        spawn=spawner,
    )


@pytest.fixture
def monitor(
    settings: ClawSettings,
    events: EventBus,
    tunnel: TunnelProcessSupervisor,
    shutdown: asyncio.Event,
    probe: AsyncMock,
) -> TunnelHealthMonitor:
    return TunnelHealthMonitor(
        settings=settings,
        events=events,
        tunnel=tunnel,
        get_secret=lambda: "secret",
        shutdown=shutdown,
        probe=probe,
    )


async def _publish(tunnel: TunnelProcessSupervisor, spawner: FakeSpawner) -> None:
    await tunnel.start()
    spawner.last("tunnel").output(f"INF |  {URL}  |\n")
    await asyncio.sleep(0.05)
    assert tunnel.url == URL


async def test_success_keeps_healthy(
    monitor: TunnelHealthMonitor,
    tunnel: TunnelProcessSupervisor,
    spawner: FakeSpawner,
    probe: AsyncMock,
) -> None:
    await _publish(tunnel, spawner)
    monitor.start(URL)
    assert monitor.running

    assert await monitor.check_once() == TunnelHealth.HEALTHY
    probe.assert_awaited_once_with(URL)
    monitor.stop()
    assert not monitor.running


async def test_three_failures_restart_tunnel_exactly_once(
    monitor: TunnelHealthMonitor,
    tunnel: TunnelProcessSupervisor,
    spawner: FakeSpawner,
    recorder: EventRecorder,
    probe: AsyncMock,
) -> None:
    await _publish(tunnel, spawner)
    monitor.start(URL)
    recorder.clear()
    probe.return_value = False

    assert await monitor.check_once() == TunnelHealth.CHECKING
    assert await monitor.check_once() == TunnelHealth.CHECKING
    assert len(spawner.named("tunnel")) == 1

    assert await monitor.check_once() == TunnelHealth.DOWN
    await asyncio.sleep(0.2)  # longer than the organic restart delay

    assert recorder.on(UIChannel.TUNNEL_HEALTH) == ["checking", "down"]
    assert recorder.on(UIChannel.TUNNEL_URL) == [""]
    assert spawner.named("tunnel")[0].terminated
    assert len(spawner.named("tunnel")) == 2
    assert not tunnel.restart_pending
    assert monitor.failures == 0


async def test_recovery_resets_counter(
    monitor: TunnelHealthMonitor,
    tunnel: TunnelProcessSupervisor,
    spawner: FakeSpawner,
    recorder: EventRecorder,
    probe: AsyncMock,
) -> None:
    await _publish(tunnel, spawner)
    monitor.start(URL)
    recorder.clear()

    probe.return_value = False
    await monitor.check_once()
    await monitor.check_once()
    assert monitor.failures == 2

    probe.return_value = True
    assert await monitor.check_once() == TunnelHealth.HEALTHY
    assert monitor.failures == 0
    assert recorder.on(UIChannel.TUNNEL_HEALTH) == ["checking", "healthy"]


async def test_no_work_without_url(monitor: TunnelHealthMonitor, probe: AsyncMock) -> None:
    await monitor.check_once()
    probe.assert_not_awaited()


async def test_no_work_during_shutdown(
    monitor: TunnelHealthMonitor,
    tunnel: TunnelProcessSupervisor,
    spawner: FakeSpawner,
    shutdown: asyncio.Event,
    probe: AsyncMock,
) -> None:
    await _publish(tunnel, spawner)
    shutdown.set()
    await monitor.check_once()
    probe.assert_not_awaited()


async def test_stale_result_ignored(
    monitor: TunnelHealthMonitor,
    tunnel: TunnelProcessSupervisor,
    spawner: FakeSpawner,
    probe: AsyncMock,
) -> None:
    await _publish(tunnel, spawner)
    monitor.start(URL)

    async def _probe(_url: str) -> bool:
        tunnel.clear_url()
        return False

    probe.side_effect = _probe
    assert await monitor.check_once() == TunnelHealth.HEALTHY
    assert monitor.failures == 0


async def test_verify_reachable_sends_bearer(
    monitor: TunnelHealthMonitor,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    seen: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"status": "ok", "protocolVersion": 1})

    real_client = httpx.AsyncClient
    monkeypatch.setattr(
        "clawdaunt.host.supervisors.health.httpx.AsyncClient",
        lambda **kwargs: real_client(transport=httpx.MockTransport(_handler), **kwargs),
    )

    assert await monitor.verify_reachable(URL) is True
    assert str(seen[0].url) == f"{URL}/global/health"
    assert seen[0].headers["authorization"] == "Bearer secret"


async def test_verify_reachable_connection_error(
    monitor: TunnelHealthMonitor,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("no route", request=request)

    real_client = httpx.AsyncClient
    monkeypatch.setattr(
        "clawdaunt.host.supervisors.health.httpx.AsyncClient",
        lambda **kwargs: real_client(transport=httpx.MockTransport(_handler), **kwargs),
    )
    assert await monitor.verify_reachable(URL) is False

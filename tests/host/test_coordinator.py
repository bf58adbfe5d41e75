"""Tests for the Coordinator: startup branches, config mutations and cross-triggers.

Child processes are faked; the proxy and placeholder bind real loopback
ports picked from the OS.
"""

from __future__ import annotations

import asyncio
import socket
import threading
from pathlib import Path

import pytest
from fakes import EventRecorder, FakeSpawner

from clawdaunt.host.coordinator import Coordinator, WorkspaceNotFoundError
from clawdaunt.host.models.api import AIConfigUpdate
from clawdaunt.host.models.config import Config
from clawdaunt.host.models.enums import AISource, GatewayPhase, TunnelHealth, UIChannel
from clawdaunt.host.settings import ClawSettings
from clawdaunt.host.store.local import LocalConfigStore

URL = "https://quiet-river-abc.trycloudflare.com"


def free_port_pair() -> int:
    """A port whose successor is also free at the time of the call."""
    for _ in range(20):
        with socket.socket() as low, socket.socket() as high:
            low.bind(("127.0.0.1", 0))
            port = low.getsockname()[1]
            try:
                high.bind(("127.0.0.1", port + 1))
            except OSError:
                continue
            return port
    pytest.skip("no adjacent free ports")


@pytest.fixture
def settings(settings: ClawSettings) -> ClawSettings:
    return settings.model_copy(update={"host": "127.0.0.1"})


@pytest.fixture
def store(settings: ClawSettings) -> LocalConfigStore:
    store = LocalConfigStore(settings.config_path)
    store.save(Config(port=free_port_pair()))
    return store


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


async def test_start_without_workspace_serves_placeholder(
    coordinator: Coordinator,
    spawner: FakeSpawner,
) -> None:
    await coordinator.start()

    assert coordinator.proxy is not None and coordinator.proxy.running
    assert coordinator.proxy.port == coordinator.config.proxy_port
    assert coordinator.placeholder.running
    assert spawner.named("gateway") == []
    tunnel = spawner.last("tunnel")
    assert tunnel.argv[-1] == f"http://localhost:{coordinator.config.proxy_port}"


async def test_first_workspace_replaces_placeholder(
    coordinator: Coordinator,
    spawner: FakeSpawner,
    workspace_dir: Path,
    recorder: EventRecorder,
) -> None:
    await coordinator.start()
    workspace = await coordinator.add_workspace(str(workspace_dir))

    assert workspace is not None
    assert coordinator.config.active_workspace_id == workspace.id
    assert not coordinator.placeholder.running
    gateway = spawner.last("gateway")
    assert gateway.cwd == str(workspace_dir)
    assert recorder.on(UIChannel.CONFIG_CHANGED)

    # Neither a second workspace nor a duplicate path restarts anything.
    assert await coordinator.add_workspace(str(workspace_dir)) is None
    assert await coordinator.add_workspace(str(workspace_dir.parent / "other")) is not None
    assert len(spawner.named("gateway")) == 1
    assert coordinator.store.load().active_workspace_id == workspace.id


async def test_start_with_workspace_launches_gateway(
    coordinator: Coordinator,
    spawner: FakeSpawner,
    workspace_dir: Path,
    settings: ClawSettings,
) -> None:
    await coordinator.add_workspace(str(workspace_dir))
    spawner.processes.clear()
    coordinator.gateway.stop()

    await coordinator.start()
    assert not coordinator.placeholder.running
    assert len(spawner.named("gateway")) == 1

    await asyncio.sleep(settings.gateway_settle_delay * 3)
    assert coordinator.gateway.phase == GatewayPhase.RUNNING


async def test_start_resolves_search_path_in_worker_thread(
    coordinator: Coordinator,
    bin_dir: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    threads: list[threading.Thread] = []

    def warm() -> list[str]:
        threads.append(threading.current_thread())
        return [str(bin_dir)]

    monkeypatch.setattr(coordinator.locator, "warm", warm)
    await coordinator.start()

    assert len(threads) == 1
    assert threads[0] is not threading.main_thread()


async def test_proxy_port_in_use_raises(coordinator: Coordinator) -> None:
    with socket.socket() as taken:
        taken.bind(("127.0.0.1", coordinator.config.proxy_port))
        taken.listen()
        with pytest.raises(OSError):
            await coordinator.start()
    assert coordinator.proxy is None


async def test_tunnel_url_starts_health_monitor(coordinator: Coordinator, spawner: FakeSpawner) -> None:
    await coordinator.start()
    assert not coordinator.health.running

    spawner.last("tunnel").output(f"INF |  {URL}  |\n")
    await asyncio.sleep(0.1)

    assert coordinator.tunnel_state.url == URL
    assert coordinator.tunnel_state.health == TunnelHealth.HEALTHY
    assert coordinator.health.running


# ---------------------------------------------------------------------------
# Config mutations
# ---------------------------------------------------------------------------


async def test_update_ai_config_restarts_with_credentials(
    coordinator: Coordinator,
    spawner: FakeSpawner,
    workspace_dir: Path,
    recorder: EventRecorder,
) -> None:
    await coordinator.add_workspace(str(workspace_dir))
    first = spawner.last("gateway")
    recorder.clear()

    config = await coordinator.update_ai_config(
        AIConfigUpdate(ai_source=AISource.API_KEY, api_key="sk-test", api_provider="openai"),
    )

    assert config.ai_source == AISource.API_KEY
    assert coordinator.store.load().api_key == "sk-test"
    assert first.terminated
    second = spawner.last("gateway")
    assert second is not first
    assert second.env["OPENAI_API_KEY"] == "sk-test"
    assert len(recorder.on(UIChannel.CONFIG_CHANGED)) == 1


async def test_update_ai_config_without_workspace_keeps_placeholder(
    coordinator: Coordinator,
    spawner: FakeSpawner,
    recorder: EventRecorder,
) -> None:
    await coordinator.start()
    assert coordinator.placeholder.running
    recorder.clear()

    config = await coordinator.update_ai_config(AIConfigUpdate(ai_source=AISource.CODEX_CLI))

    assert config.ai_source == AISource.CODEX_CLI
    assert coordinator.placeholder.running
    assert spawner.named("gateway") == []
    assert recorder.on(UIChannel.ERROR) == []
    assert len(recorder.on(UIChannel.CONFIG_CHANGED)) == 1


async def test_set_active_workspace(
    coordinator: Coordinator,
    spawner: FakeSpawner,
    workspace_dir: Path,
    tmp_path: Path,
) -> None:
    await coordinator.add_workspace(str(workspace_dir))
    other = await coordinator.add_workspace(str(tmp_path))
    assert other is not None

    config = await coordinator.set_active_workspace(other.id)
    assert config.active_workspace_id == other.id
    assert spawner.last("gateway").cwd == str(tmp_path)

    with pytest.raises(WorkspaceNotFoundError):
        await coordinator.set_active_workspace("missing")
    assert coordinator.config.active_workspace_id == other.id


# ---------------------------------------------------------------------------
# Shutdown
# ---------------------------------------------------------------------------


async def test_stop_all_when_never_started(coordinator: Coordinator, recorder: EventRecorder) -> None:
    await coordinator.stop_all()

    assert coordinator.stopping
    assert recorder.on(UIChannel.STATUS)[-1] == "stopped"
    assert recorder.on(UIChannel.TUNNEL_URL)[-1] == ""


async def test_stop_all_tears_everything_down(
    coordinator: Coordinator,
    spawner: FakeSpawner,
    workspace_dir: Path,
) -> None:
    await coordinator.add_workspace(str(workspace_dir))
    await coordinator.start()

    await coordinator.stop_all()

    assert coordinator.proxy is None
    assert all(not p.running for p in spawner.processes)
    assert not coordinator.health.running
    assert not coordinator.placeholder.running
    # Nothing restarts once stopping.
    assert await coordinator.gateway.start() is False

"""Shared fixtures for host tests.

Every path points into ``tmp_path``; child processes, DNS and the gateway
backend are faked (see ``fakes.py``).  Timers are kept short so the few
tests that let a loop run finish quickly.
"""

from __future__ import annotations

import os
from collections.abc import AsyncIterator, Iterator
from pathlib import Path

import httpx
import pytest
from fakes import EventRecorder, FakeBackend, FakeSpawner, StubResolver, make_executable
from httpx import ASGITransport, AsyncClient

from clawdaunt.host.binaries import BinaryLocator
from clawdaunt.host.coordinator import Coordinator
from clawdaunt.host.events import EventBus
from clawdaunt.host.proxy.app import create_proxy_app
from clawdaunt.host.settings import ClawSettings, _get_settings_cached
from clawdaunt.host.store.local import LocalConfigStore


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Drop CLAWDAUNT_* variables inherited from the real environment."""
    for key in list(os.environ):
        if key.startswith("CLAWDAUNT_"):
            monkeypatch.delenv(key)
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    _get_settings_cached.cache_clear()
    yield
    _get_settings_cached.cache_clear()


# ---------------------------------------------------------------------------
# Settings, binaries, store
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> ClawSettings:
    return ClawSettings(
        _env_file=None,
        config_dir=tmp_path / "config",
        gateway_home=tmp_path / "openclaw",
        cli_projects_dir=tmp_path / "projects",
        gateway_settle_delay=0.05,
        tunnel_restart_delay=0.05,
        tunnel_rate_limit_delay=60.0,
        dns_poll_interval=0.01,
        dns_timeout=0.2,
        health_interval=60.0,
        presence_poll_interval=60.0,
        observer_reconnect_delay=0.05,
        process_stop_timeout=0.5,
        keep_awake=False,
        sleep_check_interval=60.0,
    )


@pytest.fixture
def bin_dir(tmp_path: Path) -> Path:
    """A search directory holding stub ``openclaw`` and ``cloudflared`` executables."""
    directory = tmp_path / "bin"
    make_executable(directory, "openclaw")
    make_executable(directory, "cloudflared")
    return directory


@pytest.fixture
def locator(bin_dir: Path) -> BinaryLocator:
    return BinaryLocator(search_paths=[str(bin_dir)])


@pytest.fixture
def empty_locator(tmp_path: Path) -> BinaryLocator:
    return BinaryLocator(search_paths=[str(tmp_path / "nothing")])


@pytest.fixture
def store(settings: ClawSettings) -> LocalConfigStore:
    return LocalConfigStore(settings.config_path)


@pytest.fixture
def workspace_dir(tmp_path: Path) -> Path:
    path = tmp_path / "project"
    path.mkdir()
    return path


# ---------------------------------------------------------------------------
# Events and fakes
# ---------------------------------------------------------------------------


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(events: EventBus) -> EventRecorder:
    return EventRecorder(events)


@pytest.fixture
def spawner() -> FakeSpawner:
    return FakeSpawner()


@pytest.fixture
def resolver() -> StubResolver:
    return StubResolver()


# ---------------------------------------------------------------------------
# Coordinator and proxy client
# ---------------------------------------------------------------------------


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
async def coordinator(
    settings: ClawSettings,
    store: LocalConfigStore,
    locator: BinaryLocator,
    events: EventBus,
    spawner: FakeSpawner,
    resolver: StubResolver,
    backend: FakeBackend,
) -> AsyncIterator[Coordinator]:
    coordinator = Coordinator(
        settings=settings,
        store=store,
        locator=locator,
        events=events,
        spawn=spawner,
        resolver=resolver,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(backend)),
    )
    yield coordinator
    await coordinator.stop_all()


@pytest.fixture
def auth(coordinator: Coordinator) -> dict[str, str]:
    return {"Authorization": f"Bearer {coordinator.config.password}"}


@pytest.fixture
async def client(coordinator: Coordinator) -> AsyncIterator[AsyncClient]:
    """HTTP client wired to the proxy control app (no sockets involved)."""
    transport = ASGITransport(app=create_proxy_app(coordinator))
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

"""Test doubles for child processes, DNS, the gateway backend and the UI boundary.

Nothing here spawns a real process: supervisors receive ``FakeSpawner`` as
their ``spawn`` and get ``FakeProcess`` objects the test drives directly.
"""

from __future__ import annotations

import asyncio
import itertools
import stat
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

import httpx

from clawdaunt.host.events import EventBus
from clawdaunt.host.models.enums import UIChannel


async def settle(rounds: int = 10) -> None:
    """Let pending tasks (exit watchers, DNS polls) run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_executable(directory: Path, name: str, body: str = "#!/bin/sh\nexit 0\n") -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text(body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class EventRecorder:
    """Subscribes to an EventBus and keeps every emission."""

    def __init__(self, bus: EventBus) -> None:
        self.events: list[tuple[UIChannel, Any]] = []
        bus.subscribe(self._record)

    def _record(self, channel: UIChannel, payload: Any) -> None:
        self.events.append((channel, payload))

    def on(self, channel: UIChannel) -> list[Any]:
        return [payload for ch, payload in self.events if ch == channel]

    def clear(self) -> None:
        self.events.clear()


# ---------------------------------------------------------------------------
# Child processes
# ---------------------------------------------------------------------------

_pids = itertools.count(1000)


class FakeProcess:
    """Stands in for ``ManagedProcess``; the test decides when it prints and exits."""

    def __init__(
        self,
        name: str,
        argv: Sequence[str],
        *,
        env: dict[str, str] | None,
        cwd: str | None,
        on_output: Any,
    ) -> None:
        self.name = name
        self.argv = list(argv)
        self.env = env or {}
        self.cwd = cwd
        self.on_output = on_output
        self.pid = next(_pids)
        self.returncode: int | None = None
        self.terminated = False
        self._exited = asyncio.Event()

    @property
    def running(self) -> bool:
        return self.returncode is None

    def output(self, text: str) -> None:
        if self.on_output is not None:
            self.on_output(text)

    def exit(self, code: int = 0) -> None:
        if self.returncode is None:
            self.returncode = code
            self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        assert self.returncode is not None
        return self.returncode

    def terminate(self) -> None:
        if self.running:
            self.terminated = True
            self.exit(-15)

    def kill(self) -> None:
        self.exit(-9)

    async def stop(self, timeout: float) -> int:
        self.terminate()
        return await self.wait()


class FakeSpawner:
    """Callable with ``ManagedProcess.spawn``'s signature."""

    def __init__(self) -> None:
        self.processes: list[FakeProcess] = []
        self.error: OSError | None = None

    async def __call__(
        self,
        name: str,
        argv: Sequence[str],
        *,
        env: dict[str, str] | None = None,
        cwd: str | None = None,
        on_output: Any = None,
    ) -> FakeProcess:
        if self.error is not None:
            raise self.error
        process = FakeProcess(name, argv, env=env, cwd=cwd, on_output=on_output)
        self.processes.append(process)
        return process

    def named(self, name: str) -> list[FakeProcess]:
        return [p for p in self.processes if p.name == name]

    def last(self, name: str) -> FakeProcess:
        return self.named(name)[-1]


# ---------------------------------------------------------------------------
# DNS
# ---------------------------------------------------------------------------


class StubResolver:
    """Resolves once it has been asked more than ``after`` times."""

    def __init__(self, after: int = 0, *, never: bool = False) -> None:
        self.after = after
        self.never = never
        self.queries: list[str] = []

    async def resolves(self, hostname: str) -> bool:
        self.queries.append(hostname)
        if self.never:
            return False
        return len(self.queries) > self.after


# ---------------------------------------------------------------------------
# Gateway HTTP backend
# ---------------------------------------------------------------------------


class FakeBackend:
    """The gateway as seen through the forwarding client (an ``httpx.MockTransport`` handler)."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.respond: Callable[[httpx.Request], httpx.Response] = lambda _request: httpx.Response(200, json={})

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.respond(request)

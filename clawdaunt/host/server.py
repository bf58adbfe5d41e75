"""Run an ASGI app under uvicorn inside the host's own event loop.

``uvicorn.run`` owns the loop and the process signals; the host needs
several servers (control app, placeholder) started and stopped on demand
next to the supervisors, so each one is served from a socket we bind
ourselves and signals stay with the CLI.
"""

from __future__ import annotations

import asyncio
import contextlib
import socket
from collections.abc import Generator

import uvicorn
from fastapi import FastAPI
from loguru import logger


class _EmbeddedUvicorn(uvicorn.Server):
    @contextlib.contextmanager
    def capture_signals(self) -> Generator[None, None, None]:
        yield


def bind_socket(host: str, port: int) -> socket.socket:
    """Bind a listening TCP socket; raises ``OSError`` if the address is taken."""
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
    except OSError:
        sock.close()
        raise
    return sock


class EmbeddedServer:
    """One uvicorn server bound to a single socket."""

    def __init__(self, app: FastAPI, *, name: str, graceful_timeout: float = 1.0) -> None:
        self.app = app
        self.name = name
        self._graceful_timeout = graceful_timeout
        self._server: _EmbeddedUvicorn | None = None
        self._task: asyncio.Task[None] | None = None
        self.port: int | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self, host: str = "127.0.0.1", port: int = 0) -> int:
        """Bind *host*:*port* and serve; returns the bound port (useful with ``port=0``)."""
        sock = bind_socket(host, port)
        config = uvicorn.Config(
            self.app,
            lifespan="off",
            ws="none",
            log_config=None,
            access_log=False,
            timeout_graceful_shutdown=self._graceful_timeout,
        )
        self._server = _EmbeddedUvicorn(config)
        self._task = asyncio.create_task(self._server.serve(sockets=[sock]), name=f"{self.name}-server")
        self.port = sock.getsockname()[1]

        while not self._server.started:
            if self._task.done():
                self._task.result()
                msg = f"{self.name} server exited during startup"
                raise RuntimeError(msg)
            await asyncio.sleep(0.01)

        logger.info("{} listening on {}:{}", self.name, host, self.port)
        return self.port

    async def stop(self) -> None:
        """Stop serving and release the socket.  Safe to call when not running."""
        server, task = self._server, self._task
        self._server = None
        self._task = None
        if server is None or task is None:
            return
        server.should_exit = True
        try:
            await task
        except Exception:
            logger.exception("{} server failed while stopping", self.name)
        logger.debug("{} stopped", self.name)

"""Stand-in backend served on the gateway port before any workspace exists.

It lets a freshly paired mobile client confirm the host is reachable (and
compare protocol versions) while gateway-dependent routes stay unavailable.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import FastAPI

from clawdaunt.host.models.api import PROTOCOL_VERSION, HealthResponse
from clawdaunt.host.proxy.guard import install_guard
from clawdaunt.host.server import EmbeddedServer


def create_placeholder_app(get_secret: Callable[[], str]) -> FastAPI:
    app = FastAPI(title="Clawdaunt Placeholder", docs_url=None, redoc_url=None, openapi_url=None)
    install_guard(app, get_secret)

    @app.get("/global/health")
    async def health() -> HealthResponse:
        return HealthResponse(protocol_version=PROTOCOL_VERSION)

    return app


class PlaceholderServer:
    def __init__(self, get_secret: Callable[[], str]) -> None:
        self._server = EmbeddedServer(create_placeholder_app(get_secret), name="Placeholder")

    @property
    def running(self) -> bool:
        return self._server.running

    async def start(self, port: int) -> None:
        """Serve on ``127.0.0.1:port``; raises ``OSError`` if the port is taken."""
        if not self._server.running:
            await self._server.start("127.0.0.1", port)

    async def stop(self) -> None:
        await self._server.stop()

"""Authenticated proxy in front of the gateway.

``create_proxy_app`` builds the HTTP side (control endpoints plus the
catch-all relay); ``HostProxy`` runs it on an internal loopback port behind
the public ``ProxyListener``, which also carries WebSocket upgrades
straight to the gateway.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import FastAPI, Request, Response

from clawdaunt.host.proxy.forward import forward_request
from clawdaunt.host.proxy.guard import PROXY_ALLOW_HEADERS, install_guard
from clawdaunt.host.proxy.listener import ProxyListener
from clawdaunt.host.proxy.routers import control, sessions
from clawdaunt.host.server import EmbeddedServer

if TYPE_CHECKING:
    from clawdaunt.host.coordinator import Coordinator

RELAY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD"]


def create_proxy_app(coordinator: Coordinator) -> FastAPI:
    app = FastAPI(
        title="Clawdaunt Proxy",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.coordinator = coordinator
    install_guard(app, lambda: coordinator.config.password, allow_headers=PROXY_ALLOW_HEADERS)

    app.include_router(control.router)
    app.include_router(sessions.router)

    @app.api_route("/{path:path}", methods=RELAY_METHODS, include_in_schema=False)
    async def relay(request: Request) -> Response:
        return await forward_request(request, coordinator.http_client, coordinator.config.port)

    return app


class HostProxy:
    """Public listener on ``port + 1`` plus the loopback control server behind it."""

    def __init__(self, coordinator: Coordinator) -> None:
        self.coordinator = coordinator
        self._control = EmbeddedServer(create_proxy_app(coordinator), name="Proxy control")
        self._listener: ProxyListener | None = None

    @property
    def running(self) -> bool:
        return self._listener is not None and self._listener.listening

    @property
    def port(self) -> int | None:
        """The public port actually bound, once started."""
        return self._listener.port if self._listener is not None else None

    async def start(self, host: str, port: int) -> None:
        control_port = await self._control.start("127.0.0.1", 0)
        listener = ProxyListener(
            host=host,
            port=port,
            control_port=control_port,
            get_backend_port=lambda: self.coordinator.config.port,
        )
        try:
            await listener.start()
        except OSError:
            await self._control.stop()
            raise
        self._listener = listener

    async def stop(self) -> None:
        listener = self._listener
        self._listener = None
        if listener is not None:
            await listener.close()
        await self._control.stop()

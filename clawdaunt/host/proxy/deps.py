"""FastAPI dependency injection for the host coordinator.

Usage in route handlers::

    @router.get("/things")
    async def list_things(coordinator: CoordinatorDep) -> ThingsResponse:
        ...
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from clawdaunt.host.coordinator import Coordinator


def get_coordinator(request: Request) -> Coordinator:
    return request.app.state.coordinator


# -- Annotated type aliases for concise route signatures ---------------------

CoordinatorDep = Annotated[Coordinator, Depends(get_coordinator)]
"""Annotated dependency: the process-wide coordinator."""

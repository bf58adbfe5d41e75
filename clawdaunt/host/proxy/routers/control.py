"""Host control endpoints answered by the proxy itself.

These never reach the gateway: presence heartbeat, health / protocol
version, AI source selection and workspace selection.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import ValidationError

from clawdaunt.host.coordinator import WorkspaceNotFoundError
from clawdaunt.host.models.api import (
    PROTOCOL_VERSION,
    ActiveWorkspaceUpdate,
    AIConfigResponse,
    AIConfigUpdate,
    HealthResponse,
    StatusResponse,
    WorkspacesResponse,
)
from clawdaunt.host.proxy.deps import CoordinatorDep

router = APIRouter(tags=["control"])


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body") from None


@router.post("/heartbeat")
async def heartbeat(coordinator: CoordinatorDep) -> StatusResponse:
    """Record that the mobile client is alive."""
    coordinator.presence.heartbeat()
    return StatusResponse()


@router.get("/global/health")
async def health() -> HealthResponse:
    return HealthResponse(protocol_version=PROTOCOL_VERSION)


@router.get("/global/ai-config")
async def get_ai_config(coordinator: CoordinatorDep) -> AIConfigResponse:
    return AIConfigResponse.build(coordinator.config, coordinator.locator.detect_clis(), PROTOCOL_VERSION)


@router.post("/global/ai-config")
async def update_ai_config(request: Request, coordinator: CoordinatorDep) -> AIConfigResponse:
    """Persist a new AI source and restart the gateway with it."""
    payload = await _json_body(request)
    try:
        update = AIConfigUpdate.model_validate(payload)
    except ValidationError:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="Invalid aiSource") from None

    config = await coordinator.update_ai_config(update)
    return AIConfigResponse.build(config, coordinator.locator.detect_clis(), PROTOCOL_VERSION)


@router.get("/global/workspaces")
async def list_workspaces(coordinator: CoordinatorDep) -> WorkspacesResponse:
    return WorkspacesResponse.from_config(coordinator.config)


@router.post("/global/workspaces/active")
async def set_active_workspace(request: Request, coordinator: CoordinatorDep) -> WorkspacesResponse:
    """Switch the active workspace and restart the gateway in it."""
    payload = await _json_body(request)
    try:
        update = ActiveWorkspaceUpdate.model_validate(payload)
    except ValidationError:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="workspaceId is required") from None

    try:
        config = await coordinator.set_active_workspace(update.workspace_id)
    except WorkspaceNotFoundError:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Workspace not found") from None
    return WorkspacesResponse.from_config(config)

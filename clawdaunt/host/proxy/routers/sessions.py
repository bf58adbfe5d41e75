"""Session listing and chat history endpoints."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Response, status

from clawdaunt.host.binaries import BinaryNotFoundError
from clawdaunt.host.managers.gateway_sessions import SessionListError, list_gateway_sessions
from clawdaunt.host.managers.history import HistoryLookupError, read_session_history
from clawdaunt.host.models.api import HistoryResponse
from clawdaunt.host.proxy.deps import CoordinatorDep

router = APIRouter(prefix="/v1/sessions", tags=["sessions"])


@router.get("")
async def list_sessions(coordinator: CoordinatorDep) -> Response:
    """Gateway session list, passed through as the gateway's own JSON."""
    settings = coordinator.settings
    try:
        output = await list_gateway_sessions(
            coordinator.locator,
            binary=settings.gateway_binary,
            timeout=settings.sessions_list_timeout,
        )
    except (BinaryNotFoundError, SessionListError) as exc:
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    return Response(content=output, media_type="application/json")


@router.get("/{session_key:path}/history")
async def get_history(session_key: str, coordinator: CoordinatorDep) -> HistoryResponse:
    """User / assistant turns of a CLI-backed session."""
    settings = coordinator.settings
    try:
        messages = await read_session_history(
            session_key,
            index_path=settings.session_index_path,
            projects_dir=settings.cli_projects_dir,
        )
    except HistoryLookupError as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=exc.message) from exc
    except (OSError, ValueError) as exc:
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    return HistoryResponse(messages=messages)

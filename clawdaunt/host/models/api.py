"""API request / response schemas for the control endpoints.

All schemas use camelCase on the wire (the mobile client's convention) via
``alias_generator``; FastAPI serializes responses by alias.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from clawdaunt.host.models.config import Config
from clawdaunt.host.models.enums import AISource

PROTOCOL_VERSION = 1
"""Bump when a host<->mobile format change would break older clients.

The mobile client compares it on connect and asks the user to update
whichever side is behind.
"""


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class AIConfigUpdate(_CamelModel):
    """Body of ``POST /global/ai-config``.  Omitted key/provider are left unchanged."""

    ai_source: AISource
    api_key: str | None = None
    api_provider: str | None = None


class ActiveWorkspaceUpdate(_CamelModel):
    """Body of ``POST /global/workspaces/active``."""

    workspace_id: str


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class HealthResponse(_CamelModel):
    status: str = "ok"
    protocol_version: int


class CLIStatus(BaseModel):
    claude: bool = False
    codex: bool = False
    openclaw: bool = False


class WorkspaceSummary(_CamelModel):
    id: str
    name: str
    path: str | None = None


class WorkspacesResponse(_CamelModel):
    workspaces: list[WorkspaceSummary]
    active_workspace_id: str | None = None

    @classmethod
    def from_config(cls, config: Config) -> WorkspacesResponse:
        return cls(
            workspaces=[WorkspaceSummary(id=w.id, name=w.name, path=w.primary_path) for w in config.workspaces],
            active_workspace_id=config.active_workspace_id,
        )


class AIConfigResponse(WorkspacesResponse):
    """Current AI source plus CLI availability and the workspace summary."""

    protocol_version: int
    ai_source: AISource
    api_provider: str
    has_api_key: bool
    clis: CLIStatus

    @classmethod
    def build(cls, config: Config, clis: CLIStatus, protocol_version: int) -> AIConfigResponse:
        summary = WorkspacesResponse.from_config(config)
        return cls(
            protocol_version=protocol_version,
            ai_source=config.ai_source,
            api_provider=config.api_provider,
            has_api_key=bool(config.api_key),
            clis=clis,
            workspaces=summary.workspaces,
            active_workspace_id=summary.active_workspace_id,
        )


class HistoryMessage(BaseModel):
    role: str
    content: str


class HistoryResponse(BaseModel):
    messages: list[HistoryMessage]


class StatusResponse(BaseModel):
    status: str = "ok"

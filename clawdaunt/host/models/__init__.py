"""Data models for the host."""

from clawdaunt.host.models.api import (
    ActiveWorkspaceUpdate,
    AIConfigResponse,
    AIConfigUpdate,
    CLIStatus,
    HealthResponse,
    HistoryMessage,
    HistoryResponse,
    StatusResponse,
    WorkspacesResponse,
    WorkspaceSummary,
)
from clawdaunt.host.models.config import Config, Workspace
from clawdaunt.host.models.enums import (
    AISource,
    GatewayPhase,
    RestartReason,
    SessionStatus,
    TunnelHealth,
    UIChannel,
)
from clawdaunt.host.models.session import GatewaySession, PresenceState, TunnelState

__all__ = [
    # Enums
    "AISource",
    # API schemas
    "AIConfigResponse",
    "AIConfigUpdate",
    "ActiveWorkspaceUpdate",
    "CLIStatus",
    # Config
    "Config",
    "GatewayPhase",
    # Runtime state
    "GatewaySession",
    "HealthResponse",
    "HistoryMessage",
    "HistoryResponse",
    "PresenceState",
    "RestartReason",
    "SessionStatus",
    "StatusResponse",
    "TunnelHealth",
    "TunnelState",
    "UIChannel",
    "Workspace",
    "WorkspaceSummary",
    "WorkspacesResponse",
]

"""Shared enumerations used across the host."""

from __future__ import annotations

from enum import StrEnum

# -- Config ------------------------------------------------------------------


class AISource(StrEnum):
    """Which backend the gateway uses as its default coding agent."""

    CLAUDE_CLI = "claude-cli"
    CODEX_CLI = "codex-cli"
    API_KEY = "api-key"


# -- Processes ---------------------------------------------------------------


class GatewayPhase(StrEnum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    ERROR = "error"


class RestartReason(StrEnum):
    """Why a tunnel process exited; decides what the exit handler does next."""

    OPERATOR = "operator"
    MONITOR = "monitor"
    ORGANIC = "organic"


# -- Health / presence -------------------------------------------------------


class TunnelHealth(StrEnum):
    CHECKING = "checking"
    HEALTHY = "healthy"
    DOWN = "down"


# -- Sessions ----------------------------------------------------------------


class SessionStatus(StrEnum):
    BUSY = "busy"
    IDLE = "idle"


# -- UI boundary -------------------------------------------------------------


class UIChannel(StrEnum):
    """Event channels published to the UI boundary."""

    STATUS = "status"
    ERROR = "error"
    GATEWAY_LOG = "gateway-log"
    TUNNEL_URL = "tunnel-url"
    TUNNEL_HEALTH = "tunnel-health"
    CLIENT_CONNECTED = "client-connected"
    CLIENT_AWAY = "client-away"
    CLIENT_DISCONNECTED = "client-disconnected"
    SESSIONS_UPDATED = "sessions-updated"
    CONFIG_CHANGED = "config-changed"

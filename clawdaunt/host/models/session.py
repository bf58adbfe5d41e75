"""Runtime state records.

These are ephemeral: nothing here is persisted.  Each record is owned by
exactly one subsystem, named in its docstring.
"""

from __future__ import annotations

import time

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from clawdaunt.host.models.enums import SessionStatus, TunnelHealth


class GatewaySession(BaseModel):
    """A unit of in-progress gateway work (owned by SessionObserver)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    status: SessionStatus = SessionStatus.IDLE
    title: str = "New session"
    skill: str | None = None
    started_at: float = Field(default_factory=lambda: time.time() * 1000)
    """Epoch milliseconds, preserved across updates."""


class TunnelState(BaseModel):
    """Published tunnel URL and its health.

    ``url`` is owned by TunnelProcessSupervisor, ``health`` by TunnelHealthMonitor.
    """

    url: str = ""
    health: TunnelHealth = TunnelHealth.CHECKING


class PresenceState(BaseModel):
    """Remote client presence (owned by ClientPresenceTracker).

    Invariant: ``away`` implies ``connected``.
    """

    connected: bool = False
    away: bool = False
    last_heartbeat_at: float = 0.0

"""Durable user configuration.

The on-disk format is camelCase JSON (``activeWorkspaceId``, ``aiSource``...)
so that it stays readable by the desktop UI.  Python code uses the snake_case
attribute names; ``model_dump(by_alias=True)`` produces the wire shape.
"""

from __future__ import annotations

import secrets
from pathlib import PurePath

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from clawdaunt.host.models.enums import AISource

DEFAULT_PORT = 4096
DEFAULT_API_PROVIDER = "anthropic"


def generate_secret() -> str:
    """Random shared secret: 16 random bytes, base64url encoded."""
    return secrets.token_urlsafe(16)


def generate_workspace_id() -> str:
    return secrets.token_hex(8)


class Workspace(BaseModel):
    """A named project directory the gateway operates against.

    ``paths[0]`` is the primary path and becomes the gateway's working
    directory.  ``protected`` paths are excluded from AI access.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=generate_workspace_id)
    name: str
    paths: list[str] = Field(default_factory=list)
    protected: list[str] = Field(default_factory=list)

    @property
    def primary_path(self) -> str | None:
        return self.paths[0] if self.paths else None


class Config(BaseModel):
    """Single process-wide user config record."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    port: int = DEFAULT_PORT
    password: str = Field(default_factory=generate_secret)
    """Shared secret; clients authenticate with ``Authorization: Bearer <password>``."""

    workspaces: list[Workspace] = Field(default_factory=list)
    active_workspace_id: str | None = None
    ai_source: AISource = AISource.CLAUDE_CLI
    api_key: str = ""
    api_provider: str = DEFAULT_API_PROVIDER

    @property
    def proxy_port(self) -> int:
        """The reverse proxy listens one port above the backend."""
        return self.port + 1

    def find_workspace(self, workspace_id: str | None) -> Workspace | None:
        if workspace_id is None:
            return None
        for workspace in self.workspaces:
            if workspace.id == workspace_id:
                return workspace
        return None

    def active_workspace(self) -> Workspace | None:
        """The active workspace, or ``None`` if unset or it has no paths."""
        workspace = self.find_workspace(self.active_workspace_id)
        if workspace is None or not workspace.paths:
            return None
        return workspace

    def add_workspace(self, path: str, *, name: str | None = None) -> Workspace | None:
        """Append a workspace rooted at *path*.

        Returns ``None`` (and changes nothing) when a workspace already
        contains *path*.  The first workspace ever added becomes active.
        """
        if any(path in w.paths for w in self.workspaces):
            return None
        workspace = Workspace(name=name or PurePath(path).name or path, paths=[path])
        self.workspaces.append(workspace)
        if not self.active_workspace_id:
            self.active_workspace_id = workspace.id
        return workspace

"""Config store interface.

The host only ever touches the durable config through ``load`` / ``save``.
Both are synchronous on purpose: a config mutation and the gateway restart it
triggers must happen within a single event-loop turn, so no other handler can
observe a half-applied change.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from clawdaunt.host.models.config import Config


@runtime_checkable
class ConfigStore(Protocol):
    """Durable key-value record of port, secret, workspaces and AI source."""

    def load(self) -> Config:
        """Return the current config, creating a default one if none exists."""
        ...

    def save(self, config: Config) -> None:
        """Persist *config* immediately."""
        ...

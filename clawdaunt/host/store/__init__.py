"""Config store implementations."""

from clawdaunt.host.store.base import ConfigStore
from clawdaunt.host.store.local import LocalConfigStore

__all__ = ["ConfigStore", "LocalConfigStore"]

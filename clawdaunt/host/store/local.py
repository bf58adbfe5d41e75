"""Local filesystem config store.

Stores the config as pretty-printed camelCase JSON::

    {config_dir}/config.json

Writes are atomic: data is written to a temporary file in the same directory,
then renamed to the target path.  This prevents a corrupt config if the
process crashes mid-write.

Older releases kept a flat ``repos: [path, ...]`` list instead of
workspaces; such files are migrated on first load.
"""

from __future__ import annotations

import contextlib
import json
import os
import tempfile
from pathlib import Path
from typing import Any

from loguru import logger

from clawdaunt.host.models.config import (
    DEFAULT_API_PROVIDER,
    DEFAULT_PORT,
    Config,
    Workspace,
    generate_secret,
)
from clawdaunt.host.models.enums import AISource


class LocalConfigStore:
    """JSON-file implementation of the ConfigStore protocol."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    # -- Read ------------------------------------------------------------------

    def load(self) -> Config:
        if not self._path.exists():
            config = Config()
            self.save(config)
            logger.info("Config: created default config at {}", self._path)
            return config

        raw: dict[str, Any] = json.loads(self._path.read_text(encoding="utf-8"))

        if isinstance(raw.get("repos"), list) and not isinstance(raw.get("workspaces"), list):
            config = _migrate_repos(raw)
            self.save(config)
            logger.info("Config: migrated {} legacy repos to workspaces", len(config.workspaces))
            return config

        # Fill fields that older configs lack (empty strings count as missing).
        raw["aiSource"] = raw.get("aiSource") or AISource.CLAUDE_CLI.value
        raw["apiKey"] = raw.get("apiKey") or ""
        raw["apiProvider"] = raw.get("apiProvider") or DEFAULT_API_PROVIDER
        return Config.model_validate(raw)

    # -- Write -----------------------------------------------------------------

    def save(self, config: Config) -> None:
        data = json.dumps(config.model_dump(mode="json", by_alias=True), indent=2) + "\n"
        atomic_write(self._path, data)

    # -- Helpers ---------------------------------------------------------------

    def add_workspace(self, path: str, *, name: str | None = None) -> tuple[Config, Workspace | None]:
        """Append a workspace rooted at *path*.

        Returns ``(config, workspace)``; ``workspace`` is ``None`` when a
        workspace already contains *path*.
        """
        config = self.load()
        workspace = config.add_workspace(path, name=name)
        if workspace is not None:
            self.save(config)
        return config, workspace


def _migrate_repos(raw: dict[str, Any]) -> Config:
    workspaces = [Workspace(name=Path(repo).name, paths=[repo]) for repo in raw["repos"]]
    return Config(
        port=raw.get("port", DEFAULT_PORT),
        password=raw.get("password") or generate_secret(),
        workspaces=workspaces,
        active_workspace_id=workspaces[0].id if workspaces else None,
        ai_source=raw.get("aiSource") or AISource.CLAUDE_CLI,
        api_key=raw.get("apiKey") or "",
        api_provider=raw.get("apiProvider") or DEFAULT_API_PROVIDER,
    )


def atomic_write(path: Path, data: str) -> None:
    """Write data atomically: temp file + rename.

    The temp file is created in the same directory so ``os.replace`` is
    atomic on POSIX.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
        os.replace(tmp_path, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_path)
        raise

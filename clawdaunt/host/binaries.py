"""Executable discovery and child-process environment.

A host launched from a desktop launcher does not inherit the user's shell
PATH, so the search path is assembled from:

1. The bundled bin directory (``CLAWDAUNT_BUNDLED_BIN_DIR``), checked first.
2. Well-known package-manager directories (Homebrew, /usr/local).
3. The login shell's PATH (``$SHELL -l -i -c 'echo $PATH'``), resolved once.
4. This process's own PATH.

The same search path is exported as ``PATH`` to every supervised child.
"""

from __future__ import annotations

import os
import subprocess
from functools import cached_property
from pathlib import Path

from loguru import logger

from clawdaunt.host.models.api import CLIStatus

FALLBACK_PATHS = ["/opt/homebrew/bin", "/opt/homebrew/sbin", "/usr/local/bin", "/usr/local/sbin"]


class BinaryNotFoundError(LookupError):
    """Raised when a required executable cannot be located."""


def resolve_shell_path(timeout: float = 5.0) -> list[str]:
    """Return the PATH entries of the user's interactive login shell (empty on failure)."""
    shell = os.environ.get("SHELL") or "/bin/zsh"
    try:
        result = subprocess.run(  # noqa: S603
            [shell, "-l", "-i", "-c", "echo $PATH"],
            capture_output=True,
            text=True,
            timeout=timeout,
            stdin=subprocess.DEVNULL,
            check=False,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        logger.debug("Could not resolve login shell PATH via {}: {}", shell, exc)
        return []
    lines = result.stdout.strip().splitlines()
    if not lines:
        return []
    # Interactive shells may print banners; PATH is the last line.
    return [entry for entry in lines[-1].split(":") if entry]


class BinaryLocator:
    """Resolve executable names to absolute paths."""

    def __init__(self, bundled_dir: str | Path | None = None, search_paths: list[str] | None = None) -> None:
        self._bundled_dir = Path(bundled_dir) if bundled_dir else None
        self._explicit_paths = search_paths

    @cached_property
    def search_paths(self) -> list[str]:
        if self._explicit_paths is not None:
            candidates = list(self._explicit_paths)
        else:
            own_path = [p for p in os.environ.get("PATH", "").split(os.pathsep) if p]
            candidates = [*FALLBACK_PATHS, *resolve_shell_path(), *own_path]
        return list(dict.fromkeys(candidates))

    def warm(self) -> list[str]:
        """Resolve the search path now.  The login-shell lookup can block for seconds."""
        return self.search_paths

    def find(self, name: str) -> str | None:
        """Absolute path of *name*, or ``None`` if it is not installed."""
        if self._bundled_dir is not None:
            bundled = self._bundled_dir / name
            if _is_executable(bundled):
                return str(bundled)
        for directory in self.search_paths:
            candidate = Path(directory) / name
            if _is_executable(candidate):
                return str(candidate)
        return None

    def require(self, name: str) -> str:
        path = self.find(name)
        if path is None:
            msg = f"{name} binary not found"
            raise BinaryNotFoundError(msg)
        return path

    def enriched_env(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        """The current environment with ``PATH`` replaced by the search path."""
        env = dict(os.environ)
        env["PATH"] = os.pathsep.join(self.search_paths)
        if extra:
            env.update(extra)
        return env

    def detect_clis(self) -> CLIStatus:
        return CLIStatus(
            claude=self.find("claude") is not None,
            codex=self.find("codex") is not None,
            openclaw=self.find("openclaw") is not None,
        )


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)

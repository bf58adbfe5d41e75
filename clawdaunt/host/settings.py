"""Service configuration loaded from CLAWDAUNT_* environment variables.

These are the host's *operational* settings (paths, timings, bind host).  The
user-facing durable record (port, shared secret, workspaces, AI source) lives
in the ConfigStore -- see ``clawdaunt.host.store``.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class ClawSettings(BaseSettings):
    """Clawdaunt host settings.

    All fields are read from environment variables with the ``CLAWDAUNT_``
    prefix.  For example, ``CLAWDAUNT_LOG_LEVEL=DEBUG`` maps to ``log_level``.
    """

    model_config = SettingsConfigDict(
        env_prefix="CLAWDAUNT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- Logging ---------------------------------------------------------------
    log_level: str = "INFO"

    # -- Paths -----------------------------------------------------------------
    config_dir: Path = Path.home() / ".clawdaunt"
    """Directory holding ``config.json`` (the durable user config)."""

    gateway_home: Path = Path.home() / ".openclaw"
    """Gateway state directory: generated ``openclaw.json`` and the session index."""

    cli_projects_dir: Path = Path.home() / ".claude" / "projects"
    """Root of the CLI transcript directories (``*/{session_id}.jsonl``)."""

    bundled_bin_dir: Path | None = None
    """Binaries shipped alongside the host; searched before PATH."""

    # -- Binaries --------------------------------------------------------------
    gateway_binary: str = "openclaw"
    tunnel_binary: str = "cloudflared"

    # -- Server ----------------------------------------------------------------
    host: str = "0.0.0.0"  # noqa: S104

    # -- Gateway ---------------------------------------------------------------
    gateway_settle_delay: float = 2.0
    """Seconds between spawn and ``running``.  The gateway exposes no readiness probe."""

    process_stop_timeout: float = 5.0

    # -- Tunnel ----------------------------------------------------------------
    tunnel_restart_delay: float = 2.0
    tunnel_rate_limit_delay: float = 60.0
    dns_nameservers: list[str] = ["1.1.1.1", "8.8.8.8"]
    dns_poll_interval: float = 1.0
    dns_timeout: float = 30.0

    # -- Tunnel health ---------------------------------------------------------
    health_interval: float = 10.0
    health_timeout: float = 5.0
    health_failure_threshold: int = 3

    # -- Presence --------------------------------------------------------------
    presence_poll_interval: float = 2.0
    presence_away_after: float = 30.0
    """A mobile client suspended in the background stops heartbeating but is not gone."""

    presence_disconnect_after: float = 120.0

    # -- Session observer ------------------------------------------------------
    observer_reconnect_delay: float = 3.0
    sessions_list_timeout: float = 15.0

    # -- Host power ------------------------------------------------------------
    keep_awake: bool = True
    """Run ``caffeinate -dis`` on macOS so the tunnel survives idle sleep."""

    sleep_check_interval: float = 5.0

    # -- Helpers ---------------------------------------------------------------

    @property
    def config_path(self) -> Path:
        return self.config_dir / "config.json"

    @property
    def gateway_config_path(self) -> Path:
        return self.gateway_home / "openclaw.json"

    @property
    def session_index_path(self) -> Path:
        return self.gateway_home / "agents" / "main" / "sessions" / "sessions.json"


def get_settings() -> ClawSettings:
    """Return a cached settings instance.

    Reads from environment variables and ``.env`` on first call, then returns
    the same object.  Call ``_get_settings_cached.cache_clear()`` in tests to
    force a re-read after overriding env vars.
    """
    return _get_settings_cached()


def _get_settings_cached() -> ClawSettings:
    """Inner function wrapped by lru_cache (allows type-safe cache_clear)."""
    return ClawSettings()


# Apply lru_cache at runtime so the function is only called once.
from functools import lru_cache  # noqa: E402

_get_settings_cached = lru_cache(maxsize=1)(_get_settings_cached)

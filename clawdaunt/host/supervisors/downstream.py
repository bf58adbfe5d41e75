"""Gateway configuration generation.

The gateway reads ``{gateway_home}/openclaw.json`` at startup, so the file is
regenerated before every launch to reflect the current port, secret and AI
source.  Every available CLI is registered as a backend; ``aiSource`` picks
which one is the default model.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from loguru import logger

from clawdaunt.host.binaries import BinaryLocator
from clawdaunt.host.models.config import Config
from clawdaunt.host.models.enums import AISource
from clawdaunt.host.store.local import atomic_write

PRIMARY_MODELS: dict[AISource, str] = {
    AISource.CLAUDE_CLI: "claude-cli/opus-4.6",
    AISource.CODEX_CLI: "codex-cli/gpt-5.3-codex",
}

API_KEY_MODELS: dict[str, str] = {
    "openai": "openai/gpt-4o",
    "anthropic": "anthropic/claude-sonnet-4-20250514",
}

API_KEY_ENV: dict[str, str] = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
}


def primary_model(config: Config) -> str:
    if config.ai_source == AISource.API_KEY:
        return API_KEY_MODELS.get(config.api_provider, API_KEY_MODELS["anthropic"])
    return PRIMARY_MODELS[config.ai_source]


def build_gateway_config(config: Config, locator: BinaryLocator) -> dict[str, Any]:
    """Build the gateway's config document."""
    # CLI backends are built into the gateway; only override the command
    # when the binary lives somewhere the gateway would not look.
    cli_backends: dict[str, dict[str, str]] = {}
    for backend, binary in (("claude-cli", "claude"), ("codex-cli", "codex")):
        path = locator.find(binary)
        if path:
            cli_backends[backend] = {"command": path}

    defaults: dict[str, Any] = {"model": {"primary": primary_model(config)}}
    if cli_backends:
        defaults["cliBackends"] = cli_backends

    return {
        "gateway": {
            "mode": "local",
            "port": config.port,
            "auth": {"token": config.password},
            "http": {"endpoints": {"chatCompletions": {"enabled": True}}},
        },
        "agents": {"defaults": defaults},
    }


def write_gateway_config(path: Path, config: Config, locator: BinaryLocator) -> None:
    document = build_gateway_config(config, locator)
    atomic_write(path, json.dumps(document, indent=2) + "\n")
    logger.debug("Gateway config written to {} (model={})", path, document["agents"]["defaults"]["model"]["primary"])


def api_key_env(config: Config) -> dict[str, str]:
    """Provider credential variables for api-key mode (empty otherwise)."""
    if config.ai_source != AISource.API_KEY or not config.api_key:
        return {}
    var = API_KEY_ENV.get(config.api_provider)
    return {var: config.api_key} if var else {}

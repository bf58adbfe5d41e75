"""Session listing through the gateway binary's own CLI."""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from clawdaunt.host.supervisors.process import run_command

if TYPE_CHECKING:
    from clawdaunt.host.binaries import BinaryLocator


class SessionListError(RuntimeError):
    """The listing subcommand failed; ``str(exc)`` carries its diagnostic text."""


async def list_gateway_sessions(locator: BinaryLocator, *, binary: str, timeout: float) -> str:
    """Run ``<gateway> gateway call sessions.list --json`` and return its raw JSON output.

    Raises ``BinaryNotFoundError`` if the gateway binary is missing and
    ``SessionListError`` if the subcommand fails or times out.
    """
    path = locator.require(binary)

    argv = [path, "gateway", "call", "sessions.list", "--json"]
    try:
        code, stdout, stderr = await run_command(argv, env=locator.enriched_env(), timeout=timeout)
    except TimeoutError:
        msg = f"{binary} sessions.list timed out after {timeout:g}s"
        raise SessionListError(msg) from None
    except OSError as exc:
        raise SessionListError(str(exc)) from exc

    if code != 0:
        logger.warning("sessions.list exited with code {}: {}", code, stderr.strip())
        raise SessionListError(stderr.strip() or f"{binary} exited with code {code}")
    return stdout

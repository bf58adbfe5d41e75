import json
from typing import Any

import click


@click.group()
def main() -> None:
    """Clawdaunt - run an AI gateway on this machine and reach it from your phone."""


# ---------------------------------------------------------------------------
# Host
# ---------------------------------------------------------------------------


def _log_event(channel: Any, payload: Any) -> None:
    from loguru import logger

    from clawdaunt.host.models.enums import UIChannel

    # Gateway output is already logged line by line at DEBUG by its supervisor.
    if channel == UIChannel.GATEWAY_LOG:
        return
    if channel == UIChannel.ERROR:
        logger.error("[{}] {}", channel, payload)
    else:
        logger.info("[{}] {}", channel, payload)


async def _serve() -> None:
    import asyncio
    import signal

    from clawdaunt.host.binaries import BinaryLocator
    from clawdaunt.host.coordinator import Coordinator
    from clawdaunt.host.settings import get_settings
    from clawdaunt.host.store.local import LocalConfigStore

    settings = get_settings()
    coordinator = Coordinator(
        settings=settings,
        store=LocalConfigStore(settings.config_path),
        locator=BinaryLocator(settings.bundled_bin_dir),
    )
    coordinator.events.subscribe(_log_event)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        try:
            await coordinator.start()
        except OSError as exc:
            msg = f"Could not listen on port {coordinator.config.proxy_port}: {exc}"
            raise click.ClickException(msg) from exc
        click.echo(f"Proxy listening on port {coordinator.config.proxy_port}. Press Ctrl+C to stop.")
        await stop.wait()
    finally:
        await coordinator.stop_all()


@main.command()
def serve() -> None:
    """Start the host: proxy, gateway, tunnel and monitors."""
    import asyncio

    from clawdaunt.host.log import setup_logging
    from clawdaunt.host.settings import get_settings

    setup_logging(get_settings().log_level)
    asyncio.run(_serve())


def _store():
    from clawdaunt.host.settings import get_settings
    from clawdaunt.host.store.local import LocalConfigStore

    return LocalConfigStore(get_settings().config_path)


@main.command()
@click.option("--show-secret", is_flag=True, default=False, help="Print the shared secret instead of masking it.")
def config(show_secret: bool) -> None:
    """Print the durable config."""
    data = _store().load().model_dump(mode="json", by_alias=True)
    if not show_secret:
        data["password"] = "********"
        if data.get("apiKey"):
            data["apiKey"] = "********"
    click.echo(json.dumps(data, indent=2))


# ---------------------------------------------------------------------------
# Workspaces
# ---------------------------------------------------------------------------


@main.group()
def workspace() -> None:
    """Manage workspaces (restart a running host to pick up changes)."""


@workspace.command("add")
@click.argument("path", type=click.Path(exists=True, file_okay=False, resolve_path=True))
@click.option("--name", default=None, help="Display name (default: the directory name).")
def workspace_add(path: str, name: str | None) -> None:
    """Add a workspace rooted at PATH."""
    config, added = _store().add_workspace(path, name=name)
    if added is None:
        click.echo(f"A workspace already contains {path}.")
        return
    active = " (active)" if config.active_workspace_id == added.id else ""
    click.echo(f"Workspace {added.id} added: {added.name}{active}")


@workspace.command("list")
def workspace_list() -> None:
    """List workspaces; the active one is marked with '*'."""
    config = _store().load()
    if not config.workspaces:
        click.echo("No workspaces.")
        return
    for w in config.workspaces:
        marker = "*" if w.id == config.active_workspace_id else " "
        click.echo(f"{marker} {w.id}  {w.name}  {w.primary_path or '-'}")


if __name__ == "__main__":
    main()

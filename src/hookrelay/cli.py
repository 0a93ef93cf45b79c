"""Command-line entry point."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated

import anyio
import typer

from . import __version__
from .bans import JsonBanStore
from .config import ConfigError
from .logging import get_logger, setup_logging
from .settings import RelaySettings, load_settings

logger = get_logger(__name__)

app = typer.Typer(
    name="hookrelay",
    help="Webhook relay that queues through upstream rate limits.",
    no_args_is_help=True,
    add_completion=False,
)

ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", "-c", help="Path to hookrelay.toml."),
]


def _load(
    config: Path | None, *, quiet: bool = False
) -> tuple[RelaySettings, Path | None]:
    if quiet:
        setup_logging("WARNING")
    try:
        return load_settings(config)
    except ConfigError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show the version and exit.",
        ),
    ] = False,
) -> None:
    pass


@app.command()
def run(
    config: ConfigOption = None,
    host: Annotated[str | None, typer.Option(help="Override server.host.")] = None,
    port: Annotated[int | None, typer.Option(help="Override server.port.")] = None,
) -> None:
    """Start the relay and serve until interrupted."""
    settings, config_path = _load(config)
    if host is not None:
        settings.server.host = host
    if port is not None:
        settings.server.port = port
    setup_logging(settings.log_level, json=settings.log_json)
    logger.info(
        "relay.starting",
        version=__version__,
        config=str(config_path) if config_path is not None else None,
    )

    from .server import serve
    from .service import RelayService

    try:
        service = RelayService(settings, config_path=config_path)
    except ConfigError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    anyio.run(serve, service)


@app.command()
def bans(config: ConfigOption = None) -> None:
    """List banned hook ids from the persisted ban list."""
    settings, config_path = _load(config, quiet=True)
    store = JsonBanStore(settings.resolve_bans_path(config_path))
    try:
        identities = store.load()
    except ConfigError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    if not identities:
        typer.echo("no banned hooks")
        return
    for identity in identities:
        typer.echo(identity)


@app.command("config")
def show_config(config: ConfigOption = None) -> None:
    """Print the effective configuration as JSON."""
    settings, config_path = _load(config, quiet=True)
    data = settings.model_dump(mode="json")
    if data["analytics"]["ga_id"]:
        data["analytics"]["ga_id"] = "***"
    data["config_path"] = str(config_path) if config_path is not None else None
    typer.echo(json.dumps(data, indent=2))


if __name__ == "__main__":
    app()

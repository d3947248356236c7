"""Administrative command-line interface."""

from __future__ import annotations

import sys
from pathlib import Path

import click
import structlog
import uvicorn
from safir.asyncio import run_with_asyncio
from safir.click import display_help

from .dependencies.config import config_dependency
from .factory import Factory
from .main import create_openapi
from .models.lookup import CacheNamespace

__all__ = [
    "help",
    "main",
    "openapi_schema",
    "refresh",
    "run",
]


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(message="%(version)s")
def main() -> None:
    """Administrative command-line interface for groupd."""


@main.command()
@click.argument("topic", default=None, required=False, nargs=1)
@click.pass_context
def help(ctx: click.Context, topic: str | None) -> None:
    """Show help for any command."""
    display_help(main, ctx, topic)


@main.command()
@click.option(
    "--output",
    default=None,
    type=click.Path(path_type=Path),
    help="Output path (output to stdout if not given).",
)
def openapi_schema(*, output: Path | None) -> None:
    """Generate the OpenAPI schema."""
    schema = create_openapi()
    if output:
        output.parent.mkdir(exist_ok=True)
        output.write_text(schema)
    else:
        sys.stdout.write(schema)


@main.command()
@click.option(
    "--groups",
    "namespace",
    flag_value=CacheNamespace.users_in_group.name,
    default=True,
    help="Refresh the members of groups (the default).",
)
@click.option(
    "--users",
    "namespace",
    flag_value=CacheNamespace.user_groups.name,
    help="Refresh the groups of users.",
)
@click.option(
    "--config-path",
    envvar="GROUPD_CONFIG_PATH",
    type=click.Path(path_type=Path),
    default=None,
    help="Application configuration file.",
)
@click.argument("identifiers", nargs=-1, required=True)
@run_with_asyncio
async def refresh(
    *, namespace: str, config_path: Path | None, identifiers: tuple[str, ...]
) -> None:
    """Refresh cached memberships and wait for the refresh to finish.

    Failures for individual groups or users are logged and do not stop the
    refresh of the others.
    """
    if config_path:
        config_dependency.set_config_path(config_path)
    config = await config_dependency()
    logger = structlog.get_logger("groupd")
    logger.debug("Starting refresh", count=len(identifiers))
    async with Factory.standalone(config) as factory:
        refresh_service = factory.refresh_service
        await refresh_service.refresh(CacheNamespace[namespace], identifiers)
    logger.debug("Finished refresh")


@main.command()
@click.option(
    "--port", default=8080, type=int, help="Port to run the application on."
)
@click.option(
    "--host",
    default="127.0.0.1",
    help="Address to listen on.",
)
def run(*, port: int, host: str) -> None:
    """Run the application."""
    uvicorn.run(
        "groupd.main:create_app", factory=True, host=host, port=port
    )

"""CLI for iglink — run the callback service and manage its database."""

from __future__ import annotations

import asyncio
import logging
import sys

import click

from iglink import __version__
from iglink.config import ConfigError, load_settings

logger = logging.getLogger(__name__)


def _load_settings_or_exit():
    try:
        return load_settings()
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """iglink — Instagram account linking service."""


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True, help="Bind address")
@click.option("--port", default=8000, show_default=True, type=int, help="Bind port")
def serve(host: str, port: int) -> None:
    """Run the HTTP service with uvicorn."""
    import uvicorn

    from iglink.api.app import create_app
    from iglink.core.logging import configure_logging

    settings = _load_settings_or_exit()
    configure_logging(level=settings.log_level, fmt=settings.log_format)
    logger.info("Starting iglink on %s:%d", host, port)
    uvicorn.run(create_app(settings), host=host, port=port, log_config=None)


@cli.command("init-db")
def init_db() -> None:
    """Create the instagram_accounts table if it does not exist."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(name)s: %(message)s")
    asyncio.run(_init_db())
    click.echo("instagram_accounts table is ready.")


async def _init_db() -> None:
    from iglink.db import create_pool
    from iglink.store import InstagramAccountStore

    pool = await create_pool()
    try:
        await InstagramAccountStore(pool).ensure_schema()
    finally:
        await pool.close()


@cli.command("issue-state")
def issue_state() -> None:
    """Print a freshly signed CSRF state value."""
    from iglink.api.deps import build_state_verifier

    settings = _load_settings_or_exit()
    click.echo(build_state_verifier(settings).issue())


def main() -> None:
    cli()


if __name__ == "__main__":
    main()

"""authstore CLI application using Typer.

Provides maintenance commands for the configured storage backend.
"""

import asyncio
import logging
import sys

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from authstore.exceptions import AuthStoreError
from authstore.factory import create_adapter, describe_target
from authstore_config import Settings, get_settings

app = typer.Typer(
    name="authstore",
    help="authstore - persistence for users, accounts, sessions and tokens",
    no_args_is_help=True,
)
console = Console()

logger = logging.getLogger(__name__)


def _configure_logging(settings: Settings) -> None:
    """Console logging at the configured level, third-party drivers quieted."""
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
        force=True,
    )

    logging.getLogger("authstore").setLevel(log_level)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("pymongo").setLevel(logging.WARNING)


async def _initialize(settings: Settings) -> None:
    adapter = create_adapter(settings)
    try:
        await adapter.initialize()
    finally:
        await adapter.close()


@app.command("init")
def init_backend() -> None:
    """Prepare the configured backend.

    Creates tables (SQLAlchemy) or indexes (MongoDB), or checks the
    connection (Redis). Safe to run repeatedly.
    """
    settings = get_settings()
    _configure_logging(settings)

    console.print(
        f"Initializing [bold]{settings.backend}[/bold] backend at "
        f"[cyan]{describe_target(settings)}[/cyan]"
    )
    try:
        asyncio.run(_initialize(settings))
    except AuthStoreError as e:
        console.print(f"[red]Initialization failed:[/red] {escape(e.message)}")
        raise typer.Exit(code=1) from e

    console.print("[green]Backend ready.[/green]")


@app.command("config")
def show_config() -> None:
    """Print the effective configuration (secrets are never shown)."""
    settings = get_settings()

    table = Table(title="authstore configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    table.add_row("backend", settings.backend)
    table.add_row("target", describe_target(settings))
    table.add_row("log_level", settings.log_level)

    if settings.backend == "mongodb":
        table.add_row("database", settings.mongodb_database)
        table.add_row("ttl_indexes", str(settings.mongodb_ttl_indexes))
    elif settings.backend == "redis":
        table.add_row("base_key_prefix", repr(settings.redis_base_key_prefix))
        table.add_row("native_expiry", str(settings.redis_native_expiry))
        table.add_row("use_getdel", str(settings.redis_use_getdel))
        table.add_row("watch_retries", str(settings.redis_watch_retries))
    else:
        table.add_row("echo", str(settings.sqlalchemy_echo))

    console.print(table)


def cli() -> None:
    """Entry point for the CLI application."""
    app()


if __name__ == "__main__":
    cli()

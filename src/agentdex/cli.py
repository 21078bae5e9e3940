import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import click
from loguru import logger
from rich.console import Console
from rich.table import Table

from agentdex.core.errors import ConfigError
from agentdex.core.settings import Settings, build_indexer_config, load_settings
from agentdex.log import setup_logging
from agentdex.storage import create_engine, create_session_maker, init_models

console = Console()

T = TypeVar("T")


@click.group()
@click.option("--log-level", default=None, help="Override LOG_LEVEL")
@click.pass_context
def cli(ctx: click.Context, log_level: str | None) -> None:
    """agentdex: ERC-8004 identity, reputation and marketplace indexer."""
    settings = load_settings()
    setup_logging(log_level or settings.log_level, settings.log_file)
    ctx.obj = settings


def _with_indexer(settings: Settings, fn: Callable[..., Awaitable[T]], *, create_tables: bool = True) -> T:
    """Build engine + Indexer, run `fn(indexer)`, and dispose everything."""
    from agentdex.indexing.loop import Indexer

    try:
        config = build_indexer_config(settings)
    except ConfigError as e:
        raise click.ClickException(f"Invalid configuration: {e}") from e

    async def run() -> T:
        engine = create_engine(settings.database_url, echo=settings.database_echo)
        try:
            if create_tables:
                await init_models(engine)
            indexer = Indexer(config, create_session_maker(engine))
            try:
                return await fn(indexer)
            finally:
                await indexer.aclose()
        finally:
            await engine.dispose()

    return asyncio.run(run())


@cli.command("run")
@click.option("--force", is_flag=True, default=False, help="Run even when ENABLE_INDEXER is false")
@click.option("--max-cycles", type=int, default=None, help="Stop after N cycles (default: forever)")
@click.option("--skip-startup", is_flag=True, default=False, help="Skip config sync / backfill / owner repair")
@click.pass_obj
def run_cmd(settings: Settings, force: bool, max_cycles: int | None, skip_startup: bool) -> None:
    """Run the indexer loop for every enabled chain."""
    if not (settings.enable_indexer or force):
        raise click.UsageError("Indexer disabled: set ENABLE_INDEXER=true or pass --force")

    async def go(indexer) -> int:
        if not skip_startup:
            await indexer.startup()
        return await indexer.run(max_cycles=max_cycles)

    try:
        cycles = _with_indexer(settings, go)
    except KeyboardInterrupt:
        logger.warning("[Indexer] Interrupted, shutting down")
        return
    console.print(f"[bold green]Stopped after {cycles} cycles[/]")


@cli.command("backfill-timestamps")
@click.pass_obj
def backfill_cmd(settings: Settings) -> None:
    """Fill missing block timestamps from RPC."""

    async def go(indexer):
        return await indexer.backfill()

    result = _with_indexer(settings, go)
    console.print(
        f"[bold]Blocks:[/] {result.blocks}  [green]filled rows:[/] {result.filled}  [red]failed:[/] {result.failed}"
    )


@cli.command("sync-config")
@click.pass_obj
def sync_config_cmd(settings: Settings) -> None:
    """Read platform fee / fee recipient from each marketplace contract."""

    async def go(indexer):
        return await indexer.sync_configs()

    synced = _with_indexer(settings, go)
    console.print(f"[bold]Marketplace configs synced:[/] {synced}")


@cli.command("repair-owners")
@click.pass_obj
def repair_owners_cmd(settings: Settings) -> None:
    """Restore agent owners from Registered activity rows."""
    from agentdex.indexing.backfill import repair_agent_owners

    async def go(indexer):
        return await repair_agent_owners(indexer.session_maker)

    repaired = _with_indexer(settings, go)
    console.print(f"[bold]Owners restored:[/] {repaired}")


@cli.command("status")
@click.pass_obj
def status_cmd(settings: Settings) -> None:
    """Show the cursor of every indexed contract."""
    from agentdex.storage.repositories import CursorRepository

    async def load():
        engine = create_engine(settings.database_url)
        try:
            await init_models(engine)
            async with create_session_maker(engine)() as session:
                return await CursorRepository(session).list_cursors()
        finally:
            await engine.dispose()

    rows = asyncio.run(load())
    if not rows:
        console.print("[yellow]No cursors yet[/]")
        return

    table = Table(title="Indexer cursors")
    table.add_column("Chain", justify="right")
    table.add_column("Contract")
    table.add_column("Address")
    table.add_column("Last block", justify="right")
    table.add_column("Updated")
    for row in rows:
        table.add_row(
            str(row.chain_id),
            row.contract_name or "-",
            row.contract_address,
            f"{row.last_block:,}",
            row.updated_at.isoformat(timespec="seconds") if row.updated_at else "-",
        )
    console.print(table)


@cli.command("init-db")
@click.pass_obj
def init_db_cmd(settings: Settings) -> None:
    """Create all tables."""

    async def go() -> None:
        engine = create_engine(settings.database_url)
        try:
            await init_models(engine)
        finally:
            await engine.dispose()

    asyncio.run(go())
    console.print("[bold green]Tables created[/]")


if __name__ == "__main__":
    cli()

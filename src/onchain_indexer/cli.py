"""CLI entry point for the onchain_indexer daemon."""

from __future__ import annotations

import asyncio
import json
import logging
import sys

import click

from onchain_indexer.api.data_api import EVENT_TYPE_SWAP, EVENT_TYPE_TRANSFER
from onchain_indexer.config import load_config
from onchain_indexer.daemon import run_indexer
from onchain_indexer.storage.sqlite import SQLiteEventStore


def _load(ctx: click.Context):
    """Load config or exit with the validation error."""
    try:
        return load_config(ctx.obj["config_path"])
    except ValueError as exc:
        click.echo(f"Error: invalid configuration: {exc}", err=True)
        sys.exit(1)


@click.group()
@click.option("-c", "--config", "config_path", default=None, help="Path to config TOML file")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """onchain_indexer - EVM transfer and swap log indexer."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose

    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


# ── Daemon ─────────────────────────────────────────────


@cli.command()
@click.pass_context
def run(ctx: click.Context) -> None:
    """Start indexing from the configured (or persisted) block."""
    cfg = _load(ctx)
    if not ctx.obj["verbose"]:
        logging.getLogger().setLevel(cfg.log_level.upper())

    click.echo(f"Starting onchain indexer (rpc: {cfg.rpc_url})")
    try:
        asyncio.run(run_indexer(cfg))
    except Exception as exc:
        click.echo(f"Indexer stopped with error: {exc}", err=True)
        sys.exit(1)


# ── Info ───────────────────────────────────────────────


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show indexer configuration."""
    cfg = _load(ctx)
    click.echo(f"RPC URL:       {cfg.rpc_url}")
    click.echo(f"Start block:   {cfg.start_block}")
    click.echo(f"Poll interval: {cfg.poll_interval}s")
    click.echo(f"Batch size:    {cfg.batch_size}")
    click.echo(f"Max retries:   {cfg.max_retries}")
    click.echo(f"DB path:       {cfg.db_path}")
    click.echo(f"Log level:     {cfg.log_level}")


@cli.command()
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Show counts of stored events and the highest indexed block."""
    cfg = _load(ctx)

    async def _stats():
        store = SQLiteEventStore(cfg.db_path)
        await store.initialize()
        try:
            s = await store.get_stats()
            cursor = await store.get_cursor()
        finally:
            await store.close()

        click.echo(f"Events:       {s.total_events}")
        click.echo(f"Transfers:    {s.total_transfers}")
        click.echo(f"Swaps:        {s.total_swaps}")
        click.echo(f"Latest block: {s.latest_block}")
        click.echo(f"Cursor:       {cursor if cursor is not None else '(none)'}")

    asyncio.run(_stats())


@cli.command()
@click.option("--first", type=int, default=10, help="Number of events to show")
@click.option(
    "--type", "event_type",
    type=click.Choice([EVENT_TYPE_TRANSFER, EVENT_TYPE_SWAP]),
    default=None,
    help="Only show one event type",
)
@click.pass_context
def events(ctx: click.Context, first: int, event_type: str | None) -> None:
    """Print the most recent stored events as JSON lines."""
    cfg = _load(ctx)

    async def _events():
        store = SQLiteEventStore(cfg.db_path)
        await store.initialize()
        try:
            if event_type == EVENT_TYPE_TRANSFER:
                rows = await store.get_recent_transfers(first)
            elif event_type == EVENT_TYPE_SWAP:
                rows = await store.get_recent_swaps(first)
            else:
                rows = await store.get_recent_events(first)
        finally:
            await store.close()

        if not rows:
            click.echo("No events indexed yet.")
            return
        for row in rows:
            click.echo(json.dumps(row.to_dict()))

    asyncio.run(_events())


if __name__ == "__main__":
    cli()

import asyncio, logging, time
import click
from aiohttp import web
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ..adapters.parquet_export import TokenTableWriter
from ..application.use_cases import Indexer, build_indexer
from ..config import Settings
from ..domain.errors import MintdexError
from .http import create_app

console = Console()


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _settings() -> Settings:
    try:
        return Settings.from_env()
    except MintdexError as e:
        raise click.ClickException(str(e))


def _log_stats(indexer: Indexer) -> None:
    stats = getattr(indexer.chain, "stats", None)
    if stats is not None:
        stats.log()


def _run(indexer: Indexer, coro_fn):
    async def main():
        try:
            return await coro_fn()
        finally:
            _log_stats(indexer)
            await indexer.aclose()
    try:
        return asyncio.run(main())
    except MintdexError as e:
        raise click.ClickException(str(e))


@click.group()
@click.option("--log-level", default="INFO", show_default=True,
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False))
def cli(log_level):
    """mintdex: token and bounty indexer for factory-deployed NFT contracts."""
    _setup_logging(log_level)


@cli.command("serve")
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", type=int, default=8080, show_default=True)
def serve_cmd(host, port):
    """Serve /bounties, /tokens and /token/{contract}/{tokenId} over HTTP."""
    settings = _settings()
    indexer = build_indexer(settings)
    console.print(f"[bold]mintdex[/] on {settings.network.name} • http://{host}:{port}")
    web.run_app(create_app(indexer), host=host, port=port, print=None)


@cli.command("scan-tokens")
def scan_tokens_cmd():
    """Advance the token index to the chain head and persist it."""
    indexer = build_indexer(_settings())
    t0 = time.time()
    snapshot = _run(indexer, indexer.token_index.refresh)
    stats = indexer.token_index.last_stats
    console.print(f"[bold]done[/]: {len(snapshot.tokens)} tokens at block {snapshot.last_processed_block:,} "
                  f"(v{snapshot.version}) • {time.time() - t0:.2f}s")
    if stats is not None:
        console.print(
            f"[bold]summary[/]: mode={stats.mode.value}  "
            f"[green]new[/]={stats.new_tokens}  "
            f"[yellow]skipped[/]={stats.skipped_tokens}  "
            f"[red]failed_counts[/]={stats.failed_counts}  "
            f"[red]failed_mint_logs[/]={stats.failed_mint_logs}  "
            f"(contracts={stats.contracts})"
        )


@cli.command("bounties")
@click.option("--all", "show_all", is_flag=True, default=False, help="Include paused and empty bounties")
def bounties_cmd(show_all):
    """Aggregate every bounty from chain and print it as a table."""
    indexer = build_indexer(_settings())
    records = _run(indexer, indexer.bounty_aggregator.collect)
    if not show_all:
        records = [r for r in records if r.is_active]

    table = Table(title=f"{len(records)} bounties")
    table.add_column("bounty")
    table.add_column("token")
    table.add_column("minted", justify="right")
    table.add_column("reward (wei)", justify="right")
    table.add_column("balance (wei)", justify="right")
    table.add_column("claimable")
    for r in records:
        claimable = "?" if r.is_claimable is None else ("yes" if r.is_claimable else "no")
        table.add_row(
            r.bounty_contract,
            r.token_name or r.token_contract,
            f"{r.last_minted_id}/{r.total_artifacts}",
            str(r.minter_reward),
            str(r.balance),
            claimable,
        )
    console.print(table)


@cli.command("export-tokens")
@click.option("--out", "out_path", default="tokens.parquet", show_default=True, help="Parquet output path")
@click.option("--refresh/--no-refresh", default=False, show_default=True,
              help="Advance the index before exporting")
@click.option("--codec", default="zstd", show_default=True)
def export_tokens_cmd(out_path, refresh, codec):
    """Write the stored token index to a Parquet file."""
    indexer = build_indexer(_settings())

    async def load():
        if refresh:
            return await indexer.token_index.refresh()
        return await indexer.token_index.load()

    snapshot = _run(indexer, load)
    if snapshot is None:
        raise click.ClickException("No token index stored yet; run `mintdex scan-tokens` or pass --refresh")
    TokenTableWriter(codec=codec).write(snapshot, out_path)
    console.print(f"[bold]wrote[/] {len(snapshot.tokens)} tokens to {out_path}")


if __name__ == "__main__":
    cli()

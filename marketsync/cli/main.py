# marketsync/cli/main.py
"""
Command line entry points for running syncs and checks outside the web app.

    marketsync sync --account-id 3 --strategy critical
    marketsync sales --account-id 3
    marketsync restock --tenant acme --product-id 42
    marketsync restock --tenant acme
    marketsync serve --port 8000
"""
import asyncio
import json
import os

import click
import uvicorn
from dotenv import load_dotenv

from marketsync.core.config import get_settings
from marketsync.core.enums import SyncStrategy
from marketsync.core.exceptions import BaseServiceError
from marketsync.core.logging_config import configure_logging
from marketsync.database import dispose_engine, new_session
from marketsync.integrations.sql_store import SqlInventoryStore
from marketsync.schemas.sync import ReconciliationThresholds
from marketsync.services.cache_service import IntelligentCache
from marketsync.services.mercadolivre import MercadoLivreClient, MercadoLivreService, MLAuthManager
from marketsync.services.replenishment import ReplenishmentService
from marketsync.services.sync_service import SyncService


def _build():
    settings = get_settings()
    store = SqlInventoryStore(new_session)
    cache = IntelligentCache(max_size=settings.CACHE_MAX_SIZE)
    client = MercadoLivreClient()
    gateway = MercadoLivreService(client, MLAuthManager(store, client), store, cache, settings)
    return settings, store, gateway, cache


def _run(coro):
    async def _wrapped():
        try:
            return await coro
        finally:
            await dispose_engine()

    try:
        return asyncio.run(_wrapped())
    except BaseServiceError as e:
        raise click.ClickException(str(e))


@click.group()
@click.option("--log-level", default=None, help="Override LOG_LEVEL")
def cli(log_level):
    """Mercado Livre stock sync tools"""
    load_dotenv()
    configure_logging(log_level)


@cli.command()
@click.option("--account-id", type=int, required=True)
@click.option("--strategy", type=click.Choice([s.value for s in SyncStrategy]), default=SyncStrategy.AUTO.value)
@click.option("--max-items", type=int, default=None)
@click.option("--item", "item_ids", multiple=True, help="Restrict the run to these item ids")
def sync(account_id, strategy, max_items, item_ids):
    """Run one sync pass and print the summary"""
    settings, store, gateway, cache = _build()
    service = SyncService(store, gateway, cache, settings)
    summary = _run(service.run_sync(
        account_id, SyncStrategy(strategy), max_items=max_items, item_ids=list(item_ids) or None
    ))
    click.echo(summary.model_dump_json(indent=2))
    if not summary.success:
        raise SystemExit(1)


@cli.command()
@click.option("--account-id", type=int, required=True)
@click.option("--days", type=int, default=90, show_default=True)
def sales(account_id, days):
    """Recompute units sold per listing over the last N days"""
    settings, store, gateway, cache = _build()
    service = SyncService(store, gateway, cache, settings)
    changed = _run(service.refresh_sales_history(account_id, days=days))
    click.echo(f"Updated sales for {changed} listings")


@cli.command()
@click.option("--tenant", required=True)
@click.option("--product-id", type=int, default=None, help="Omit to analyze every active product")
def restock(tenant, product_id):
    """Print the restock suggestion for a product, or the batch report for the tenant"""
    settings, store, gateway, _ = _build()
    service = ReplenishmentService(
        store,
        gateway,
        ReconciliationThresholds.from_settings(settings),
        batch_size=settings.SYNC_BATCH_SIZE,
        concurrency=settings.SYNC_CONCURRENCY,
    )
    if product_id is None:
        result = _run(service.suggest_restock_batch(tenant))
    else:
        result = _run(service.suggest_restock(tenant, product_id))
    click.echo(json.dumps(result.model_dump(mode="json"), indent=2))


@cli.command()
@click.option("--host", default="0.0.0.0", show_default=True)
@click.option("--port", type=int, default=None, help="Defaults to $PORT or 8000")
@click.option("--reload", is_flag=True)
def serve(host, port, reload):
    """Run the API with uvicorn"""
    port = port or int(os.environ.get("PORT", 8000))
    click.echo(f"Starting application on port {port}")
    uvicorn.run("marketsync.main:app", host=host, port=port, reload=reload, log_level="info")


if __name__ == "__main__":
    cli()

"""Sync commands for lexisync CLI.

Commands:
- sync: Full bidirectional sync (optionally forced)
- push: Push local collections without fetching
- status: Show login state and local collection counts
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import click

from lexisync.client.api import PocketBaseClient
from lexisync.client.state import LocalStore
from lexisync.client.sync import SyncEngine, SyncResult
from lexisync.core.config import (
    ServerConfig,
    get_config_dir,
    load_config,
    load_server_config,
    load_sync_config,
)

LAST_SYNC_KEY = "last_sync_time"


def get_store_path() -> Path:
    """Path of the local collection database."""
    return get_config_dir() / "local.db"


def _require_login() -> ServerConfig:
    server_config = load_server_config()
    if server_config is None or not server_config.token or not server_config.user_id:
        click.echo("Error: Not logged in. Run 'lexisync login' first.", err=True)
        sys.exit(1)
    return server_config


def _echo_result(result: SyncResult) -> None:
    for collection in result.collections:
        upsert = collection.upsert
        line = (
            f"{collection.name}: {collection.merged_count} items "
            f"({upsert.created} created, {upsert.updated} updated"
        )
        if upsert.failed:
            line += f", {len(upsert.failed)} failed"
        click.echo(line + ")")


async def _run(server_config: ServerConfig, mode: str) -> SyncResult | None:
    sync_config = load_sync_config()
    with LocalStore(get_store_path()) as store:
        async with PocketBaseClient(
            server_config, page_size=sync_config.page_size
        ) as client:
            engine = SyncEngine(client, store.collections, sync_config)
            if mode == "push":
                result = await engine.push_only()
            elif mode == "force":
                result = await engine.force_sync()
            else:
                result = await engine.sync()
        if result is not None and result.finished_at is not None and mode != "push":
            store.set_state(LAST_SYNC_KEY, result.finished_at.isoformat())
        return result


@click.command()
@click.option("--force", is_flag=True, help="Ignore recorded fingerprints.")
def sync(force: bool) -> None:
    """Synchronize vocabulary and history with the server."""
    server_config = _require_login()
    result = asyncio.run(_run(server_config, "force" if force else "sync"))
    if result is None:
        click.echo("Sync failed. Run with --verbose for details.", err=True)
        sys.exit(1)
    _echo_result(result)
    click.echo("Sync complete.")


@click.command()
def push() -> None:
    """Upload local collections without fetching remote changes."""
    server_config = _require_login()
    result = asyncio.run(_run(server_config, "push"))
    if result is None:
        click.echo("Push failed. Run with --verbose for details.", err=True)
        sys.exit(1)
    _echo_result(result)


@click.command()
def status() -> None:
    """Show login state, local counts and last sync time."""
    config = load_config()
    if not config.get("server_url"):
        click.echo("Not configured. Run 'lexisync login' first.")
        return

    click.echo(f"Server: {config['server_url']}")
    user_id = config.get("user_id") if config.get("auth_token") else None
    click.echo(f"User: {user_id or 'not logged in'}")

    with LocalStore(get_store_path()) as store:
        for collection in store.collections:
            click.echo(f"{collection.name}: {len(collection)} local items")
        click.echo(f"Last sync: {store.get_state(LAST_SYNC_KEY) or 'never'}")
